"""Pydantic schemas for the HTTP and push layers."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator
from pydantic.alias_generators import to_camel


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_utc(value: datetime) -> str:
    """Render an instant as ISO-8601 with an explicit ``Z`` suffix."""

    return _as_utc(value).isoformat().replace("+00:00", "Z")


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ReadingStatus(str, Enum):
    """Condition classification attached to every reading."""

    normal = "normal"
    warning = "warning"
    critical = "critical"
    maintenance = "maintenance"


class ReadingDraft(CamelModel):
    """A synthesized sensor snapshot that has not been persisted yet."""

    speed: int = Field(..., ge=0, description="Shaft speed in RPM.")
    temperature: int = Field(..., description="Winding temperature in degrees Celsius.")
    timestamp: datetime
    machine_id: str
    status: ReadingStatus
    title: Optional[str] = None

    vibration_x: Optional[float] = Field(default=None, ge=0)
    vibration_y: Optional[float] = Field(default=None, ge=0)
    vibration_z: Optional[float] = Field(default=None, ge=0)
    vibration: Optional[float] = Field(default=None, ge=0)

    oil_pressure: Optional[float] = Field(default=None, ge=0)
    air_pressure: Optional[float] = Field(default=None, ge=0)
    hydraulic_pressure: Optional[float] = Field(default=None, ge=0)

    coolant_flow_rate: Optional[float] = Field(default=None, ge=0)
    fuel_flow_rate: Optional[float] = Field(default=None, ge=0)

    voltage: Optional[float] = Field(default=None, ge=0)
    current: Optional[float] = Field(default=None, ge=0)
    power_factor: Optional[float] = Field(default=None, ge=0, le=1)
    power_consumption: Optional[float] = Field(default=None, ge=0)

    rpm: Optional[int] = Field(default=None, ge=0)
    torque: Optional[float] = Field(default=None, ge=0)
    efficiency: Optional[float] = Field(default=None, ge=0, le=100)

    humidity: Optional[float] = Field(default=None, ge=0, le=100)
    ambient_temperature: Optional[float] = None
    ambient_pressure: Optional[float] = Field(default=None, ge=0)

    shaft_position: Optional[float] = Field(default=None, ge=0, le=360)
    displacement: Optional[float] = Field(default=None, ge=0)

    strain_gauge1: Optional[float] = None
    strain_gauge2: Optional[float] = None
    strain_gauge3: Optional[float] = None

    sound_level: Optional[float] = Field(default=None, ge=0)
    bearing_health: Optional[float] = Field(default=None, ge=0, le=100)
    bearing_wear: Optional[float] = Field(default=None, ge=0)
    oil_degradation: Optional[float] = Field(default=None, ge=0)

    operating_hours: Optional[int] = Field(default=None, ge=0)
    operating_minutes: Optional[int] = Field(default=None, ge=0, le=59)
    operating_seconds: Optional[float] = Field(default=None, ge=0, lt=60)
    maintenance_status: Optional[int] = Field(default=None, ge=0, le=3)
    system_health: Optional[int] = Field(default=None, ge=0, le=100)

    @field_validator("timestamp")
    @classmethod
    def _normalize_timestamp(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @field_serializer("timestamp")
    def _serialize_timestamp(self, value: datetime) -> str:
        return format_utc(value)


class Reading(ReadingDraft):
    """A persisted reading with its store-assigned identifier."""

    id: int = Field(..., ge=1)


class AlertSeverity(str, Enum):
    info = "info"
    warning = "warning"
    critical = "critical"


class Alert(CamelModel):
    id: str = Field(default_factory=lambda: str(uuid4()))
    type: str
    severity: AlertSeverity
    message: str
    timestamp: datetime
    machine_id: str
    acknowledged: bool = False

    @field_validator("timestamp")
    @classmethod
    def _normalize_timestamp(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @field_serializer("timestamp")
    def _serialize_timestamp(self, value: datetime) -> str:
        return format_utc(value)


class MessageType(str, Enum):
    """Kinds of frames pushed to subscribers."""

    new_reading = "newReading"
    new_alert = "newAlert"


def push_message(kind: MessageType, payload: BaseModel) -> Dict[str, Any]:
    return {"type": kind.value, "payload": payload.model_dump(mode="json", by_alias=True)}


class DeleteResponse(BaseModel):
    deleted: int = Field(..., ge=0)


class MaintenanceResponse(CamelModel):
    machine_id: str
    operating_hours: int = Field(..., ge=0)
    bearing_wear: float = Field(..., ge=0)
    oil_degradation: float = Field(..., ge=0)


class HealthResponse(BaseModel):
    status: str
    readings: int = Field(..., ge=0)
    subscribers: int = Field(..., ge=0)
