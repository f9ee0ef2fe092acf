"""Synthesis of internally consistent motor sensor readings.

Each call advances a :class:`MotorState` by an elapsed interval and derives a
full sensor snapshot from it.  Quantities feed into each other: load drives
heat and speed, temperature derates speed and efficiency, wear and oil
degradation accumulate with running time and drag efficiency down while
pushing vibration up.  Randomness is always supplied by the caller.
"""

from __future__ import annotations

import math
import random
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional, Tuple

from app.schemas import ReadingDraft, ReadingStatus
from models.records import AMBIENT_BASELINE, TARGET_SPEED, MotorState, split_operating_time
from services.errors import SynthesisError

NOMINAL_STEP_SECONDS = 1.0
THERMAL_TIME_CONSTANT = 120.0
SPEED_TIME_CONSTANT = 10.0
DERATING_TEMPERATURE = 65.0
WEAR_RATE = 0.0008
OIL_RATE = 0.00015
# Fully worn bearings and fully spent oil; accumulation stops here until serviced.
MAX_BEARING_WEAR = 1.0
MAX_OIL_DEGRADATION = 1.0

# (low, high) inclusive bounds every synthesized field must respect.
PHYSICAL_RANGES: Dict[str, Tuple[float, float]] = {
    "temperature": (-40.0, 150.0),
    "speed": (0.0, TARGET_SPEED * 1.3),
    "load": (0.0, 1.0),
    "efficiency": (0.0, 100.0),
    "bearing_wear": (0.0, MAX_BEARING_WEAR),
    "oil_degradation": (0.0, MAX_OIL_DEGRADATION),
    "vibration_x": (0.0, 50.0),
    "vibration_y": (0.0, 50.0),
    "vibration_z": (0.0, 50.0),
    "vibration": (0.0, 50.0),
    "oil_pressure": (0.0, 10.0),
    "air_pressure": (0.0, 15.0),
    "hydraulic_pressure": (0.0, 400.0),
    "coolant_flow_rate": (0.0, 100.0),
    "fuel_flow_rate": (0.0, 100.0),
    "voltage": (0.0, 1000.0),
    "current": (0.0, 500.0),
    "power_factor": (0.0, 1.0),
    "power_consumption": (0.0, 100.0),
    "torque": (0.0, 1000.0),
    "humidity": (0.0, 100.0),
    "ambient_temperature": (-40.0, 60.0),
    "ambient_pressure": (80.0, 120.0),
    "shaft_position": (0.0, 360.0),
    "displacement": (0.0, 10.0),
    "strain_gauge1": (0.0, 2000.0),
    "strain_gauge2": (0.0, 2000.0),
    "strain_gauge3": (0.0, 2000.0),
    "sound_level": (0.0, 150.0),
    "bearing_health": (0.0, 100.0),
}


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def relax(current: float, target: float, elapsed: float, time_constant: float) -> float:
    """First-order exponential approach of ``current`` toward ``target``."""

    return target + (current - target) * math.exp(-elapsed / time_constant)


def load_signal(operating_seconds: float, rng: random.Random) -> float:
    """Production load: a slow duty cycle, a faster demand ripple and noise."""

    cycle = 0.12 * math.sin(operating_seconds / 900.0)
    demand = 0.06 * math.sin(operating_seconds / 173.0)
    return clamp(0.72 + cycle + demand + rng.gauss(0.0, 0.03), 0.2, 1.0)


def efficiency_for(
    bearing_wear: float, oil_degradation: float, temperature: float, load: float
) -> float:
    wear_loss = bearing_wear * 120.0
    oil_loss = oil_degradation * 80.0
    thermal_loss = max(0.0, (temperature - 75.0) * 0.2)
    load_loss = abs(load - 0.8) * 5.0
    return clamp(95.0 - wear_loss - oil_loss - thermal_loss - load_loss, 0.0, 100.0)


def heat_rise(load: float, speed: float, efficiency: float, target_speed: float = TARGET_SPEED) -> float:
    """Steady-state temperature rise above ambient for the given operating point."""

    return load * 30.0 + (speed / target_speed) * 10.0 + (100.0 - efficiency) * 0.3


def speed_setpoint(load: float, temperature: float, target_speed: float = TARGET_SPEED) -> float:
    load_response = (load - 0.7) * 300.0
    thermal_derating = max(0.0, temperature - DERATING_TEMPERATURE) * 6.0
    return clamp(target_speed + load_response - thermal_derating, 0.0, target_speed * 1.3)


def vibration_for(speed: float, bearing_wear: float, target_speed: float = TARGET_SPEED) -> float:
    """Baseline vibration velocity (mm/s) for a speed and bearing wear level."""

    return 0.4 + 0.8 * (max(0.0, speed) / target_speed) + max(0.0, bearing_wear) * 15.0


def system_health_for(
    bearing_wear: float,
    oil_degradation: float,
    temperature: float,
    vibration: float,
    efficiency: float,
    operating_hours: float,
) -> int:
    score = (
        100.0
        - bearing_wear * 250.0
        - oil_degradation * 150.0
        - max(0.0, temperature - 75.0) * 0.8
        - max(0.0, vibration - 1.5) * 10.0
        - max(0.0, 90.0 - efficiency) * 0.8
        - operating_hours * 0.01
    )
    return int(round(clamp(score, 0.0, 100.0)))


def maintenance_code(
    bearing_wear: float,
    oil_degradation: float,
    temperature: float,
    vibration: float,
    efficiency: float,
    operating_hours: float,
) -> int:
    """0 good, 1 warning, 2 critical, 3 service due (first hour after every 100)."""

    if bearing_wear > 0.1 or oil_degradation > 0.05 or temperature > 90.0 or vibration > 3.0:
        return 2
    if (
        bearing_wear > 0.05
        or oil_degradation > 0.02
        or temperature > 80.0
        or vibration > 2.5
        or efficiency < 85.0
    ):
        return 1
    whole_hours = int(operating_hours)
    if whole_hours >= 100 and whole_hours % 100 == 0:
        return 3
    return 0


def classify_status(
    temperature: float,
    *,
    vibration: Optional[float] = None,
    efficiency: Optional[float] = None,
    oil_pressure: Optional[float] = None,
    bearing_health: Optional[float] = None,
    system_health: Optional[float] = None,
    maintenance_status: Optional[int] = None,
) -> ReadingStatus:
    """Map a set of sensor values onto a status band.

    Absent optional values never escalate the status.
    """

    def above(value: Optional[float], limit: float) -> bool:
        return value is not None and value > limit

    def below(value: Optional[float], limit: float) -> bool:
        return value is not None and value < limit

    if (
        temperature > 85
        or above(vibration, 4.5)
        or below(efficiency, 80.0)
        or below(oil_pressure, 2.0)
        or below(bearing_health, 70.0)
        or below(system_health, 60.0)
    ):
        return ReadingStatus.critical
    if (
        temperature > 75
        or above(vibration, 3.5)
        or below(efficiency, 85.0)
        or below(oil_pressure, 2.5)
        or below(bearing_health, 80.0)
        or below(system_health, 75.0)
    ):
        return ReadingStatus.warning
    if maintenance_status == 3 or below(system_health, 85.0):
        return ReadingStatus.maintenance
    return ReadingStatus.normal


def reading_title(speed: int, temperature: int, status: ReadingStatus, system_health: int) -> str:
    prefix = "Standard"
    if speed > 2800:
        prefix = "High-speed"
    elif speed < 2200:
        prefix = "Low-speed"
    elif temperature > 80:
        prefix = "High-temp"
    elif temperature < 50:
        prefix = "Cool"
    elif system_health >= 95:
        prefix = "Optimal"
    elif system_health < 75:
        prefix = "Degraded"
    return (
        f"[{status.value}] {prefix} operation - {speed} RPM @ {temperature}°C "
        f"(health {system_health}%)"
    )


@dataclass(frozen=True)
class SynthesisResult:
    draft: ReadingDraft
    state: MotorState


class ReadingSynthesizer:
    """Pure synthesis component; all randomness comes from the ``rng`` argument."""

    def __init__(self, target_speed: float = TARGET_SPEED, ambient: float = AMBIENT_BASELINE) -> None:
        self.target_speed = target_speed
        self.ambient = ambient

    def synthesize(
        self,
        state: MotorState,
        elapsed_seconds: float,
        rng: random.Random,
        *,
        timestamp: datetime,
        machine_id: str,
    ) -> SynthesisResult:
        if not math.isfinite(elapsed_seconds) or elapsed_seconds < 0:
            raise ValueError(f"elapsed_seconds must be a finite non-negative number, got {elapsed_seconds!r}")
        dt = elapsed_seconds
        target = self.target_speed

        operating_seconds = state.operating_seconds + dt
        load = load_signal(operating_seconds, rng)

        previous_efficiency = efficiency_for(
            state.bearing_wear, state.oil_degradation, state.temperature, state.load
        )
        thermal_target = self.ambient + heat_rise(load, state.speed, previous_efficiency, target)
        temperature = relax(state.temperature, thermal_target, dt, THERMAL_TIME_CONSTANT)
        temperature += rng.gauss(0.0, 0.3)
        self._check("temperature", temperature)

        speed = relax(state.speed, speed_setpoint(load, temperature, target), dt, SPEED_TIME_CONSTANT)
        speed = clamp(speed + rng.gauss(0.0, 5.0), 0.0, target * 1.3)

        speed_factor = speed / target
        hours = dt / 3600.0
        wear_thermal = 1.0 + max(0.0, (temperature - DERATING_TEMPERATURE) / 30.0) * 0.5
        bearing_wear = min(
            MAX_BEARING_WEAR, state.bearing_wear + speed_factor * load * wear_thermal * hours * WEAR_RATE
        )
        oil_thermal = 1.0 + max(0.0, (temperature - DERATING_TEMPERATURE) / 20.0) * 0.3
        oil_degradation = min(MAX_OIL_DEGRADATION, state.oil_degradation + oil_thermal * hours * OIL_RATE)

        efficiency = clamp(
            efficiency_for(bearing_wear, oil_degradation, temperature, load) + rng.gauss(0.0, 0.2),
            0.0,
            100.0,
        )

        base_vibration = vibration_for(speed, bearing_wear, target)
        vibration_x = abs(base_vibration * (1.0 + rng.gauss(0.0, 0.05)))
        vibration_y = abs(base_vibration * 0.85 * (1.0 + rng.gauss(0.0, 0.05)))
        vibration_z = abs(base_vibration * 0.6 * (1.0 + rng.gauss(0.0, 0.05)))
        vibration = math.sqrt((vibration_x ** 2 + vibration_y ** 2 + vibration_z ** 2) / 3.0)

        oil_pressure = max(
            0.0,
            3.6 - oil_degradation * 20.0 - max(0.0, temperature - DERATING_TEMPERATURE) * 0.02
            + rng.gauss(0.0, 0.05),
        )
        air_pressure = max(0.0, 6.5 + rng.gauss(0.0, 0.1))
        hydraulic_pressure = max(0.0, 150.0 + load * 50.0 + rng.gauss(0.0, 1.5))
        coolant_flow_rate = max(0.0, 12.0 + (temperature - self.ambient) * 0.25 + rng.gauss(0.0, 0.3))
        fuel_flow_rate = max(0.0, 6.0 + load * 8.0 + rng.gauss(0.0, 0.2))

        voltage = 230.0 + rng.gauss(0.0, 1.5)
        power_factor = clamp(0.78 + 0.15 * load + rng.gauss(0.0, 0.01), 0.0, 1.0)
        power_consumption = max(
            0.0,
            4.5
            + load * 1.8
            + (100.0 - efficiency) * 0.15
            + (temperature - DERATING_TEMPERATURE) * 0.05
            + bearing_wear * 50.0,
        )
        current = power_consumption * 1000.0 / (math.sqrt(3.0) * voltage * power_factor) if power_factor > 0 else None
        torque = power_consumption * (efficiency / 100.0) * 9550.0 / speed if speed >= 1.0 else None

        humidity = clamp(45.0 + rng.gauss(0.0, 3.0), 0.0, 100.0)
        ambient_temperature = self.ambient + rng.gauss(0.0, 0.5)
        ambient_pressure = 101.3 + rng.gauss(0.0, 0.2)

        shaft_angle = (state.shaft_angle + speed * 6.0 * dt) % 360.0
        displacement = 0.02 + bearing_wear * 2.0 + abs(rng.gauss(0.0, 0.003))

        strain_gauge1 = 100.0 + load * 80.0 + rng.gauss(0.0, 2.0)
        strain_gauge2 = 150.0 + load * 80.0 + rng.gauss(0.0, 2.0)
        strain_gauge3 = 200.0 + load * 80.0 + rng.gauss(0.0, 2.0)

        sound_level = 58.0 + 12.0 * speed_factor + vibration * 2.0 + rng.gauss(0.0, 0.5)
        bearing_health = clamp(100.0 - bearing_wear * 250.0 - max(0.0, temperature - 80.0) * 0.2, 0.0, 100.0)

        measured: Dict[str, Optional[float]] = {
            "temperature": temperature,
            "speed": speed,
            "load": load,
            "efficiency": efficiency,
            "bearing_wear": bearing_wear,
            "oil_degradation": oil_degradation,
            "vibration_x": vibration_x,
            "vibration_y": vibration_y,
            "vibration_z": vibration_z,
            "vibration": vibration,
            "oil_pressure": oil_pressure,
            "air_pressure": air_pressure,
            "hydraulic_pressure": hydraulic_pressure,
            "coolant_flow_rate": coolant_flow_rate,
            "fuel_flow_rate": fuel_flow_rate,
            "voltage": voltage,
            "current": current,
            "power_factor": power_factor,
            "power_consumption": power_consumption,
            "torque": torque,
            "humidity": humidity,
            "ambient_temperature": ambient_temperature,
            "ambient_pressure": ambient_pressure,
            "shaft_position": shaft_angle,
            "displacement": displacement,
            "strain_gauge1": strain_gauge1,
            "strain_gauge2": strain_gauge2,
            "strain_gauge3": strain_gauge3,
            "sound_level": sound_level,
            "bearing_health": bearing_health,
        }
        for name, value in measured.items():
            if value is not None:
                self._check(name, value)

        operating_hours_total = operating_seconds / 3600.0
        system_health = system_health_for(
            bearing_wear, oil_degradation, temperature, vibration, efficiency, operating_hours_total
        )
        maintenance_status = maintenance_code(
            bearing_wear, oil_degradation, temperature, vibration, efficiency, operating_hours_total
        )
        speed_rpm = int(round(speed))
        temperature_c = int(round(temperature))
        status = classify_status(
            temperature_c,
            vibration=vibration,
            efficiency=efficiency,
            oil_pressure=oil_pressure,
            bearing_health=bearing_health,
            system_health=system_health,
            maintenance_status=maintenance_status,
        )
        hours_part, minutes_part, seconds_part = split_operating_time(operating_seconds)

        draft = ReadingDraft(
            speed=speed_rpm,
            temperature=temperature_c,
            timestamp=timestamp,
            machine_id=machine_id,
            status=status,
            title=reading_title(speed_rpm, temperature_c, status, system_health),
            vibration_x=round(vibration_x, 2),
            vibration_y=round(vibration_y, 2),
            vibration_z=round(vibration_z, 2),
            vibration=round(vibration, 2),
            oil_pressure=round(oil_pressure, 2),
            air_pressure=round(air_pressure, 2),
            hydraulic_pressure=round(hydraulic_pressure, 2),
            coolant_flow_rate=round(coolant_flow_rate, 2),
            fuel_flow_rate=round(fuel_flow_rate, 2),
            voltage=round(voltage, 2),
            current=round(current, 2) if current is not None else None,
            power_factor=round(power_factor, 3),
            power_consumption=round(power_consumption, 2),
            rpm=speed_rpm,
            torque=round(torque, 2) if torque is not None else None,
            efficiency=round(efficiency, 1),
            humidity=round(humidity, 1),
            ambient_temperature=round(ambient_temperature, 1),
            ambient_pressure=round(ambient_pressure, 2),
            shaft_position=round(shaft_angle, 2),
            displacement=round(displacement, 3),
            strain_gauge1=round(strain_gauge1, 1),
            strain_gauge2=round(strain_gauge2, 1),
            strain_gauge3=round(strain_gauge3, 1),
            sound_level=round(sound_level, 1),
            bearing_health=round(bearing_health, 1),
            bearing_wear=round(bearing_wear, 6),
            oil_degradation=round(oil_degradation, 6),
            operating_hours=hours_part,
            operating_minutes=minutes_part,
            operating_seconds=seconds_part,
            maintenance_status=maintenance_status,
            system_health=system_health,
        )
        next_state = MotorState(
            operating_seconds=operating_seconds,
            bearing_wear=bearing_wear,
            oil_degradation=oil_degradation,
            speed=speed,
            temperature=temperature,
            load=load,
            shaft_angle=shaft_angle,
            last_sample_at=draft.timestamp,
        )
        return SynthesisResult(draft=draft, state=next_state)

    @staticmethod
    def _check(name: str, value: float) -> None:
        if not math.isfinite(value):
            raise SynthesisError(name, value, "not finite")
        low, high = PHYSICAL_RANGES[name]
        if value < low or value > high:
            raise SynthesisError(name, value)
