from __future__ import annotations

import json
import os
from contextlib import contextmanager
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Iterator, List, Optional

from app.schemas import Reading, ReadingDraft
from models.records import MotorState
from services.errors import PersistenceError
from settings import get_settings


class ReadingsTable:
    """Append-only reading store with an optional journal on disk.

    Identifiers are assigned here, in insertion order, and never reused.
    Rows are appended to a JSON-lines journal at ``persistence_path``; the
    next identifier and the motor simulation state live in a small sidecar
    file that is rewritten on every append, so a write costs the same no
    matter how much history has accumulated.
    """

    def __init__(
        self,
        name: str,
        persistence_path: Optional[Path] = None,
        lock_timeout: float = 5.0,
    ) -> None:
        self.name = name
        self.persistence_path = persistence_path
        self.lock_timeout = lock_timeout
        self._rows: List[Reading] = []
        self._next_id = 1
        self._motor_state: Optional[MotorState] = None
        self._lock = Lock()
        if persistence_path:
            persistence_path.parent.mkdir(parents=True, exist_ok=True)
            self._load_from_disk()

    @property
    def state_path(self) -> Optional[Path]:
        if not self.persistence_path:
            return None
        return self.persistence_path.with_name(self.persistence_path.name + ".state")

    def append(self, draft: ReadingDraft, state: Optional[MotorState] = None) -> Reading:
        with self._locked():
            reading = Reading(id=self._next_id, **draft.model_dump())
            motor_state = state if state is not None else self._motor_state
            self._persist(reading, self._next_id + 1, motor_state)
            self._rows.append(reading)
            self._next_id += 1
            self._motor_state = motor_state
            return reading.model_copy(deep=True)

    def list_recent(self, limit: int) -> list[Reading]:
        """Return up to ``limit`` readings, newest first."""

        if limit <= 0:
            return []
        with self._locked():
            newest = self._rows[-limit:]
            return [row.model_copy(deep=True) for row in reversed(newest)]

    def get(self, reading_id: int) -> Reading:
        with self._locked():
            for row in self._rows:
                if row.id == reading_id:
                    return row.model_copy(deep=True)
        raise KeyError(f"Reading {reading_id} not found in table {self.name!r}.")

    def delete_all(self) -> int:
        with self._locked():
            removed = len(self._rows)
            self._truncate()
            self._rows = []
            return removed

    def count(self) -> int:
        with self._locked():
            return len(self._rows)

    def load_state(self) -> Optional[MotorState]:
        """Return the stored motor state, falling back to the newest reading."""

        with self._locked():
            if self._motor_state is not None:
                return self._motor_state
            if not self._rows:
                return None
            latest = self._rows[-1]
        return _state_from_reading(latest)

    def save_state(self, state: MotorState) -> None:
        """Replace the stored motor state without adding a reading."""

        with self._locked():
            self._write_state(self._next_id, state)
            self._motor_state = state

    @contextmanager
    def _locked(self) -> Iterator[None]:
        if not self._lock.acquire(timeout=self.lock_timeout):
            raise PersistenceError(
                f"Table {self.name!r} unavailable: lock not acquired within {self.lock_timeout}s."
            )
        try:
            yield
        finally:
            self._lock.release()

    def _persist(self, reading: Reading, next_id: int, motor_state: Optional[MotorState]) -> None:
        if not self.persistence_path:
            return
        line = json.dumps(reading.model_dump(mode="json"), sort_keys=True) + "\n"
        try:
            with self.persistence_path.open("a", encoding="utf-8") as journal:
                offset = journal.tell()
                journal.write(line)
        except OSError as exc:
            raise PersistenceError(f"Failed to write table {self.name!r}: {exc}") from exc
        try:
            self._write_state(next_id, motor_state)
        except PersistenceError:
            # The row must not outlive a failed state write.
            try:
                os.truncate(self.persistence_path, offset)
            except OSError as exc:
                raise PersistenceError(f"Failed to roll back table {self.name!r}: {exc}") from exc
            raise

    def _write_state(self, next_id: int, motor_state: Optional[MotorState]) -> None:
        state_path = self.state_path
        if state_path is None:
            return
        payload: Dict[str, Any] = {
            "next_id": next_id,
            "motor_state": motor_state.to_dict() if motor_state is not None else None,
        }
        scratch = state_path.with_name(state_path.name + ".tmp")
        try:
            scratch.write_text(json.dumps(payload, indent=2, sort_keys=True))
            os.replace(scratch, state_path)
        except OSError as exc:
            raise PersistenceError(f"Failed to write state for table {self.name!r}: {exc}") from exc

    def _truncate(self) -> None:
        if not self.persistence_path:
            return
        try:
            self.persistence_path.write_text("")
        except OSError as exc:
            raise PersistenceError(f"Failed to clear table {self.name!r}: {exc}") from exc

    def _load_from_disk(self) -> None:
        rows: List[Reading] = []
        state: Dict[str, Any] = {}
        try:
            if self.persistence_path and self.persistence_path.exists():
                with self.persistence_path.open(encoding="utf-8") as journal:
                    for line in journal:
                        if line.strip():
                            rows.append(Reading.model_validate(json.loads(line)))
            state_path = self.state_path
            if state_path is not None and state_path.exists():
                state = json.loads(state_path.read_text() or "{}")
            state_payload = state.get("motor_state")
            motor_state = MotorState.from_dict(state_payload) if state_payload else None
            next_id = int(state.get("next_id", 1))
        except (OSError, ValueError, TypeError, AttributeError) as exc:
            raise PersistenceError(
                f"Failed to load table {self.name!r} from {self.persistence_path}: {exc}"
            ) from exc

        highest = max((row.id for row in rows), default=0)
        self._rows = sorted(rows, key=lambda row: row.id)
        self._next_id = max(next_id, highest + 1)
        self._motor_state = motor_state


def _state_from_reading(reading: Reading) -> MotorState:
    operating_seconds = (
        (reading.operating_hours or 0) * 3600
        + (reading.operating_minutes or 0) * 60
        + (reading.operating_seconds or 0.0)
    )
    return MotorState(
        operating_seconds=float(operating_seconds),
        bearing_wear=reading.bearing_wear or 0.0,
        oil_degradation=reading.oil_degradation or 0.0,
        speed=float(reading.speed),
        temperature=float(reading.temperature),
        last_sample_at=reading.timestamp,
    )


@lru_cache
def build_default_table(
    name: Optional[str] = None,
    path: Optional[str] = None,
) -> ReadingsTable:
    settings = get_settings()
    table_path = settings.store_persistence_path if path is None else path
    persistence = Path(table_path) if table_path else None
    return ReadingsTable(
        name=name or "motor_readings",
        persistence_path=persistence,
        lock_timeout=settings.store_lock_timeout,
    )
