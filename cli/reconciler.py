"""Client-side merge of pushed and fetched readings into one ordered view."""

from __future__ import annotations

import json
import logging
from typing import Any, Iterable, List, Optional, Union

from app.schemas import Alert, MessageType, Reading

logger = logging.getLogger(__name__)

MAX_ALERTS = 50


class ReadingReconciler:
    """Most-recent-first, duplicate-free, size-capped list of readings.

    The view is display-only and may lag the server.  Nothing here raises on
    bad input: malformed or unknown frames are dropped.
    """

    def __init__(self, max_size: int = 20) -> None:
        if max_size <= 0:
            raise ValueError("max_size must be positive")
        self.max_size = max_size
        self._items: List[Reading] = []
        self.alerts: List[Alert] = []
        self.dropped = 0

    @property
    def readings(self) -> List[Reading]:
        return list(self._items)

    @property
    def ids(self) -> List[int]:
        return [reading.id for reading in self._items]

    def __len__(self) -> int:
        return len(self._items)

    def seed(self, readings: Iterable[Reading]) -> None:
        """Fold a bulk fetch into the view without disturbing newer pushes."""
        for reading in readings:
            self._place(reading)
        self._trim()

    def merge(self, reading: Reading) -> bool:
        """Apply one pushed reading; returns ``False`` if it fell outside the cap."""

        self._place(reading)
        self._trim()
        return any(item.id == reading.id for item in self._items)

    def apply_message(self, raw: Union[str, bytes, dict[str, Any]]) -> Optional[Union[Reading, Alert]]:
        try:
            frame = json.loads(raw) if isinstance(raw, (str, bytes)) else raw
            kind = frame["type"]
            payload = frame.get("payload")
            if kind == MessageType.new_reading.value:
                reading = Reading.model_validate(payload)
                self.merge(reading)
                return reading
            if kind == MessageType.new_alert.value:
                alert = Alert.model_validate(payload)
                self.alerts = [alert, *self.alerts][:MAX_ALERTS]
                return alert
        except (ValueError, TypeError, KeyError, AttributeError) as exc:
            self.dropped += 1
            logger.debug("Dropping malformed push frame", extra={"reason": str(exc)})
            return None
        logger.debug("Ignoring push frame", extra={"reason": f"type={kind!r}"})
        return None

    def _place(self, reading: Reading) -> None:
        for index, existing in enumerate(self._items):
            if existing.id == reading.id:
                self._items[index] = reading
                return
            if existing.id < reading.id:
                self._items.insert(index, reading)
                return
        self._items.append(reading)

    def _trim(self) -> None:
        if len(self._items) > self.max_size:
            del self._items[self.max_size:]
