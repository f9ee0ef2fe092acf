"""Live push feed with reconnect-and-backoff, feeding a :class:`ReadingReconciler`.

Connection lifecycle::

    disconnected -> connecting -> connected -> backoff_wait -> connecting ...
                         |                          ^
                         +--------------------------+

Any state may fall back to ``disconnected`` when the feed is stopped.
"""

from __future__ import annotations

import asyncio
import json
import logging
from enum import Enum
from functools import partial
from typing import Any, AsyncContextManager, Awaitable, Callable, Dict, List, Optional

import httpx
from websockets.asyncio.client import connect as websocket_connect
from websockets.exceptions import WebSocketException

from app.schemas import Alert, Reading
from cli.client import fetch_recent
from cli.config import CLIConfig
from cli.reconciler import ReadingReconciler

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    disconnected = "disconnected"
    connecting = "connecting"
    connected = "connected"
    backoff_wait = "backoff_wait"


_TRANSITIONS: Dict[ConnectionState, frozenset[ConnectionState]] = {
    ConnectionState.disconnected: frozenset({ConnectionState.connecting}),
    ConnectionState.connecting: frozenset(
        {ConnectionState.connected, ConnectionState.backoff_wait, ConnectionState.disconnected}
    ),
    ConnectionState.connected: frozenset({ConnectionState.backoff_wait, ConnectionState.disconnected}),
    ConnectionState.backoff_wait: frozenset({ConnectionState.connecting, ConnectionState.disconnected}),
}


class TransportDisconnect(ConnectionError):
    """The push stream ended or could not be established."""


class Backoff:
    """Retry delays: immediately first, then ``initial`` doubling up to ``ceiling``."""

    def __init__(self, initial: float = 0.5, ceiling: float = 30.0) -> None:
        if initial <= 0 or ceiling < initial:
            raise ValueError("require 0 < initial <= ceiling")
        self.initial = initial
        self.ceiling = ceiling
        self.attempt = 0

    def next_delay(self) -> float:
        if self.attempt == 0:
            delay = 0.0
        else:
            delay = min(self.ceiling, self.initial * 2 ** (self.attempt - 1))
        self.attempt += 1
        return delay

    def reset(self) -> None:
        self.attempt = 0


Connector = Callable[[str], AsyncContextManager[Any]]
HistoryFetcher = Callable[[int], Awaitable[List[Dict[str, Any]]]]
ChangeCallback = Callable[[str, Any], None]

_TRANSPORT_ERRORS = (OSError, asyncio.TimeoutError, WebSocketException, TransportDisconnect)


def _default_connector(config: CLIConfig) -> Connector:
    return partial(websocket_connect, open_timeout=config.timeout, ping_interval=15, ping_timeout=30)


class LiveFeed:
    def __init__(
        self,
        config: CLIConfig,
        reconciler: Optional[ReadingReconciler] = None,
        *,
        machine_id: Optional[str] = None,
        connect: Optional[Connector] = None,
        fetch_history: Optional[HistoryFetcher] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        on_change: Optional[ChangeCallback] = None,
    ) -> None:
        self.config = config
        self.reconciler = reconciler or ReadingReconciler(max_size=config.max_readings)
        self.machine_id = machine_id
        self.backoff = Backoff(config.backoff_initial, config.backoff_ceiling)
        self.state = ConnectionState.disconnected
        self.attempts = 0
        self.last_error: Optional[str] = None
        self._connect = connect or _default_connector(config)
        self._fetch_history = fetch_history or partial(fetch_recent, config)
        self._sleep = sleep
        self._on_change = on_change

    @property
    def stale(self) -> bool:
        """True whenever the view is not being kept current by a live connection."""
        return self.state is not ConnectionState.connected

    async def run(self, stop: Optional[asyncio.Event] = None, max_attempts: Optional[int] = None) -> None:
        stop = stop or asyncio.Event()
        try:
            while not stop.is_set():
                if max_attempts is not None and self.attempts >= max_attempts:
                    break
                await self._session(stop)
                if stop.is_set():
                    break
                delay = self.backoff.next_delay()
                self._transition(ConnectionState.backoff_wait)
                logger.info("Reconnecting to push stream", extra={"value": delay})
                await self._sleep(delay)
        finally:
            if self.state is not ConnectionState.disconnected:
                self._transition(ConnectionState.disconnected)

    async def _session(self, stop: asyncio.Event) -> None:
        self.attempts += 1
        self._transition(ConnectionState.connecting)
        try:
            async with self._connect(self.config.hub_url) as socket:
                self._transition(ConnectionState.connected)
                if self.machine_id:
                    await socket.send(json.dumps({"action": "join", "machineId": self.machine_id}))
                # Subscribed first, then seeded: anything pushed meanwhile is merged by id.
                self.reconciler.seed(await self._load_history())
                self._notify("seeded", self.reconciler.readings)
                async for raw in socket:
                    # Only a stream that delivers something counts as recovered.
                    self.backoff.reset()
                    item = self.reconciler.apply_message(raw)
                    if isinstance(item, Reading):
                        self._notify("reading", item)
                    elif isinstance(item, Alert):
                        self._notify("alert", item)
                    if stop.is_set():
                        return
            raise TransportDisconnect("push stream closed by server")
        except _TRANSPORT_ERRORS as exc:
            self.last_error = str(exc) or type(exc).__name__
            logger.warning("Push stream unavailable", extra={"reason": self.last_error})

    async def _load_history(self) -> List[Reading]:
        try:
            payload = await self._fetch_history(self.reconciler.max_size)
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Initial fetch failed; continuing with pushes only", extra={"reason": str(exc)})
            return []
        readings: List[Reading] = []
        for item in payload:
            try:
                readings.append(Reading.model_validate(item))
            except ValueError:
                self.reconciler.dropped += 1
        return readings

    def _transition(self, target: ConnectionState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal feed transition {self.state.value} -> {target.value}")
        self.state = target
        self._notify("state", target)

    def _notify(self, event: str, item: Any) -> None:
        if self._on_change is not None:
            self._on_change(event, item)
