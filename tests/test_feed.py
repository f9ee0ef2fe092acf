from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, Iterable, List

import httpx
import pytest

from cli.config import CLIConfig
from cli.feed import Backoff, ConnectionState, LiveFeed
from tests.factories import make_reading, reading_frame

CONFIG = CLIConfig(base_url="http://testserver", backoff_initial=0.5, backoff_ceiling=4.0)


class FakeSocket:
    """Scripted push stream: yields its frames, then ends."""

    def __init__(self, frames: Iterable[Dict[str, Any]]) -> None:
        self.frames = [json.dumps(frame) for frame in frames]
        self.sent: List[str] = []

    async def __aenter__(self) -> "FakeSocket":
        return self

    async def __aexit__(self, *exc_info: Any) -> bool:
        return False

    async def send(self, data: str) -> None:
        self.sent.append(data)

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for frame in self.frames:
            yield frame


def _connector(script: List[Any]):
    urls: List[str] = []

    def connect(url: str):
        urls.append(url)
        outcome = script.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    connect.urls = urls  # type: ignore[attr-defined]
    return connect


def _history(payload: List[Dict[str, Any]]):
    async def fetch(limit: int) -> List[Dict[str, Any]]:
        return payload

    return fetch


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def test_backoff_sequence_doubles_up_to_ceiling() -> None:
    backoff = Backoff(initial=0.5, ceiling=4.0)

    assert [backoff.next_delay() for _ in range(7)] == [0.0, 0.5, 1.0, 2.0, 4.0, 4.0, 4.0]
    backoff.reset()
    assert backoff.next_delay() == 0.0


def test_backoff_rejects_bad_bounds() -> None:
    with pytest.raises(ValueError):
        Backoff(initial=0, ceiling=1)
    with pytest.raises(ValueError):
        Backoff(initial=2, ceiling=1)


def test_reconnects_with_backoff_and_resets_after_connecting() -> None:
    sleep = RecordingSleep()
    states: List[ConnectionState] = []
    script: List[Any] = [
        ConnectionRefusedError("refused"),
        ConnectionRefusedError("refused"),
        FakeSocket([reading_frame(make_reading(1))]),
        FakeSocket([reading_frame(make_reading(2))]),
    ]

    def on_change(event: str, item: Any) -> None:
        if event == "state":
            states.append(item)

    connect = _connector(script)
    feed = LiveFeed(CONFIG, connect=connect, fetch_history=_history([]), sleep=sleep, on_change=on_change)

    asyncio.run(feed.run(max_attempts=4))

    assert sleep.delays == [0.0, 0.5, 0.0, 0.0]
    assert feed.reconciler.ids == [2, 1]
    assert feed.attempts == 4
    assert feed.state is ConnectionState.disconnected
    assert connect.urls == ["ws://testserver/motorHub"] * 4
    assert states[:6] == [
        ConnectionState.connecting,
        ConnectionState.backoff_wait,
        ConnectionState.connecting,
        ConnectionState.backoff_wait,
        ConnectionState.connecting,
        ConnectionState.connected,
    ]
    assert states[-1] is ConnectionState.disconnected


def test_view_is_stale_unless_connected() -> None:
    stale_while_streaming: List[bool] = []
    feed: LiveFeed

    def on_change(event: str, item: Any) -> None:
        if event == "reading":
            stale_while_streaming.append(feed.stale)

    feed = LiveFeed(
        CONFIG,
        connect=_connector([FakeSocket([reading_frame(make_reading(1))])]),
        fetch_history=_history([]),
        sleep=RecordingSleep(),
        on_change=on_change,
    )
    assert feed.stale is True

    asyncio.run(feed.run(max_attempts=1))

    assert stale_while_streaming == [False]
    assert feed.stale is True
    assert feed.last_error == "push stream closed by server"


def test_seeds_from_history_and_joins_machine_group() -> None:
    socket = FakeSocket([reading_frame(make_reading(3))])
    history = [
        make_reading(2).model_dump(mode="json", by_alias=True),
        make_reading(1).model_dump(mode="json", by_alias=True),
        {"id": "garbage"},
    ]
    feed = LiveFeed(
        CONFIG,
        machine_id="MOTOR-T",
        connect=_connector([socket]),
        fetch_history=_history(history),
        sleep=RecordingSleep(),
    )

    asyncio.run(feed.run(max_attempts=1))

    assert json.loads(socket.sent[0]) == {"action": "join", "machineId": "MOTOR-T"}
    assert feed.reconciler.ids == [3, 2, 1]
    assert feed.reconciler.dropped == 1


def test_history_failure_keeps_streaming() -> None:
    async def failing_fetch(limit: int) -> List[Dict[str, Any]]:
        raise httpx.ConnectError("history down")

    feed = LiveFeed(
        CONFIG,
        connect=_connector([FakeSocket([reading_frame(make_reading(4))])]),
        fetch_history=failing_fetch,
        sleep=RecordingSleep(),
    )

    asyncio.run(feed.run(max_attempts=1))

    assert feed.reconciler.ids == [4]


def test_stop_event_ends_run() -> None:
    async def scenario() -> LiveFeed:
        stop = asyncio.Event()

        def on_change(event: str, item: Any) -> None:
            if event == "reading":
                stop.set()

        feed = LiveFeed(
            CONFIG,
            connect=_connector(
                [FakeSocket([reading_frame(make_reading(1)), reading_frame(make_reading(2))])]
            ),
            fetch_history=_history([]),
            sleep=RecordingSleep(),
            on_change=on_change,
        )
        await feed.run(stop)
        return feed

    feed = asyncio.run(scenario())

    assert feed.reconciler.ids == [1]
    assert feed.attempts == 1
    assert feed.state is ConnectionState.disconnected


def test_illegal_transition_is_rejected() -> None:
    feed = LiveFeed(CONFIG, connect=_connector([]), fetch_history=_history([]))

    with pytest.raises(RuntimeError):
        feed._transition(ConnectionState.connected)


def test_server_that_closes_at_once_still_backs_off() -> None:
    sleep = RecordingSleep()
    feed = LiveFeed(
        CONFIG,
        connect=_connector([FakeSocket([]) for _ in range(6)]),
        fetch_history=_history([]),
        sleep=sleep,
    )

    asyncio.run(feed.run(max_attempts=6))

    assert sleep.delays == [0.0, 0.5, 1.0, 2.0, 4.0, 4.0]
    assert feed.last_error == "push stream closed by server"


def test_non_json_history_degrades_to_pushes_only() -> None:
    async def garbled_fetch(limit: int) -> List[Dict[str, Any]]:
        return json.loads("<html>maintenance page</html>")

    feed = LiveFeed(
        CONFIG,
        connect=_connector([FakeSocket([reading_frame(make_reading(5))]), FakeSocket([])]),
        fetch_history=garbled_fetch,
        sleep=RecordingSleep(),
    )

    asyncio.run(feed.run(max_attempts=2))

    assert feed.reconciler.ids == [5]
    assert feed.attempts == 2
    assert feed.state is ConnectionState.disconnected
