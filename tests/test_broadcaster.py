from __future__ import annotations

import asyncio
from typing import Any, Dict, List

import pytest

from services.broadcaster import BroadcastChannel, SubscriberHandle


def _collector(sink: List[Dict[str, Any]]):
    async def send(message: Dict[str, Any]) -> None:
        sink.append(message)

    return send


def test_publish_reaches_every_subscriber_in_order() -> None:
    async def scenario() -> None:
        channel = BroadcastChannel()
        inboxes: List[List[Dict[str, Any]]] = [[], [], []]
        for inbox in inboxes:
            channel.subscribe(channel.create_handle(_collector(inbox)))

        for index in range(3):
            report = channel.publish({"seq": index})
            assert report.delivered == 3
        await channel.flush()

        for inbox in inboxes:
            assert [message["seq"] for message in inbox] == [0, 1, 2]
        await channel.close()

    asyncio.run(scenario())


def test_group_messages_only_reach_members() -> None:
    async def scenario() -> None:
        channel = BroadcastChannel()
        member_inbox: List[Dict[str, Any]] = []
        other_inbox: List[Dict[str, Any]] = []
        member = channel.subscribe(channel.create_handle(_collector(member_inbox)))
        channel.subscribe(channel.create_handle(_collector(other_inbox)))
        channel.join_group(member, "motor-A")

        channel.publish({"kind": "alert"}, group="motor-A")
        channel.publish({"kind": "alert"}, group="motor-B")
        channel.publish({"kind": "reading"})
        await channel.flush()

        assert member_inbox == [{"kind": "alert"}, {"kind": "reading"}]
        assert other_inbox == [{"kind": "reading"}]
        assert channel.subscribers("motor-A") == [member.id]

        channel.leave_group(member, "motor-A")
        channel.publish({"kind": "alert"}, group="motor-A")
        await channel.flush()
        assert member_inbox[-1] == {"kind": "reading"}
        assert channel.subscribers("motor-A") == []
        await channel.close()

    asyncio.run(scenario())


def test_late_subscriber_receives_nothing_earlier() -> None:
    async def scenario() -> None:
        channel = BroadcastChannel()
        early: List[Dict[str, Any]] = []
        late: List[Dict[str, Any]] = []
        channel.subscribe(channel.create_handle(_collector(early)))
        channel.publish({"seq": 1})
        channel.subscribe(channel.create_handle(_collector(late)))
        channel.publish({"seq": 2})
        await channel.flush()

        assert [message["seq"] for message in early] == [1, 2]
        assert [message["seq"] for message in late] == [2]
        await channel.close()

    asyncio.run(scenario())


def test_slow_subscriber_is_dropped_without_delaying_others() -> None:
    async def scenario() -> None:
        channel = BroadcastChannel(send_timeout=10.0)
        released = asyncio.Event()
        fast_inbox: List[Dict[str, Any]] = []

        async def slow_send(message: Dict[str, Any]) -> None:
            await released.wait()

        slow = channel.subscribe(SubscriberHandle(slow_send, subscriber_id="slow", queue_size=2))
        channel.subscribe(channel.create_handle(_collector(fast_inbox), subscriber_id="fast"))

        channel.publish({"seq": 0})
        await asyncio.sleep(0.01)
        reports = [channel.publish({"seq": index}) for index in range(1, 5)]
        await channel.flush()

        assert [message["seq"] for message in fast_inbox] == [0, 1, 2, 3, 4]
        assert reports[2].dropped == ["slow"]
        assert channel.subscribers() == ["fast"]
        assert channel.failures[-1].subscriber_id == "slow"
        assert slow.groups == set()
        assert slow.closed.is_set()
        assert slow.close_reason == "queue full"
        assert [event.kind for event in channel.events if event.subscriber_id == "slow"][-1] == "dropped"
        released.set()
        await channel.close()

    asyncio.run(scenario())


def test_failing_send_disconnects_only_that_subscriber() -> None:
    async def scenario() -> None:
        channel = BroadcastChannel()
        healthy: List[Dict[str, Any]] = []

        async def broken_send(message: Dict[str, Any]) -> None:
            raise ConnectionResetError("peer went away")

        channel.subscribe(channel.create_handle(broken_send, subscriber_id="broken"))
        channel.subscribe(channel.create_handle(_collector(healthy), subscriber_id="healthy"))

        channel.publish({"seq": 1})
        await channel.flush()
        channel.publish({"seq": 2})
        await channel.flush()

        assert [message["seq"] for message in healthy] == [1, 2]
        assert channel.subscribers() == ["healthy"]
        assert "ConnectionResetError" in channel.failures[-1].reason
        await channel.close()

    asyncio.run(scenario())


def test_send_timeout_disconnects_subscriber() -> None:
    async def scenario() -> None:
        channel = BroadcastChannel(send_timeout=0.05)

        async def stuck_send(message: Dict[str, Any]) -> None:
            await asyncio.sleep(10)

        channel.subscribe(channel.create_handle(stuck_send, subscriber_id="stuck"))
        channel.publish({"seq": 1})
        await channel.flush()

        assert channel.subscriber_count == 0
        assert "timed out" in channel.failures[-1].reason

    asyncio.run(scenario())


def test_group_membership_requires_connection() -> None:
    async def scenario() -> None:
        channel = BroadcastChannel()
        handle = channel.subscribe(channel.create_handle(_collector([])))
        assert channel.unsubscribe(handle, reason="test") is True
        assert channel.unsubscribe(handle) is False

        with pytest.raises(KeyError):
            channel.join_group(handle, "motor-A")

    asyncio.run(scenario())


def test_publish_to_targets_single_subscriber() -> None:
    async def scenario() -> None:
        channel = BroadcastChannel()
        first: List[Dict[str, Any]] = []
        second: List[Dict[str, Any]] = []
        handle = channel.subscribe(channel.create_handle(_collector(first)))
        channel.subscribe(channel.create_handle(_collector(second)))

        channel.publish_to(handle, {"type": "pong"})
        await channel.flush()

        assert first == [{"type": "pong"}]
        assert second == []
        await channel.close()
        assert channel.subscriber_count == 0

    asyncio.run(scenario())
