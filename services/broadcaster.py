"""Fan-out of push messages to connected subscribers."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Set, Union
from uuid import uuid4

from services.errors import BroadcastPartialFailure
from settings import get_settings

logger = logging.getLogger(__name__)

Message = Dict[str, Any]
SendFn = Callable[[Message], Awaitable[None]]


class SubscriberHandle:
    """One connected subscriber: a transport ``send`` plus its private queue."""

    def __init__(self, send: SendFn, subscriber_id: Optional[str] = None, queue_size: int = 100) -> None:
        self.id = subscriber_id or uuid4().hex
        self.send = send
        self.queue: asyncio.Queue[Message] = asyncio.Queue(maxsize=queue_size)
        self.groups: Set[str] = set()
        self.task: Optional[asyncio.Task[None]] = None
        self.closed = asyncio.Event()
        self.close_reason: Optional[str] = None

    def __repr__(self) -> str:
        return f"SubscriberHandle(id={self.id!r}, groups={sorted(self.groups)!r})"


HandleRef = Union[SubscriberHandle, str]


@dataclass(frozen=True)
class ChannelEvent:
    kind: str
    subscriber_id: str
    at: datetime
    detail: Optional[str] = None


@dataclass
class PublishReport:
    """Outcome of enqueueing one message; delivery itself happens later."""

    enqueued: List[str] = field(default_factory=list)
    dropped: List[str] = field(default_factory=list)

    @property
    def delivered(self) -> int:
        return len(self.enqueued)


class BroadcastChannel:
    """Best-effort, at-most-once fan-out with optional named groups.

    ``publish`` never awaits a subscriber.  Each subscriber drains its own
    bounded queue from a dedicated task, so a slow peer only ever fills its
    own queue; once full it is dropped.  A send that fails or exceeds
    ``send_timeout`` disconnects that subscriber alone.
    """

    def __init__(self, queue_size: int = 100, send_timeout: float = 5.0, event_log_size: int = 200) -> None:
        self.queue_size = queue_size
        self.send_timeout = send_timeout
        self._subscribers: Dict[str, SubscriberHandle] = {}
        self._groups: Dict[str, Set[str]] = {}
        self.events: Deque[ChannelEvent] = deque(maxlen=event_log_size)
        self.failures: Deque[BroadcastPartialFailure] = deque(maxlen=event_log_size)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribers(self, group: Optional[str] = None) -> List[str]:
        if group is None:
            return list(self._subscribers)
        return sorted(self._groups.get(group, set()))

    def create_handle(self, send: SendFn, subscriber_id: Optional[str] = None) -> SubscriberHandle:
        return SubscriberHandle(send, subscriber_id=subscriber_id, queue_size=self.queue_size)

    def subscribe(self, handle: SubscriberHandle) -> SubscriberHandle:
        if handle.id in self._subscribers:
            return self._subscribers[handle.id]
        self._subscribers[handle.id] = handle
        handle.task = asyncio.get_running_loop().create_task(
            self._pump(handle), name=f"subscriber-{handle.id}"
        )
        self._record("connected", handle.id)
        logger.info("Subscriber connected", extra={"subscriber_id": handle.id})
        return handle

    def unsubscribe(self, handle: HandleRef, reason: Optional[str] = None) -> bool:
        subscriber_id = _resolve_id(handle)
        removed = self._subscribers.pop(subscriber_id, None)
        if removed is None:
            return False
        for group in list(removed.groups):
            self._discard_member(group, subscriber_id)
        removed.groups.clear()
        if removed.task is not None and removed.task is not _current_task():
            removed.task.cancel()
        removed.close_reason = reason
        removed.closed.set()
        self._record("disconnected", subscriber_id, reason)
        logger.info("Subscriber disconnected", extra={"subscriber_id": subscriber_id, "reason": reason})
        return True

    def join_group(self, handle: HandleRef, group: str) -> None:
        subscriber = self._require(handle)
        subscriber.groups.add(group)
        self._groups.setdefault(group, set()).add(subscriber.id)
        self._record("joined", subscriber.id, group)
        logger.info("Subscriber joined group", extra={"subscriber_id": subscriber.id, "group": group})

    def leave_group(self, handle: HandleRef, group: str) -> None:
        subscriber = self._require(handle)
        subscriber.groups.discard(group)
        self._discard_member(group, subscriber.id)
        self._record("left", subscriber.id, group)
        logger.info("Subscriber left group", extra={"subscriber_id": subscriber.id, "group": group})

    def publish(self, message: Message, group: Optional[str] = None) -> PublishReport:
        """Queue ``message`` for every subscriber, or only for members of ``group``."""

        report = PublishReport()
        if group is None:
            targets = list(self._subscribers.values())
        else:
            targets = [self._subscribers[sid] for sid in self._groups.get(group, ()) if sid in self._subscribers]

        for handle in targets:
            self._enqueue(handle, message, report)
        return report

    def publish_to(self, handle: HandleRef, message: Message) -> PublishReport:
        """Queue ``message`` for a single subscriber, behind anything already queued."""

        report = PublishReport()
        subscriber = self._subscribers.get(_resolve_id(handle))
        if subscriber is not None:
            self._enqueue(subscriber, message, report)
        return report

    async def flush(self) -> None:
        """Wait until every queued message has been handed to its transport."""

        await asyncio.gather(
            *(handle.queue.join() for handle in list(self._subscribers.values())),
        )

    async def close(self) -> None:
        tasks = [handle.task for handle in self._subscribers.values() if handle.task is not None]
        for subscriber_id in list(self._subscribers):
            self.unsubscribe(subscriber_id, reason="channel closed")
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _pump(self, handle: SubscriberHandle) -> None:
        while True:
            message = await handle.queue.get()
            try:
                await asyncio.wait_for(handle.send(message), timeout=self.send_timeout)
            except asyncio.CancelledError:
                raise
            except asyncio.TimeoutError:
                self._fail(handle, f"send timed out after {self.send_timeout}s")
                return
            except Exception as exc:  # noqa: BLE001 - any transport error ends this subscriber only
                self._fail(handle, f"{type(exc).__name__}: {exc}")
                return
            finally:
                handle.queue.task_done()

    def _enqueue(self, handle: SubscriberHandle, message: Message, report: PublishReport) -> None:
        try:
            handle.queue.put_nowait(message)
        except asyncio.QueueFull:
            report.dropped.append(handle.id)
            self._fail(handle, "queue full")
        else:
            report.enqueued.append(handle.id)

    def _fail(self, handle: SubscriberHandle, reason: str) -> None:
        failure = BroadcastPartialFailure(handle.id, reason)
        self.failures.append(failure)
        logger.warning(
            "Dropping unresponsive subscriber",
            extra={"subscriber_id": handle.id, "reason": reason},
        )
        self._drain(handle)
        self.unsubscribe(handle, reason=reason)
        self._record("dropped", handle.id, reason)

    @staticmethod
    def _drain(handle: SubscriberHandle) -> None:
        while True:
            try:
                handle.queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            handle.queue.task_done()

    def _require(self, handle: HandleRef) -> SubscriberHandle:
        subscriber_id = _resolve_id(handle)
        try:
            return self._subscribers[subscriber_id]
        except KeyError:
            raise KeyError(f"Subscriber {subscriber_id} is not connected.") from None

    def _discard_member(self, group: str, subscriber_id: str) -> None:
        members = self._groups.get(group)
        if members is None:
            return
        members.discard(subscriber_id)
        if not members:
            del self._groups[group]

    def _record(self, kind: str, subscriber_id: str, detail: Optional[str] = None) -> None:
        self.events.append(
            ChannelEvent(kind=kind, subscriber_id=subscriber_id, at=datetime.now(timezone.utc), detail=detail)
        )


def _resolve_id(handle: HandleRef) -> str:
    return handle if isinstance(handle, str) else handle.id


def _current_task() -> Optional[asyncio.Task[Any]]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


@lru_cache
def build_default_channel() -> BroadcastChannel:
    settings = get_settings()
    return BroadcastChannel(
        queue_size=settings.broadcast_queue_size,
        send_timeout=settings.broadcast_send_timeout,
    )
