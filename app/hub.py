"""WebSocket push endpoint backed by the broadcast channel."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, status

from services.broadcaster import BroadcastChannel, SubscriberHandle, build_default_channel
from services.coordinator import machine_group

logger = logging.getLogger(__name__)

router = APIRouter()


def get_channel() -> BroadcastChannel:
    return build_default_channel()


def _handle_command(channel: BroadcastChannel, handle: SubscriberHandle, frame: Any) -> Dict[str, Any]:
    if not isinstance(frame, dict):
        return {"type": "error", "detail": "Expected a JSON object."}
    action = frame.get("action")
    if action == "ping":
        return {"type": "pong"}
    if action in {"join", "leave"}:
        machine_id = frame.get("machineId")
        if not isinstance(machine_id, str) or not machine_id.strip():
            return {"type": "error", "detail": "machineId is required."}
        group = machine_group(machine_id.strip())
        try:
            if action == "join":
                channel.join_group(handle, group)
                return {"type": "joined", "group": group}
            channel.leave_group(handle, group)
        except KeyError as exc:
            return {"type": "error", "detail": exc.args[0]}
        return {"type": "left", "group": group}
    return {"type": "error", "detail": f"Unknown action {action!r}."}


@router.websocket("/motorHub")
async def motor_hub(
    websocket: WebSocket,
    channel: BroadcastChannel = Depends(get_channel),
) -> None:
    await websocket.accept()
    handle = channel.subscribe(channel.create_handle(websocket.send_json))
    dropped = asyncio.ensure_future(handle.closed.wait())
    try:
        while True:
            receiving = asyncio.ensure_future(websocket.receive_json())
            await asyncio.wait({receiving, dropped}, return_when=asyncio.FIRST_COMPLETED)
            if not receiving.done():
                receiving.cancel()
                await _close_dropped(websocket, handle)
                return
            try:
                frame = receiving.result()
            except ValueError:
                reply: Dict[str, Any] = {"type": "error", "detail": "Malformed JSON frame."}
            else:
                reply = _handle_command(channel, handle, frame)
            # Replies go through the queue so they stay ordered with pushed readings.
            channel.publish_to(handle, reply)
    except WebSocketDisconnect:
        pass
    finally:
        dropped.cancel()
        channel.unsubscribe(handle, reason="client disconnected")


async def _close_dropped(websocket: WebSocket, handle: SubscriberHandle) -> None:
    """End the connection of a subscriber the channel gave up on."""

    reason = handle.close_reason or "subscriber dropped"
    logger.info("Closing dropped subscriber", extra={"subscriber_id": handle.id, "reason": reason})
    try:
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR, reason=reason[:120])
    except (RuntimeError, OSError, WebSocketDisconnect) as exc:
        logger.debug("Dropped subscriber already gone", extra={"subscriber_id": handle.id, "reason": str(exc)})
