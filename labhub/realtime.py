"""
WebSocket transport for the chat gateway.

Frames are JSON objects; see `labhub.chat.gateway` for the events.
"""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status
from fastapi.concurrency import run_in_threadpool

from labhub.chat.gateway import ChatGateway, error_event
from labhub.chat.session import ChatSession
from labhub.dependencies import get_gateway
from labhub.errors import AuthError

logger = logging.getLogger(__name__)

router = APIRouter()


async def _pump(websocket: WebSocket, session: ChatSession) -> None:
    while True:
        event = await session.next_event()
        await websocket.send_json(event)


async def _stop_pump(pump: asyncio.Task, session: ChatSession) -> None:
    pump.cancel()
    await asyncio.wait([pump])
    if not pump.cancelled() and pump.exception() is not None:
        logger.debug(
            "Outbox pump for %r ended with an error", session, exc_info=pump.exception()
        )


@router.websocket("/ws/chat")
async def chat_socket(websocket: WebSocket):
    gateway: ChatGateway = get_gateway()
    params = websocket.query_params
    try:
        session = await run_in_threadpool(
            gateway.connect,
            params.get("user_id") or params.get("userId"),
            params.get("token"),
            loop=asyncio.get_running_loop(),
        )
    except AuthError as exc:
        logger.info("Rejected chat connection: %s", exc)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    pump = asyncio.create_task(_pump(websocket, session))
    try:
        while True:
            try:
                frame = await websocket.receive_json()
            except (KeyError, ValueError):
                # Binary frames carry no text; invalid text is not JSON.
                session.offer(error_event("frames must be JSON text"))
                continue
            await run_in_threadpool(gateway.handle, session, frame)
    except WebSocketDisconnect:
        pass
    finally:
        gateway.disconnect(session)
        await _stop_pump(pump, session)
