"""
Per-connection chat session state.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import uuid
from typing import Optional

from labhub.db import UserRecord

logger = logging.getLogger(__name__)


class SessionState(enum.Enum):
    CONNECTING = "CONNECTING"
    IDENTIFIED = "IDENTIFIED"
    DISCONNECTED = "DISCONNECTED"


class ChatSession:
    """
    One connected client between connect and disconnect.

    Outbound events go through a bounded asyncio.Queue owned by the
    connection's event loop. `offer` may be called from any thread; offers
    from outside the loop are marshalled onto it. A full outbox drops the
    event for this session only.
    """

    def __init__(
        self,
        user: Optional[UserRecord] = None,
        *,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        outbox_size: int = 256,
    ):
        self.session_id = uuid.uuid4().hex
        self.user = user
        self.channels: set[str] = set()
        self.state = SessionState.IDENTIFIED if user else SessionState.CONNECTING
        self._loop = loop
        self._outbox: asyncio.Queue = asyncio.Queue(maxsize=outbox_size)
        self.dropped = 0

    def __repr__(self) -> str:
        name = self.user.name if self.user else "?"
        return f"ChatSession({self.session_id[:8]}, {name}, {self.state.value})"

    @property
    def is_identified(self) -> bool:
        return self.state is SessionState.IDENTIFIED and self.user is not None

    @property
    def is_closed(self) -> bool:
        return self.state is SessionState.DISCONNECTED

    def identify(self, user: UserRecord) -> None:
        self.user = user
        self.state = SessionState.IDENTIFIED

    def close(self) -> None:
        self.state = SessionState.DISCONNECTED
        self.channels.clear()

    def offer(self, event: dict) -> bool:
        """Queue `event` for delivery. Returns False once the session is closed."""
        if self.is_closed:
            return False
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if self._loop is None or running is self._loop:
            self._enqueue(event)
        else:
            try:
                self._loop.call_soon_threadsafe(self._enqueue, event)
            except RuntimeError:
                # Loop already closed: the connection is gone.
                self.close()
                return False
        return True

    def _enqueue(self, event: dict) -> None:
        try:
            self._outbox.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(
                "Outbox full for %r, dropped %s event", self, event.get("event")
            )

    async def next_event(self) -> dict:
        return await self._outbox.get()

    def drain(self) -> list[dict]:
        """Return and remove every queued event without waiting."""
        events = []
        while True:
            try:
                events.append(self._outbox.get_nowait())
            except asyncio.QueueEmpty:
                return events
