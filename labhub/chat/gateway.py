"""
Session gateway: bridges one client connection to the registry and store.

Methods are synchronous (they touch the database) and are called from the
WebSocket endpoint through the threadpool, and directly from tests.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from labhub.auth import resolve_identity
from labhub.chat.registry import ChannelRegistry
from labhub.chat.session import ChatSession
from labhub.chat.store import MessageStore
from labhub.db import DbClient, MessageRecord
from labhub.enums import Channel
from labhub.errors import StorageError, ValidationError

logger = logging.getLogger(__name__)


def history_event(channel: str, messages: list[MessageRecord]) -> dict:
    return {
        "event": "history",
        "channel": channel,
        "messages": [message.as_dict() for message in messages],
    }


def delivered_event(message: MessageRecord) -> dict:
    return {"event": "delivered", "message": message.as_dict()}


def error_event(detail: str) -> dict:
    return {"event": "error", "detail": detail}


def _require_channel(channel: Optional[str]) -> str:
    parsed = Channel.parse(channel)
    if parsed is None:
        raise ValidationError(f"unknown channel {channel!r}")
    return parsed.value


class ChatGateway:
    def __init__(
        self,
        db: DbClient,
        store: MessageStore,
        registry: ChannelRegistry,
        *,
        session_secret: Optional[str] = None,
        outbox_size: int = 256,
    ):
        self.db = db
        self.store = store
        self.registry = registry
        self.session_secret = session_secret
        self.outbox_size = outbox_size

    def connect(
        self,
        user_id: Optional[str],
        token: Optional[str] = None,
        *,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> ChatSession:
        """Resolve the handshake identity. Raises AuthError; there is no retry."""
        session = ChatSession(loop=loop, outbox_size=self.outbox_size)
        user = resolve_identity(self.db, user_id, token, self.session_secret)
        session.identify(user)
        logger.info("User connected: %s (%s)", user.name, session.session_id)
        return session

    def join(self, session: ChatSession, channel: Optional[str]) -> list[MessageRecord]:
        """
        Subscribe to `channel` and queue its history snapshot to the session.

        The subscription is taken first so nothing published while the
        history is read is missed. If the read fails, a fresh subscription
        is rolled back and the error propagates.
        """
        channel = _require_channel(channel)
        already_joined = channel in session.channels
        self.registry.subscribe(session, channel)
        try:
            messages = self.store.list(channel)
        except StorageError:
            if not already_joined:
                self.registry.unsubscribe(session, channel)
            raise
        session.offer(history_event(channel, messages))
        return messages

    def leave(self, session: ChatSession, channel: Optional[str]) -> None:
        self.registry.unsubscribe(session, _require_channel(channel))

    def send(
        self, session: ChatSession, channel: Optional[str], content: Optional[str]
    ) -> Optional[MessageRecord]:
        """
        Persist and fan out a message from an identified session.

        Unidentified sessions are ignored. Validation errors propagate.
        """
        if not session.is_identified:
            logger.debug("Ignoring send from unidentified session %r", session)
            return None
        channel = _require_channel(channel)
        message = self.store.append(session.user.user_id, channel, content or "")
        self.registry.publish(channel, delivered_event(message))
        return message

    def disconnect(self, session: ChatSession) -> None:
        self.registry.unsubscribe_all(session)
        session.close()
        if session.user:
            logger.info("User disconnected: %s (%s)", session.user.name, session.session_id)

    def handle(self, session: ChatSession, frame: dict) -> None:
        """
        Dispatch one decoded client frame.

        Validation failures are answered with an error event; storage
        failures are logged and the request dropped.
        """
        event = frame.get("event") if isinstance(frame, dict) else None
        try:
            if event == "join":
                self.join(session, frame.get("channel"))
            elif event == "leave":
                self.leave(session, frame.get("channel"))
            elif event == "send":
                self.send(session, frame.get("channel"), frame.get("content"))
            else:
                raise ValidationError(f"unknown event {event!r}")
        except ValidationError as exc:
            session.offer(error_event(str(exc)))
        except StorageError:
            logger.exception("Storage failure handling %s for %r", event, session)
