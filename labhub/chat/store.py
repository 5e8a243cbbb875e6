"""
Message store: the durable, ordered chat log with a read-through cache.

The database is the single source of truth. The cache only ever holds
what the database returned and is invalidated on every write to a
channel.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from labhub.cache import HistoryCache
from labhub.db import DbClient, MessageRecord, UserRecord
from labhub.enums import Channel, MessageType, Role
from labhub.errors import ValidationError

logger = logging.getLogger(__name__)


def _record_from_dict(payload: dict) -> MessageRecord:
    sender = payload.get("sender")
    return MessageRecord(
        message_id=payload["id"],
        sender_id=payload["senderId"],
        content=payload["content"],
        channel=payload["channel"],
        message_type=MessageType(payload["messageType"]),
        created_at=datetime.fromisoformat(payload["createdAt"]).timestamp(),
        sender=UserRecord(
            user_id=sender["id"], name=sender["name"], role=Role(sender["role"])
        )
        if sender
        else None,
    )


class MessageStore:
    def __init__(self, db: DbClient, cache: Optional[HistoryCache] = None):
        self.db = db
        self.cache = cache

    def _invalidate(self, channel: Optional[str]) -> None:
        if self.cache is not None:
            self.cache.invalidate(channel)

    def append(
        self,
        sender_id: str,
        channel: str,
        content: str,
        message_type: MessageType | str = MessageType.TEXT,
    ) -> MessageRecord:
        """
        Persist a message and return the stored record with its sender resolved.

        Raises ValidationError (store unchanged) when the sender is unknown,
        a field is empty, or channel/type are not enumerated values.
        """
        if not content or not content.strip():
            raise ValidationError("content is required")
        if not channel:
            raise ValidationError("channel is required")
        if Channel.parse(channel) is None:
            raise ValidationError(f"unknown channel {channel!r}")
        try:
            message_type = MessageType(message_type)
        except ValueError:
            raise ValidationError(f"unknown message type {message_type!r}")
        if not sender_id or self.db.get_user(sender_id) is None:
            raise ValidationError(f"unknown sender {sender_id!r}")

        record = self.db.append_message(sender_id, channel, content, message_type)
        self._invalidate(channel)
        logger.debug("Stored message %s in %s", record.message_id, channel)
        return record

    def list(self, channel: str) -> list[MessageRecord]:
        """All messages for `channel` in creation order. Raises StorageError on I/O failure."""
        if self.cache is not None:
            cached = self.cache.get(channel)
            if cached is not None:
                return [_record_from_dict(item) for item in cached]

        if self.cache is None:
            return self.db.list_messages(channel)
        version = self.cache.version(channel)
        records = self.db.list_messages(channel)
        if not self.cache.set(channel, [record.as_dict() for record in records], version):
            logger.debug("Discarded stale history fill for %s", channel)
        return records

    def list_all(self) -> dict[str, list[MessageRecord]]:
        return {channel.value: self.list(channel.value) for channel in Channel}

    def count(self, channel: Optional[str] = None) -> int:
        return self.db.count_messages(channel)

    def clear(self, channel: Optional[str] = None) -> int:
        """Delete every message, or only `channel`'s. Irreversible."""
        removed = self.db.clear_messages(channel)
        self._invalidate(channel)
        logger.info("Cleared %d messages from %s", removed, channel or "all channels")
        return removed
