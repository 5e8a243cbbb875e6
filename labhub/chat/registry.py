"""
Channel registry: which sessions listen to which channel, and fan-out.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from typing import Dict, Set

from labhub.chat.session import ChatSession

logger = logging.getLogger(__name__)


class ChannelRegistry:
    """
    Maps channel name to its subscribed sessions.

    Subscriber sets are mutated from many request threads, so every
    mutation holds `_lock`. Delivery happens outside the lock on a
    snapshot; sessions that closed in the meantime are pruned.
    """

    def __init__(self):
        self._channels: Dict[str, Set[ChatSession]] = defaultdict(set)
        self._lock = threading.Lock()

    def subscribe(self, session: ChatSession, channel: str) -> None:
        with self._lock:
            self._channels[channel].add(session)
            session.channels.add(channel)

    def unsubscribe(self, session: ChatSession, channel: str) -> None:
        with self._lock:
            members = self._channels.get(channel)
            if members is not None:
                members.discard(session)
                if not members:
                    del self._channels[channel]
            session.channels.discard(channel)

    def unsubscribe_all(self, session: ChatSession) -> None:
        with self._lock:
            for channel in list(self._channels):
                members = self._channels[channel]
                members.discard(session)
                if not members:
                    del self._channels[channel]
            session.channels.clear()

    def subscribers(self, channel: str) -> list[ChatSession]:
        with self._lock:
            return list(self._channels.get(channel, ()))

    def channels(self) -> list[str]:
        with self._lock:
            return sorted(self._channels)

    def publish(self, channel: str, event: dict) -> int:
        """Offer `event` to every subscriber of `channel`; returns deliveries queued."""
        delivered = 0
        for session in self.subscribers(channel):
            if session.offer(event):
                delivered += 1
            else:
                logger.debug("Pruning closed session %r from %s", session, channel)
                self.unsubscribe(session, channel)
        return delivered
