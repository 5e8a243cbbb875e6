"""
Cache and single-flight ledger abstractions.

Supports an in-memory fallback for tests/local runs and a Redis-backed
implementation for production. Both are advisory: a Redis outage
degrades to cache misses and unguarded (but idempotent) backup uploads.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Optional, Protocol

import redis
from redis import exceptions as redis_exceptions

logger = logging.getLogger(__name__)


class HistoryCache(Protocol):
    """
    Per-channel cache of serialized message history.

    Every invalidation moves the channel's version forward. A fill made
    with a version read before the latest invalidation is rejected, so
    history read before a write can never be cached after it.
    """

    def get(self, channel: str) -> Optional[list[dict]]:
        ...

    def version(self, channel: str) -> Optional[tuple[int, int]]:
        ...

    def set(
        self, channel: str, messages: list[dict], version: Optional[tuple[int, int]]
    ) -> bool:
        ...

    def invalidate(self, channel: Optional[str] = None) -> None:
        ...


class ClaimLedger(Protocol):
    """Records one-shot claims so a keyed job runs at most once per window."""

    def claim(self, key: str, ttl_seconds: int) -> bool:
        ...

    def release(self, key: str) -> None:
        ...


@dataclass
class InMemoryHistoryCache:
    """Dictionary-backed cache for testing/dev."""

    ttl_seconds: int = 300
    entries: dict = field(default_factory=dict)

    def __post_init__(self):
        self._lock = threading.Lock()
        self._epoch = 0
        self._versions: dict[str, int] = {}

    def get(self, channel: str) -> Optional[list[dict]]:
        with self._lock:
            entry = self.entries.get(channel)
            if entry is None:
                return None
            expires_at, messages = entry
            if expires_at < time.monotonic():
                del self.entries[channel]
                return None
            return list(messages)

    def version(self, channel: str) -> tuple[int, int]:
        with self._lock:
            return self._epoch, self._versions.get(channel, 0)

    def set(
        self, channel: str, messages: list[dict], version: Optional[tuple[int, int]]
    ) -> bool:
        with self._lock:
            if version != (self._epoch, self._versions.get(channel, 0)):
                return False
            self.entries[channel] = (
                time.monotonic() + self.ttl_seconds,
                list(messages),
            )
            return True

    def invalidate(self, channel: Optional[str] = None) -> None:
        with self._lock:
            if channel is None:
                self._epoch += 1
                self.entries.clear()
            else:
                self._versions[channel] = self._versions.get(channel, 0) + 1
                self.entries.pop(channel, None)

    def clear(self) -> None:
        self.invalidate()


@dataclass
class InMemoryClaimLedger:
    """Set-backed ledger for testing/dev; claims expire after their TTL."""

    claims: dict = field(default_factory=dict)

    def __post_init__(self):
        self._lock = threading.Lock()

    def claim(self, key: str, ttl_seconds: int) -> bool:
        now = time.monotonic()
        with self._lock:
            expires_at = self.claims.get(key)
            if expires_at is not None and expires_at > now:
                return False
            self.claims[key] = now + ttl_seconds
            return True

    def release(self, key: str) -> None:
        with self._lock:
            self.claims.pop(key, None)


@dataclass
class RedisHistoryCache:
    """
    Redis-backed cache storing each channel's history as a JSON string.

    Versions live in their own keys; fills are applied in a WATCH/MULTI
    transaction so they only land if no invalidation happened since the
    version was read.
    """

    url: str
    ttl_seconds: int = 300
    key_prefix: str = "labhub:history:"
    version_prefix: str = "labhub:history-version:"
    epoch_key: str = "labhub:history-epoch"

    def __post_init__(self):
        self.client = redis.Redis.from_url(self.url)

    def _key(self, channel: str) -> str:
        return f"{self.key_prefix}{channel}"

    def _version_keys(self, channel: str) -> tuple[str, str]:
        return self.epoch_key, f"{self.version_prefix}{channel}"

    def _reconnect(self) -> None:
        # Connection resets can happen on managed Redis.
        self.client = redis.Redis.from_url(self.url)

    @staticmethod
    def _as_version(values) -> tuple[int, int]:
        epoch, current = values
        return int(epoch or 0), int(current or 0)

    def get(self, channel: str) -> Optional[list[dict]]:
        try:
            raw = self.client.get(self._key(channel))
        except redis_exceptions.ConnectionError:
            self._reconnect()
            return None
        if raw is None:
            return None
        return json.loads(raw)

    def version(self, channel: str) -> Optional[tuple[int, int]]:
        try:
            return self._as_version(self.client.mget(*self._version_keys(channel)))
        except redis_exceptions.ConnectionError:
            self._reconnect()
            return None

    def set(
        self, channel: str, messages: list[dict], version: Optional[tuple[int, int]]
    ) -> bool:
        if version is None:
            return False
        version_keys = self._version_keys(channel)
        try:
            with self.client.pipeline() as pipe:
                pipe.watch(*version_keys)
                if self._as_version(pipe.mget(*version_keys)) != tuple(version):
                    pipe.unwatch()
                    return False
                pipe.multi()
                pipe.setex(self._key(channel), self.ttl_seconds, json.dumps(messages))
                pipe.execute()
                return True
        except redis_exceptions.WatchError:
            return False
        except redis_exceptions.ConnectionError:
            self._reconnect()
            return False

    def invalidate(self, channel: Optional[str] = None) -> None:
        try:
            if channel is not None:
                pipe = self.client.pipeline()
                pipe.incr(self._version_keys(channel)[1])
                pipe.delete(self._key(channel))
                pipe.execute()
                return
            self.client.incr(self.epoch_key)
            keys = list(self.client.scan_iter(match=f"{self.key_prefix}*"))
            if keys:
                self.client.delete(*keys)
        except redis_exceptions.ConnectionError:
            logger.warning("Redis unavailable, history cache not invalidated")
            self._reconnect()


@dataclass
class RedisClaimLedger:
    """Redis-backed ledger using SET NX with expiry."""

    url: str
    key_prefix: str = "labhub:claim:"

    def __post_init__(self):
        self.client = redis.Redis.from_url(self.url)

    def claim(self, key: str, ttl_seconds: int) -> bool:
        try:
            return bool(
                self.client.set(f"{self.key_prefix}{key}", "1", nx=True, ex=ttl_seconds)
            )
        except redis_exceptions.ConnectionError:
            # Uploads overwrite a deterministic path, so running unguarded is safe.
            logger.warning("Redis unavailable, proceeding without claim for %s", key)
            self.client = redis.Redis.from_url(self.url)
            return True

    def release(self, key: str) -> None:
        try:
            self.client.delete(f"{self.key_prefix}{key}")
        except redis_exceptions.ConnectionError:
            self.client = redis.Redis.from_url(self.url)
