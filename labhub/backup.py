"""
Daily chat backup to external object storage.

`run_backup` writes one JSON snapshot per non-empty channel, named by
channel and date. `BackupScheduler` computes the next trigger instant
and arms a single-shot timer for it, re-arming after every run.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import date, datetime, time as dt_time, timedelta
from typing import Callable, Optional

from labhub.cache import ClaimLedger
from labhub.chat.store import MessageStore
from labhub.db import MessageRecord, iso_timestamp
from labhub.enums import Channel
from labhub.errors import BackupError, StorageError
from labhub.storage import StorageClient

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "chat-backups"
# Claims outlive the day they guard so a late double-fire is still caught.
CLAIM_TTL_SECONDS = 36 * 3600


@dataclass
class BackupReport:
    day: date
    uploaded: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


def parse_trigger_time(value: str) -> dt_time:
    """Parse an `HH:MM` string."""
    hour, _, minute = value.partition(":")
    return dt_time(hour=int(hour), minute=int(minute or 0))


def next_trigger_after(now: datetime, trigger_time: dt_time) -> datetime:
    """The first instant strictly after `now` at `trigger_time` wall-clock."""
    candidate = now.replace(
        hour=trigger_time.hour,
        minute=trigger_time.minute,
        second=0,
        microsecond=0,
    )
    if candidate <= now:
        candidate += timedelta(days=1)
    return candidate


def snapshot_path(prefix: str, channel: str, day: date) -> str:
    name = f"chat-backup-{channel}-{day.isoformat()}.json"
    return f"{prefix.rstrip('/')}/{name}" if prefix else name


def build_snapshot(
    channel: str, messages: list[MessageRecord], generated_at: datetime
) -> dict:
    return {
        "channel": channel,
        "timestamp": generated_at.isoformat(),
        "messagesCount": len(messages),
        "messages": [
            {
                "sender": message.sender.name if message.sender else None,
                "content": message.content,
                "messageType": message.message_type.value,
                "createdAt": iso_timestamp(message.created_at),
            }
            for message in messages
        ],
    }


def _upload(storage: StorageClient, path: str, payload: dict) -> None:
    try:
        storage.upload_json(path, payload)
    except Exception as exc:
        raise BackupError(f"upload of {path} failed: {exc}") from exc


def run_backup(
    store: MessageStore,
    storage: StorageClient,
    ledger: ClaimLedger,
    *,
    now: Optional[datetime] = None,
    prefix: str = DEFAULT_PREFIX,
) -> BackupReport:
    """
    Snapshot every non-empty channel. Never raises for upload failures.

    Each (date, channel) is claimed in `ledger` first; an existing claim
    means another run already handled it today. A failed upload releases
    its claim and is not retried here.
    """
    now = now or datetime.now().astimezone()
    report = BackupReport(day=now.date())
    for channel in Channel:
        try:
            messages = store.list(channel.value)
        except StorageError:
            logger.exception("Backup could not read channel %s", channel.value)
            report.failed.append(channel.value)
            continue
        if not messages:
            continue

        claim_key = f"backup:{report.day.isoformat()}:{channel.value}"
        if not ledger.claim(claim_key, CLAIM_TTL_SECONDS):
            logger.info("Backup for %s already done today, skipping", channel.value)
            report.skipped.append(channel.value)
            continue

        path = snapshot_path(prefix, channel.value, report.day)
        try:
            _upload(storage, path, build_snapshot(channel.value, messages, now))
        except BackupError as exc:
            logger.error("Chat backup failed: %s", exc)
            ledger.release(claim_key)
            report.failed.append(channel.value)
            continue
        logger.info("Chat backup uploaded: %s (%d messages)", path, len(messages))
        report.uploaded.append(path)
    return report


class BackupScheduler:
    """
    Runs `job` once a day at `trigger_time` on a daemon timer thread.

    The job shares no lock with request handling. Exceptions are logged
    and the next day's run is still scheduled.
    """

    def __init__(
        self,
        job: Callable[[], object],
        trigger_time: dt_time = dt_time(hour=2),
        *,
        clock: Callable[[], datetime] = lambda: datetime.now().astimezone(),
        timer_factory: Callable[..., threading.Timer] = threading.Timer,
    ):
        self.job = job
        self.trigger_time = trigger_time
        self.clock = clock
        self.timer_factory = timer_factory
        self.next_run: Optional[datetime] = None
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()
        self._stopped = True

    @property
    def running(self) -> bool:
        return not self._stopped

    def start(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._stopped = False
            self._arm()

    def stop(self) -> None:
        with self._lock:
            self._stopped = True
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def _arm(self) -> None:
        now = self.clock()
        self.next_run = next_trigger_after(now, self.trigger_time)
        delay = (self.next_run - now).total_seconds()
        self._timer = self.timer_factory(delay, self._fire)
        self._timer.daemon = True
        self._timer.start()
        logger.info("Next chat backup at %s", self.next_run.isoformat())

    def _fire(self) -> None:
        try:
            self.job()
        except Exception:
            logger.exception("Scheduled chat backup failed")
        with self._lock:
            if not self._stopped:
                self._arm()
