import json
import unittest
from datetime import datetime, time, timedelta, timezone
from unittest.mock import MagicMock

from labhub.backup import (
    BackupScheduler,
    build_snapshot,
    next_trigger_after,
    parse_trigger_time,
    run_backup,
    snapshot_path,
)
from labhub.cache import InMemoryClaimLedger
from labhub.chat.store import MessageStore
from labhub.db import InMemoryDbClient, UserRecord
from labhub.storage import InMemoryStorageClient

NOW = datetime(2025, 3, 14, 2, 0, tzinfo=timezone.utc)


class FakeTimer:
    def __init__(self, delay, fn):
        self.delay = delay
        self.fn = fn
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True


class TriggerTimeTests(unittest.TestCase):
    def test_parse_trigger_time(self):
        self.assertEqual(parse_trigger_time("02:00"), time(2, 0))
        self.assertEqual(parse_trigger_time("23:45"), time(23, 45))

    def test_next_trigger_later_today(self):
        now = datetime(2025, 3, 14, 1, 30)
        self.assertEqual(next_trigger_after(now, time(2, 0)), datetime(2025, 3, 14, 2, 0))

    def test_next_trigger_is_strictly_after_now(self):
        now = datetime(2025, 3, 14, 2, 0)
        self.assertEqual(next_trigger_after(now, time(2, 0)), datetime(2025, 3, 15, 2, 0))

    def test_next_trigger_tomorrow(self):
        now = datetime(2025, 3, 14, 2, 0, 1)
        self.assertEqual(next_trigger_after(now, time(2, 0)), datetime(2025, 3, 15, 2, 0))


class RunBackupTests(unittest.TestCase):
    def setUp(self):
        self.db = InMemoryDbClient()
        self.db.add_user(UserRecord(user_id="1", name="Samayank"))
        self.db.add_user(UserRecord(user_id="2", name="Sarthak"))
        self.store = MessageStore(self.db)
        self.storage = InMemoryStorageClient()
        self.ledger = InMemoryClaimLedger()
        self.store.append("1", "imaging", "CT batch 1 segmented")
        self.store.append("2", "imaging", "CT batch 2 segmented")
        self.store.append("2", "imaging", "QC done")
        self.store.append("1", "genomics", "RNA-seq aligned")

    def test_one_snapshot_per_non_empty_channel(self):
        report = run_backup(self.store, self.storage, self.ledger, now=NOW, prefix="backups")

        self.assertEqual(
            sorted(report.uploaded),
            [
                "backups/chat-backup-genomics-2025-03-14.json",
                "backups/chat-backup-imaging-2025-03-14.json",
            ],
        )
        self.assertEqual(len(self.storage.stored_objects), 2)
        imaging = json.loads(
            self.storage.get_bytes("backups/chat-backup-imaging-2025-03-14.json")
        )
        self.assertEqual(imaging["channel"], "imaging")
        self.assertEqual(imaging["messagesCount"], 3)
        self.assertEqual(imaging["timestamp"], NOW.isoformat())
        self.assertEqual(imaging["messages"][0]["sender"], "Samayank")
        self.assertEqual(imaging["messages"][2]["content"], "QC done")
        self.assertEqual(imaging["messages"][0]["messageType"], "text")
        genomics = self.storage.stored_objects[
            "backups/chat-backup-genomics-2025-03-14.json"
        ]
        self.assertEqual(genomics["messagesCount"], 1)

    def test_second_run_same_day_uploads_nothing(self):
        run_backup(self.store, self.storage, self.ledger, now=NOW)
        again = run_backup(
            self.store, self.storage, self.ledger, now=NOW + timedelta(minutes=1)
        )
        self.assertEqual(again.uploaded, [])
        self.assertEqual(sorted(again.skipped), ["genomics", "imaging"])

        next_day = run_backup(
            self.store, self.storage, self.ledger, now=NOW + timedelta(days=1)
        )
        self.assertEqual(len(next_day.uploaded), 2)

    def test_upload_failure_is_logged_and_released(self):
        storage = MagicMock()
        storage.upload_json.side_effect = [ConnectionError("unreachable"), None]

        with self.assertLogs("labhub.backup", level="ERROR") as logs:
            report = run_backup(self.store, storage, self.ledger, now=NOW)

        self.assertEqual(len(report.failed), 1)
        self.assertEqual(len(report.uploaded), 1)
        self.assertIn("Chat backup failed", logs.output[0])
        retry = run_backup(self.store, InMemoryStorageClient(), self.ledger, now=NOW)
        self.assertEqual(retry.failed, [])
        self.assertEqual(len(retry.uploaded), 1)

    def test_empty_store_writes_nothing(self):
        self.store.clear()
        report = run_backup(self.store, self.storage, self.ledger, now=NOW)
        self.assertEqual(report.uploaded, [])
        self.assertEqual(self.storage.stored_objects, {})

    def test_snapshot_helpers(self):
        self.assertEqual(
            snapshot_path("", "general", NOW.date()),
            "chat-backup-general-2025-03-14.json",
        )
        snapshot = build_snapshot("general", [], NOW)
        self.assertEqual(snapshot["messagesCount"], 0)
        self.assertEqual(snapshot["messages"], [])


class BackupSchedulerTests(unittest.TestCase):
    def setUp(self):
        self.timers = []
        self.now = datetime(2025, 3, 14, 1, 0)

        def factory(delay, fn):
            timer = FakeTimer(delay, fn)
            self.timers.append(timer)
            return timer

        self.job = MagicMock()
        self.scheduler = BackupScheduler(
            self.job, time(2, 0), clock=lambda: self.now, timer_factory=factory
        )

    def test_start_arms_single_shot_for_next_trigger(self):
        self.scheduler.start()
        [timer] = self.timers
        self.assertTrue(timer.started)
        self.assertTrue(timer.daemon)
        self.assertEqual(timer.delay, 3600)
        self.assertEqual(self.scheduler.next_run, datetime(2025, 3, 14, 2, 0))

    def test_restart_replaces_the_armed_timer(self):
        self.scheduler.start()
        self.scheduler.start()
        first, second = self.timers
        self.assertTrue(first.cancelled)
        self.assertFalse(second.cancelled)
        self.assertTrue(second.started)

    def test_fire_runs_job_and_rearms_for_next_day(self):
        self.scheduler.start()
        self.now = datetime(2025, 3, 14, 2, 0, 5)
        self.timers[0].fn()
        self.job.assert_called_once()
        self.assertEqual(len(self.timers), 2)
        self.assertEqual(self.scheduler.next_run, datetime(2025, 3, 15, 2, 0))

    def test_job_failure_keeps_schedule(self):
        self.job.side_effect = RuntimeError("boom")
        self.scheduler.start()
        with self.assertLogs("labhub.backup", level="ERROR"):
            self.timers[0].fn()
        self.assertEqual(len(self.timers), 2)
        self.assertTrue(self.scheduler.running)

    def test_stop_cancels_and_does_not_rearm(self):
        self.scheduler.start()
        self.scheduler.stop()
        self.assertTrue(self.timers[0].cancelled)
        self.timers[0].fn()
        self.assertEqual(len(self.timers), 1)
        self.assertFalse(self.scheduler.running)


if __name__ == "__main__":
    unittest.main()
