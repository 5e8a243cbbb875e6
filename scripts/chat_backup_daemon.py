"""
Daemon that snapshots chat history to object storage once a day.

Use this when the API runs with BACKUP_ENABLED=false (e.g. several API
workers) so exactly one process owns the schedule.
"""

from __future__ import annotations

import argparse
import logging
import sys
import threading
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from labhub.backup import BackupScheduler, parse_trigger_time, run_backup
from labhub.config import get_settings
from labhub.dependencies import (
    get_claim_ledger,
    get_message_store,
    get_storage_client,
)

logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="Daily chat backup daemon")
    parser.add_argument(
        "--at",
        type=str,
        default=None,
        help="Trigger time as HH:MM local time (defaults to BACKUP_TIME)",
    )
    parser.add_argument(
        "--prefix",
        type=str,
        default=None,
        help="Destination prefix inside the bucket (defaults to BACKUP_PREFIX)",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single backup now and exit",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
        datefmt="%m/%d/%Y %I:%M:%S %p",
    )

    settings = get_settings()
    store = get_message_store()
    storage = get_storage_client()
    ledger = get_claim_ledger()
    prefix = args.prefix if args.prefix is not None else settings.backup_prefix

    def job():
        report = run_backup(store, storage, ledger, prefix=prefix)
        logger.info(
            "Backup complete: %d uploaded, %d skipped, %d failed",
            len(report.uploaded),
            len(report.skipped),
            len(report.failed),
        )
        return report

    if args.once:
        report = job()
        return 1 if report.failed else 0

    scheduler = BackupScheduler(job, parse_trigger_time(args.at or settings.backup_time))
    scheduler.start()
    try:
        threading.Event().wait()
    except KeyboardInterrupt:
        logger.info("Stopping backup daemon")
    finally:
        scheduler.stop()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
