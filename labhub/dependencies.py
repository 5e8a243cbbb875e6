"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

import logging

from labhub.auth import seed_roster
from labhub.backup import BackupScheduler, parse_trigger_time, run_backup
from labhub.cache import (
    ClaimLedger,
    HistoryCache,
    InMemoryClaimLedger,
    InMemoryHistoryCache,
    RedisClaimLedger,
    RedisHistoryCache,
)
from labhub.chat.gateway import ChatGateway
from labhub.chat.registry import ChannelRegistry
from labhub.chat.store import MessageStore
from labhub.config import get_settings
from labhub.db import DbClient, InMemoryDbClient, PostgresDbClient
from labhub.storage import InMemoryStorageClient, S3StorageClient, StorageClient

logger = logging.getLogger(__name__)

_db_client: DbClient | None = None
_storage_client: StorageClient | None = None
_history_cache: HistoryCache | None = None
_claim_ledger: ClaimLedger | None = None
_message_store: MessageStore | None = None
_registry: ChannelRegistry | None = None
_gateway: ChatGateway | None = None


def get_db_client() -> DbClient:
    """
    Return a singleton DB client so users, notes and messages persist across requests.
    """
    global _db_client
    if _db_client:
        return _db_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.database_url:
        _db_client = InMemoryDbClient()
    else:
        _db_client = PostgresDbClient(settings.database_url)
    if settings.seed_default_roster:
        seed_roster(_db_client)
    return _db_client


def get_storage_client() -> StorageClient:
    global _storage_client
    if _storage_client:
        return _storage_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.backup_bucket:
        if not settings.use_in_memory_backends:
            logger.warning("BACKUP_BUCKET is not set, chat backups stay in memory")
        _storage_client = InMemoryStorageClient()
    else:
        _storage_client = S3StorageClient(
            bucket=settings.backup_bucket,
            region=settings.s3_region or "",
            endpoint=settings.s3_endpoint,
            access_key_id=settings.aws_access_key_id or "",
            secret_access_key=settings.aws_secret_access_key or "",
            timeout_seconds=settings.backup_upload_timeout_seconds,
        )
    return _storage_client


def get_history_cache() -> HistoryCache:
    global _history_cache
    if _history_cache:
        return _history_cache

    settings = get_settings()
    if settings.redis_url and not settings.use_in_memory_backends:
        _history_cache = RedisHistoryCache(
            url=settings.redis_url, ttl_seconds=settings.history_cache_ttl_seconds
        )
    else:
        _history_cache = InMemoryHistoryCache(
            ttl_seconds=settings.history_cache_ttl_seconds
        )
    return _history_cache


def get_claim_ledger() -> ClaimLedger:
    global _claim_ledger
    if _claim_ledger:
        return _claim_ledger

    settings = get_settings()
    if settings.redis_url and not settings.use_in_memory_backends:
        _claim_ledger = RedisClaimLedger(url=settings.redis_url)
    else:
        _claim_ledger = InMemoryClaimLedger()
    return _claim_ledger


def get_message_store() -> MessageStore:
    global _message_store
    if _message_store:
        return _message_store
    _message_store = MessageStore(get_db_client(), get_history_cache())
    return _message_store


def get_registry() -> ChannelRegistry:
    global _registry
    if _registry:
        return _registry
    _registry = ChannelRegistry()
    return _registry


def get_gateway() -> ChatGateway:
    global _gateway
    if _gateway:
        return _gateway

    settings = get_settings()
    _gateway = ChatGateway(
        get_db_client(),
        get_message_store(),
        get_registry(),
        session_secret=settings.session_secret,
        outbox_size=settings.session_outbox_size,
    )
    return _gateway


def build_backup_scheduler() -> BackupScheduler:
    settings = get_settings()
    store = get_message_store()
    storage = get_storage_client()
    ledger = get_claim_ledger()

    def job():
        return run_backup(store, storage, ledger, prefix=settings.backup_prefix)

    return BackupScheduler(job, parse_trigger_time(settings.backup_time))
