"""
Storage abstraction for S3-compatible object storage and in-memory testing.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol
import json

import boto3
from botocore.config import Config


class StorageClient(Protocol):
    """Defines the operations the backup job needs from object storage."""

    def upload_json(self, path: str, payload: dict) -> None:
        ...

    def get_bytes(self, path: str) -> bytes:
        ...


@dataclass
class InMemoryStorageClient:
    """Test double for storage interactions."""

    stored_objects: dict = None

    def __post_init__(self):
        if self.stored_objects is None:
            self.stored_objects = {}

    def upload_json(self, path: str, payload: dict) -> None:
        # Use JSON string to mimic real upload behavior
        self.stored_objects[path] = json.loads(json.dumps(payload, default=str))

    def get_bytes(self, path: str) -> bytes:
        stored = self.stored_objects.get(path)
        if stored is None:
            raise FileNotFoundError(path)
        return json.dumps(stored, default=str).encode("utf-8")


@dataclass
class S3StorageClient:
    """
    S3-compatible storage client (AWS S3, MinIO, Tencent COS, ...).

    Requests are bounded by `timeout_seconds` and never retried client-side;
    callers decide what a failed upload means.
    """

    bucket: str
    region: str = ""
    endpoint: Optional[str] = None
    access_key_id: str = ""
    secret_access_key: str = ""
    timeout_seconds: float = 30.0

    def __post_init__(self):
        config = Config(
            signature_version="s3v4",
            connect_timeout=self.timeout_seconds,
            read_timeout=self.timeout_seconds,
            retries={"max_attempts": 1, "mode": "standard"},
        )
        self._client = boto3.client(
            "s3",
            endpoint_url=self.endpoint or None,
            region_name=self.region or None,
            aws_access_key_id=self.access_key_id or None,
            aws_secret_access_key=self.secret_access_key or None,
            config=config,
        )

    def upload_json(self, path: str, payload: dict) -> None:
        body = json.dumps(payload, indent=2, default=str).encode("utf-8")
        self._client.put_object(
            Bucket=self.bucket,
            Key=path,
            Body=body,
            ContentType="application/json",
        )

    def get_bytes(self, path: str) -> bytes:
        response = self._client.get_object(Bucket=self.bucket, Key=path)
        return response["Body"].read()
