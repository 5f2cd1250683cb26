from __future__ import annotations

import asyncio
import hashlib
import io
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from minio import Minio
from minio.datatypes import PostPolicy
from minio.error import S3Error

from .config import XraySettings
from .envelope import PresignedPost

logger = logging.getLogger(__name__)


def object_key(data: bytes) -> str:
    """
    Content-addressed key for a frame: sha256 split as ab/cd/rest.

    Identical frames land on the same key, so re-uploads are harmless.
    """
    digest = hashlib.sha256(data).hexdigest()
    return f"{digest[:2]}/{digest[2:4]}/{digest[4:]}"


class ObjectStore:
    """
    S3 compatible storage for frames in which something was detected.

    Uploads run on a worker thread and are never awaited by the response
    path; failures are logged and dropped.
    """

    def __init__(self, client: Minio, bucket: str, region: str = "us-east-1", base_url: str = ""):
        self.client = client
        self.bucket = bucket
        self.region = region
        self.base_url = base_url.rstrip("/")
        self._pending: set[asyncio.Task] = set()

    @classmethod
    def from_settings(cls, cfg: XraySettings) -> Optional["ObjectStore"]:
        """Build a store from settings, or None when storage is not configured."""
        if not cfg.s3_endpoint:
            return None

        client = Minio(
            cfg.s3_endpoint,
            access_key=cfg.s3_access_key,
            secret_key=cfg.s3_secret_key,
            secure=cfg.s3_secure,
            region=cfg.s3_region,
        )
        scheme = "https" if cfg.s3_secure else "http"
        return cls(client, cfg.s3_bucket, region=cfg.s3_region, base_url=f"{scheme}://{cfg.s3_endpoint}")

    def ensure_bucket(self) -> None:
        """Create the bucket if we don't own it yet."""
        if not self.client.bucket_exists(bucket_name=self.bucket):
            logger.info("Creating bucket %s in %s", self.bucket, self.region)
            self.client.make_bucket(bucket_name=self.bucket, location=self.region)

    def put(self, data: bytes) -> str:
        """Upload one frame synchronously and return its key."""
        key = object_key(data)
        self.client.put_object(
            bucket_name=self.bucket,
            object_name=key,
            data=io.BytesIO(data),
            length=len(data),
            content_type="image/jpeg",
        )
        return key

    def save_in_background(self, data: bytes) -> asyncio.Task:
        """Schedule an upload without waiting for it."""
        task = asyncio.get_running_loop().create_task(self._save(data))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _save(self, data: bytes) -> None:
        try:
            key = await asyncio.to_thread(self.put, data)
        except (S3Error, OSError, ValueError) as e:
            logger.error("Unable to save frame to %s: %s", self.bucket, e)
            return
        except Exception:
            # Unreachable endpoint (urllib3 retries exhausted), bad server response, ...
            logger.exception("Unable to save frame to %s", self.bucket)
            return
        logger.debug("Saved frame at %s/%s", self.bucket, key)

    def presigned_post(self, prefix: str, expiry_days: int = 10) -> PresignedPost:
        """
        POST policy letting the client upload objects under prefix itself.
        """
        policy = PostPolicy(self.bucket, datetime.now(timezone.utc) + timedelta(days=expiry_days))
        policy.add_starts_with_condition("key", prefix)
        form_data = self.client.presigned_post_policy(policy)
        return PresignedPost(
            url=f"{self.base_url}/{self.bucket}",
            form_data={str(k): str(v) for k, v in form_data.items()},
        )

    async def drain(self) -> None:
        """Wait for uploads still in flight (used on shutdown)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
