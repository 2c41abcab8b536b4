"""Durable artifact storage in a Supabase Storage bucket.

Uploads replace any existing object under the same key, so a retried stitch
or keyframe upload for the same order overwrites instead of colliding.
"""

import asyncio
import logging
from typing import Optional

from supabase import Client, create_client

from santavid.config import settings
from santavid.errors import ConfigurationError, StorageFailure
from santavid.services.base import StorageSink

logger = logging.getLogger(__name__)


class SupabaseStorageSink(StorageSink):

    def __init__(self, client: Optional[Client] = None, bucket: Optional[str] = None):
        self._client = client
        self._bucket = bucket or settings.storage.bucket

    def _supabase(self) -> Client:
        if self._client is None:
            url = settings.storage.supabase_url
            key = settings.storage.supabase_key
            if not url or not key:
                raise ConfigurationError("storage.supabase_url and storage.supabase_key must be set")
            self._client = create_client(url, key)
        return self._client

    def _upload(self, data: bytes, key: str, content_type: str) -> str:
        bucket = self._supabase().storage.from_(self._bucket)
        bucket.upload(
            path=key,
            file=data,
            file_options={
                "content-type": content_type,
                "cache-control": settings.storage.cache_control,
                "upsert": "true",
            },
        )
        return bucket.get_public_url(key)

    async def store(self, data: bytes, key: str, content_type: str) -> str:
        try:
            # supabase-py storage calls are blocking
            url = await asyncio.to_thread(self._upload, data, key, content_type)
        except ConfigurationError:
            raise
        except Exception as e:
            raise StorageFailure(f"Upload of {key} to bucket {self._bucket} failed: {e}") from e
        logger.info(f"Stored {len(data)} bytes at {self._bucket}/{key}")
        return url
