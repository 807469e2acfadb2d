"""Vercel Blob storage cleanup for derived landing-page assets such as screenshots"""

import logging
from typing import Iterable, Optional

import httpx

from deployment_config import DeploymentConfig, get_deployment_config

logger = logging.getLogger(__name__)

BLOB_API_URL = "https://blob.vercel-storage.com"
BLOB_API_VERSION = '7'


class BlobStorageService:
    _client: Optional[httpx.AsyncClient] = None

    def __init__(self, config: Optional[DeploymentConfig] = None,
                 client: Optional[httpx.AsyncClient] = None):
        self.config = config or get_deployment_config()
        self._injected_client = client

    @classmethod
    async def get_client(cls) -> httpx.AsyncClient:
        if cls._client is None or cls._client.is_closed:
            cls._client = httpx.AsyncClient(timeout=httpx.Timeout(15.0, connect=5.0))
        return cls._client

    @classmethod
    async def close_client(cls):
        if cls._client and not cls._client.is_closed:
            await cls._client.aclose()
            cls._client = None

    async def delete_blobs(self, urls: Iterable[Optional[str]]) -> bool:
        """Delete blobs by URL; True when there was nothing to delete or the delete succeeded"""
        targets = [url for url in urls if url]
        if not targets:
            return True
        if not self.config.blob_read_write_token:
            logger.warning("⚠️ BLOB_READ_WRITE_TOKEN not configured, skipping blob deletion")
            return False

        client = self._injected_client or await self.get_client()
        try:
            response = await client.post(
                f"{BLOB_API_URL}/delete",
                headers={
                    'Authorization': f'Bearer {self.config.blob_read_write_token}',
                    'x-api-version': BLOB_API_VERSION,
                    'Content-Type': 'application/json',
                },
                json={'urls': targets}
            )
        except httpx.HTTPError as e:
            logger.error(f"❌ Blob deletion request failed: {e}")
            return False

        if response.status_code >= 400:
            logger.warning(f"⚠️ Blob deletion failed with HTTP {response.status_code}: {response.text[:200]}")
            return False
        logger.info(f"✅ Deleted {len(targets)} blob(s)")
        return True
