"""
Asset Downloader
Fetches stored images and files for upload, bounded by a wall-clock timeout
"""
import asyncio
import logging
from typing import Optional

import httpx

from config import Settings, get_settings
from utils.exceptions import DownloadError


logger = logging.getLogger(__name__)


class AssetDownloader:
    """Single-shot GETs; failures are not retried"""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.timeout = float(self.settings.http.download_timeout)
        self._transport = transport

    async def fetch(self, url: str) -> bytes:
        try:
            return await asyncio.wait_for(self._get(url), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise DownloadError(f"Download timed out after {self.timeout:g}s: {url}", url=url) from exc

    async def _get(self, url: str) -> bytes:
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
                follow_redirects=True,
            ) as client:
                response = await client.get(url)
        except httpx.HTTPError as exc:
            raise DownloadError(f"Download failed: {exc}", url=url) from exc

        if not response.is_success:
            raise DownloadError(f"Download failed ({response.status_code}): {url}", url=url, status=response.status_code)
        return response.content
