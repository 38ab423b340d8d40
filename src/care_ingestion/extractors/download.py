# ============================================================================
# src/care_ingestion/extractors/download.py
# ============================================================================
"""
Source file download.

Documents arrive as URLs. http(s) URLs are fetched with aiohttp; file://
URLs and bare paths are read from disk for local and batch runs.
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional
from urllib.parse import unquote, urlparse

import aiohttp

from ..config import ai_settings
from ..utils.exceptions import DownloadError

logger = logging.getLogger(__name__)


class FileDownloader:
    """Fetches document bytes from a URL or local path."""

    def __init__(self, timeout_seconds: float = ai_settings.DOWNLOAD_TIMEOUT_SECONDS):
        self.timeout_seconds = timeout_seconds
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.timeout_seconds, sock_connect=30)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def fetch(self, url: str) -> bytes:
        """
        Return the file's bytes.

        Raises:
            DownloadError: HTTP error status, network failure or unreadable file
        """
        parsed = urlparse(url)

        if parsed.scheme in ("http", "https"):
            return await self._fetch_http(url)
        if parsed.scheme == "file":
            return await self._read_local(Path(unquote(parsed.path)), url)
        if parsed.scheme == "" or len(parsed.scheme) == 1:
            # Bare path (a one-letter scheme is a Windows drive)
            return await self._read_local(Path(url), url)

        raise DownloadError(f"Unsupported URL scheme: {parsed.scheme}", url=url)

    async def _fetch_http(self, url: str) -> bytes:
        session = await self._get_session()
        try:
            async with session.get(url) as response:
                if response.status != 200:
                    raise DownloadError(f"Failed to download file: HTTP {response.status}", url=url)
                data = await response.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise DownloadError(f"Failed to download file: {type(e).__name__}: {e}", url=url) from e

        logger.debug(f"Downloaded {len(data)} bytes from {url}")
        return data

    async def _read_local(self, path: Path, url: str) -> bytes:
        try:
            return await asyncio.to_thread(path.read_bytes)
        except OSError as e:
            raise DownloadError(f"Failed to read file: {e}", url=url) from e

    async def close(self) -> None:
        """Close HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None
