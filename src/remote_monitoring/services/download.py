"""Firmware package retrieval over HTTP(S)."""

import logging
from pathlib import Path

import aiofiles
import httpx

from remote_monitoring.exceptions import DownloadFailure


class DownloadService:
    """Streams a firmware package to a local file."""

    def __init__(self, target_path: Path, timeout: float = 30.0):
        """Initialize download service.

        Args:
            target_path: Where the package is written (overwritten each time)
            timeout: HTTP timeout in seconds
        """
        self.logger = logging.getLogger("remote_monitoring.download")
        self.target_path = Path(target_path)
        self.timeout = timeout
        self.chunk_size = 64 * 1024

    async def download(self, url: str) -> Path:
        """Download the package at ``url``. Blocks the calling task until done.

        Args:
            url: HTTP/HTTPS package URI

        Returns:
            Path to the downloaded package

        Raises:
            DownloadFailure: If the request or the file write fails; any
                partial file is removed
        """
        self.logger.info(f"Download url: {url}")
        try:
            bytes_downloaded = await self._stream_to_file(url)
        except (httpx.HTTPError, httpx.InvalidURL, OSError) as e:
            self.logger.error(f"Download failed: {e}")
            if self.target_path.exists():
                self.target_path.unlink()
            raise DownloadFailure(f"DOWNLOAD_FAILED: {e}") from e

        self.logger.info(f"Downloaded {bytes_downloaded} bytes to {self.target_path}")
        return self.target_path

    async def _stream_to_file(self, url: str) -> int:
        bytes_downloaded = 0
        self.target_path.parent.mkdir(parents=True, exist_ok=True)

        async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as client:
            async with client.stream("GET", url) as response:
                response.raise_for_status()

                async with aiofiles.open(self.target_path, "wb") as f:
                    async for chunk in response.aiter_bytes(chunk_size=self.chunk_size):
                        await f.write(chunk)
                        bytes_downloaded += len(chunk)

        return bytes_downloaded
