"""
Handles the low-level downloading of package archives over HTTP with retries.
"""

import asyncio
import logging
import os

import aiofiles
import aiohttp

log = logging.getLogger(__name__)


class Downloader:
    """A low-level file downloader with retry logic and partial-file cleanup."""

    CHUNK_SIZE = 262144  # 256 KB

    def __init__(self, max_attempts: int = 3, base_delay: float = 1.5):
        self.max_attempts = max_attempts
        self.base_delay = base_delay

    async def download_file(
        self,
        session: aiohttp.ClientSession,
        url: str,
        destination_path: str,
    ) -> int:
        """
        Streams `url` into `destination_path` and returns the number of bytes written.

        Transport errors are retried with exponential backoff. When the last
        attempt fails, or writing fails, the partial file is removed before the
        error is re-raised, so a truncated file never survives.
        """
        last_exception: BaseException | None = None
        try:
            for attempt in range(1, self.max_attempts + 1):
                try:
                    async with session.get(url, allow_redirects=True) as response:
                        response.raise_for_status()
                        bytes_downloaded = 0
                        async with aiofiles.open(destination_path, "wb") as f:
                            async for chunk in response.content.iter_chunked(
                                self.CHUNK_SIZE
                            ):
                                await f.write(chunk)
                                bytes_downloaded += len(chunk)
                    return bytes_downloaded
                except aiohttp.ClientResponseError as e:
                    # The server answered; retrying will not change a 4xx.
                    if e.status < 500:
                        raise
                    last_exception = e
                except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                    last_exception = e

                log.debug(
                    f"Download attempt {attempt}/{self.max_attempts} for "
                    f"'{os.path.basename(destination_path)}' failed: "
                    f"{last_exception}. Retrying..."
                )
                if attempt < self.max_attempts:
                    await asyncio.sleep(self.base_delay * (2 ** (attempt - 1)))
        except BaseException:
            await self._remove_partial(destination_path)
            raise

        await self._remove_partial(destination_path)
        raise last_exception

    @staticmethod
    async def _remove_partial(path: str) -> None:
        exists = await asyncio.to_thread(os.path.exists, path)
        if exists:
            await asyncio.to_thread(os.remove, path)
            log.debug(f"Removed partial download '{os.path.basename(path)}'")
