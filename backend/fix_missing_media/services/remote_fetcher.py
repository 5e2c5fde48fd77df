from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

import httpx

from ..errors import DownloadError, TransportError

logger = logging.getLogger(__name__)

USER_AGENT = "fix-missing-media/0.1"


class RemoteFetcher:
    """Existence checks against local URLs and downloads from the source domain."""

    def __init__(
        self,
        *,
        head_timeout: float = 10.0,
        temp_dir: str | None = None,
    ) -> None:
        self._head_timeout = head_timeout
        self._temp_dir = temp_dir

    async def head(self, url: str) -> int:
        """Return the HTTP status of ``url``; redirects are not followed."""
        async with httpx.AsyncClient(
            timeout=self._head_timeout,
            follow_redirects=False,
            headers={"User-Agent": USER_AGENT},
        ) as client:
            try:
                response = await client.head(url)
            except (httpx.HTTPError, httpx.InvalidURL) as exc:
                raise TransportError(str(exc) or exc.__class__.__name__, url=url) from exc
        return response.status_code

    async def download(self, url: str, *, timeout: float) -> Path:
        """Stream ``url`` into a new temporary file and return its path.

        The caller owns the returned file. On failure no file is left behind.
        """
        fd, name = tempfile.mkstemp(prefix="fmm_", suffix=".tmp", dir=self._temp_dir)
        os.close(fd)
        destination = Path(name)
        try:
            await self._download_to_file(url, destination, timeout=timeout)
        except BaseException:
            destination.unlink(missing_ok=True)
            raise
        return destination

    async def _download_to_file(self, url: str, destination: Path, *, timeout: float) -> None:
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
        ) as client:
            try:
                async with client.stream("GET", url) as response:
                    if response.status_code != 200:
                        raise DownloadError(
                            f"{response.status_code} {response.reason_phrase}".strip(),
                            url=url,
                            status_code=response.status_code,
                        )
                    with destination.open("wb") as handle:
                        async for chunk in response.aiter_bytes(chunk_size=1024 * 1024):
                            handle.write(chunk)
            except (httpx.HTTPError, httpx.InvalidURL) as exc:
                raise DownloadError(str(exc) or exc.__class__.__name__, url=url) from exc
        logger.debug("Downloaded %s to %s", url, destination)
