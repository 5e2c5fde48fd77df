from pathlib import Path

from fix_missing_media.errors import DownloadError, TransportError
from fix_missing_media.utils.remediation import MarkerState

SOURCE_DOMAIN = "https://prod.example"


class FakeAttachmentStore:
    def __init__(self, urls: dict[int, str | None]):
        self.urls = dict(urls)
        self.markers: list[tuple[int, MarkerState]] = []

    async def get_local_url(self, attachment_id: int) -> str | None:
        return self.urls.get(attachment_id)

    async def set_marker(self, attachment_id: int, marker: MarkerState) -> None:
        self.markers.append((attachment_id, marker))


class FakeFetcher:
    def __init__(
        self,
        tmp_path: Path,
        *,
        status: int = 404,
        head_error: str | None = None,
        download_error: str | None = None,
        payload: bytes = b"\x89PNG fake image bytes",
    ):
        self.tmp_path = tmp_path
        self.status = status
        self.head_error = head_error
        self.download_error = download_error
        self.payload = payload
        self.head_calls: list[str] = []
        self.download_calls: list[tuple[str, float]] = []

    async def head(self, url: str) -> int:
        self.head_calls.append(url)
        if self.head_error:
            raise TransportError(self.head_error, url=url)
        return self.status

    async def download(self, url: str, *, timeout: float) -> Path:
        self.download_calls.append((url, timeout))
        if self.download_error:
            raise DownloadError(self.download_error, url=url)
        temp_file = self.tmp_path / f"download-{len(self.download_calls)}.tmp"
        temp_file.write_bytes(self.payload)
        return temp_file
