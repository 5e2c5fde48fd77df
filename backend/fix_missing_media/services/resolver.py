from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from ..config import settings
from ..errors import DownloadError, TransportError
from ..logging_context import pop_context, push_attachment_context
from ..metrics import attachments_total, markers_written_total
from ..utils.remediation import MarkerState, RemediationOutcome
from ..utils.upload_dir import UploadDir, compute_upload_dir, default_upload_dir
from ..utils.urls import (
    apply_path_rewrites,
    file_extension,
    rewrite_to_source,
    staging_origin,
    url_basename,
)
from .remote_fetcher import RemoteFetcher
from .sideload import SideloadFile, SideloadResult, handle_sideload

logger = logging.getLogger(__name__)


class AttachmentStore(Protocol):
    async def get_local_url(self, attachment_id: int) -> str | None: ...

    async def set_marker(self, attachment_id: int, marker: MarkerState) -> None: ...


SideloadFn = Callable[..., Awaitable[SideloadResult]]


@dataclass(frozen=True, slots=True)
class UrlRewriteContext:
    local_url: str
    staging_origin: str
    source_domain: str
    remote_url: str
    upload_dir: UploadDir


class MissingMediaResolver:
    """Check one attachment and, if its file is missing, fetch it from the source domain."""

    def __init__(
        self,
        repository: AttachmentStore,
        *,
        fetcher: RemoteFetcher | None = None,
        sideload: SideloadFn = handle_sideload,
        upload_dir_factory: Callable[[], UploadDir] | None = None,
        download_timeout: float | None = None,
        disallowed_extensions: Iterable[str] | None = None,
        strip_segment: str | None = None,
        path_rewrites: Sequence[tuple[str, str]] | None = None,
        allowed_mime_prefixes: Sequence[str] | None = None,
    ) -> None:
        self._repository = repository
        self._fetcher = fetcher or RemoteFetcher(head_timeout=settings.head_timeout_seconds)
        self._sideload = sideload
        self._upload_dir_factory = upload_dir_factory or _settings_upload_dir
        self._download_timeout = (
            download_timeout if download_timeout is not None else settings.download_timeout_seconds
        )
        self._disallowed = frozenset(
            ext.lower()
            for ext in (
                disallowed_extensions
                if disallowed_extensions is not None
                else settings.disallowed_extensions
            )
        )
        self._strip_segment = (
            strip_segment if strip_segment is not None else settings.upload_dir_strip_segment
        )
        self._path_rewrites = tuple(
            path_rewrites if path_rewrites is not None else settings.remote_path_rewrites
        )
        self._allowed_mime_prefixes = tuple(
            allowed_mime_prefixes
            if allowed_mime_prefixes is not None
            else settings.allowed_mime_prefixes
        )

    def build_context(self, source_domain: str, local_url: str) -> UrlRewriteContext:
        origin = staging_origin(local_url)
        remote_url = apply_path_rewrites(
            rewrite_to_source(local_url, source_domain, origin=origin),
            self._path_rewrites,
        )
        upload_dir = compute_upload_dir(
            self._upload_dir_factory(),
            remote_url,
            strip_segment=self._strip_segment,
        )
        return UrlRewriteContext(
            local_url=local_url,
            staging_origin=origin,
            source_domain=source_domain,
            remote_url=remote_url,
            upload_dir=upload_dir,
        )

    async def resolve(self, source_domain: str, attachment_id: int) -> RemediationOutcome:
        token = push_attachment_context(attachment_id)
        try:
            outcome = await self._resolve(source_domain, attachment_id)
            await self._record(attachment_id, outcome)
        finally:
            pop_context(token)
        attachments_total.labels(outcome=outcome.kind.value).inc()
        return outcome

    async def _resolve(self, source_domain: str, attachment_id: int) -> RemediationOutcome:
        local_url = await self._repository.get_local_url(attachment_id)
        if not local_url:
            logger.warning("Attachment %d has no file URL, skipping", attachment_id)
            return RemediationOutcome.deferred("attachment has no file URL")

        try:
            status_code = await self._fetcher.head(local_url)
        except TransportError as exc:
            logger.warning("Local image (%s) returned an error: %s", local_url, exc)
            return RemediationOutcome.deferred(str(exc))

        if status_code == 200:
            logger.info("Attachment %d is working fine at %s", attachment_id, local_url)
            return RemediationOutcome.already_present()

        extension = file_extension(local_url)
        if extension.lower() in self._disallowed:
            logger.warning("Skipping disallowed filetype, %s.", extension)
            return RemediationOutcome.skipped(f"disallowed filetype {extension}")

        context = self.build_context(source_domain, local_url)
        logger.debug(
            "Attachment %d returned %s at %s (staging origin %s)",
            attachment_id,
            status_code,
            local_url,
            context.staging_origin,
        )
        logger.info("Attachment %d needs grabbing from %s", attachment_id, context.remote_url)
        return await self._fetch_and_sideload(attachment_id, context)

    async def _fetch_and_sideload(
        self,
        attachment_id: int,
        context: UrlRewriteContext,
    ) -> RemediationOutcome:
        try:
            temp_file = await self._fetcher.download(
                context.remote_url,
                timeout=self._download_timeout,
            )
        except DownloadError as exc:
            message = (
                f"Failed to download {context.remote_url}. The error message was: {exc}"
            )
            logger.warning("%s", message)
            return RemediationOutcome.failed(message)

        try:
            file = SideloadFile(
                name=url_basename(context.remote_url),
                tmp_name=temp_file,
                size=_file_size(temp_file),
            )
            result = await self._sideload(
                file,
                context.upload_dir,
                test_size=True,
                allowed_mime_prefixes=self._allowed_mime_prefixes,
            )
        finally:
            temp_file.unlink(missing_ok=True)

        if result.error:
            logger.warning("Failed: %s", result.error)
            return RemediationOutcome.upload_rejected(result.error)

        logger.info("Downloaded image for %d to %s", attachment_id, result.file)
        return RemediationOutcome.downloaded(result.file or "")

    async def _record(self, attachment_id: int, outcome: RemediationOutcome) -> None:
        marker = outcome.marker
        if marker is None:
            return
        await self._repository.set_marker(attachment_id, marker)
        markers_written_total.labels(status=marker.status.value).inc()


def _file_size(path: Path) -> int:
    try:
        return path.stat().st_size
    except OSError:
        return 0


def _settings_upload_dir() -> UploadDir:
    return default_upload_dir(
        uploads_root=settings.uploads_root,
        site_url=settings.site_url or "",
        uploads_url_path=settings.uploads_url_path,
    )
