from __future__ import annotations

import asyncio
import logging
import mimetypes
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from ..utils.upload_dir import UploadDir

logger = logging.getLogger(__name__)

DEFAULT_ALLOWED_MIME_PREFIXES: tuple[str, ...] = (
    "image/",
    "video/",
    "audio/",
    "application/pdf",
    "text/plain",
)


@dataclass(frozen=True, slots=True)
class SideloadFile:
    name: str
    tmp_name: Path
    size: int


@dataclass(frozen=True, slots=True)
class SideloadResult:
    file: str | None = None
    url: str | None = None
    type: str | None = None
    error: str | None = None


def _sanitize_filename(name: str) -> str:
    cleaned = Path(name.replace("\\", "/")).name.strip().strip(".")
    cleaned = "-".join(cleaned.split())
    return cleaned or "media"


def unique_filename(directory: Path, name: str) -> str:
    """``name`` or ``stem-N.ext`` with the smallest N not present in ``directory``."""
    candidate = name
    stem = Path(name).stem
    suffix = Path(name).suffix
    counter = 1
    while (directory / candidate).exists():
        candidate = f"{stem}-{counter}{suffix}"
        counter += 1
    return candidate


def _is_allowed_type(mime: str | None, allowed_prefixes: Sequence[str]) -> bool:
    if not mime:
        return False
    for prefix in allowed_prefixes:
        if mime == prefix or (prefix.endswith("/") and mime.startswith(prefix)):
            return True
    return False


def _move_into_place(source: Path, directory: Path, name: str) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    target = directory / unique_filename(directory, name)
    shutil.move(str(source), str(target))
    os.chmod(target, 0o644)
    return target


async def handle_sideload(
    file: SideloadFile,
    upload_dir: UploadDir,
    *,
    test_size: bool = True,
    allowed_mime_prefixes: Sequence[str] = DEFAULT_ALLOWED_MIME_PREFIXES,
) -> SideloadResult:
    """Ingest a fetched file into ``upload_dir`` as if it had just been uploaded.

    Problems are reported through ``SideloadResult.error`` rather than raised.
    """
    if test_size and file.size <= 0:
        return SideloadResult(error="File is empty. Please upload something more substantial.")
    if not file.tmp_name.exists():
        return SideloadResult(error="Specified file failed upload test.")

    name = _sanitize_filename(file.name)
    mime, _ = mimetypes.guess_type(name)
    if not _is_allowed_type(mime, allowed_mime_prefixes):
        return SideloadResult(error="Sorry, this file type is not permitted for security reasons.")

    directory = Path(upload_dir.path)
    try:
        target = await asyncio.to_thread(_move_into_place, file.tmp_name, directory, name)
    except OSError as exc:
        logger.debug("Sideload move failed for %s: %s", file.tmp_name, exc)
        return SideloadResult(
            error=f"The uploaded file could not be moved to {upload_dir.path}."
        )

    url = f"{upload_dir.url.rstrip('/')}/{target.name}"
    return SideloadResult(file=str(target), url=url, type=mime)
