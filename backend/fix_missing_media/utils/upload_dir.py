from __future__ import annotations

import posixpath
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from pathlib import Path
from urllib.parse import urlparse

from .urls import url_basename


@dataclass(frozen=True, slots=True)
class UploadDir:
    path: str
    url: str
    subdir: str


def default_upload_dir(
    *,
    uploads_root: str,
    site_url: str,
    uploads_url_path: str,
    now: datetime | None = None,
) -> UploadDir:
    """Time-based upload directory for files ingested "today" (``/YYYY/MM``)."""
    moment = now or datetime.now(timezone.utc)
    subdir = f"/{moment:%Y}/{moment:%m}"
    base_path = str(Path(uploads_root)).rstrip("/")
    base_url = site_url.rstrip("/") + "/" + uploads_url_path.strip("/")
    return UploadDir(path=base_path + subdir, url=base_url + subdir, subdir=subdir)


def _normalize_subdir(path: str) -> str:
    # Collapses "." and ".." so the subdir can never climb above the uploads root.
    if not path:
        return path
    normalized = posixpath.normpath("/" + path.lstrip("/"))
    return "" if normalized == "/" else normalized


def remote_subdir(remote_url: str, *, strip_segment: str) -> str:
    """Directory of ``remote_url``'s path with the filename and ``strip_segment`` removed."""
    path = urlparse(remote_url).path
    without_name = path.replace("/" + url_basename(remote_url), "")
    if strip_segment:
        without_name = without_name.replace(strip_segment, "")
    return _normalize_subdir(without_name)


def compute_upload_dir(
    default: UploadDir,
    remote_url: str,
    *,
    strip_segment: str,
) -> UploadDir:
    """Move ``default`` to the subdirectory the file had on the source domain.

    Every occurrence of ``default.subdir`` in path, url and subdir is replaced
    with the remote subdirectory; a field that does not contain it is kept.
    """
    target = remote_subdir(remote_url, strip_segment=strip_segment)
    token = default.subdir
    if not token:
        return default
    return replace(
        default,
        path=default.path.replace(token, target),
        url=default.url.replace(token, target),
        subdir=default.subdir.replace(token, target),
    )
