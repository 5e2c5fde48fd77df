from __future__ import annotations

from pathlib import PurePosixPath
from typing import Iterable
from urllib.parse import urlparse


def is_valid_url(value: str | None) -> bool:
    """Loose absolute-URL check: a scheme and a host are required."""
    if not value:
        return False
    if any(ch.isspace() for ch in value):
        return False
    try:
        parsed = urlparse(value)
        _ = parsed.port
    except ValueError:
        return False
    scheme = (parsed.scheme or "").lower()
    if not scheme or not scheme[0].isalpha():
        return False
    return bool(parsed.netloc and parsed.hostname)


def staging_origin(url: str) -> str:
    """Scheme and host of ``url``, e.g. ``https://staging.example``."""
    parsed = urlparse(url)
    return f"{parsed.scheme}://{parsed.hostname or ''}"


def url_basename(url: str) -> str:
    path = urlparse(url).path
    return PurePosixPath(path).name


def file_extension(url: str) -> str:
    suffix = PurePosixPath(url_basename(url)).suffix
    return suffix[1:] if suffix else ""


def rewrite_to_source(local_url: str, source_domain: str, *, origin: str | None = None) -> str:
    """Swap the staging origin of ``local_url`` for ``source_domain``.

    Plain substring replacement: when the origin does not occur verbatim in
    the URL (e.g. an uppercase host) the URL comes back unchanged, and an
    explicit port is carried over to the source domain. Pass ``origin`` when
    the caller already computed it.
    """
    if origin is None:
        origin = staging_origin(local_url)
    return local_url.replace(origin, source_domain)


def apply_path_rewrites(url: str, rewrites: Iterable[tuple[str, str]]) -> str:
    for old, new in rewrites:
        if old:
            url = url.replace(old, new)
    return url
