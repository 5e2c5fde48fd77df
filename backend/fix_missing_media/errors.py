from __future__ import annotations


class FixMissingMediaError(RuntimeError):
    """Base class for errors raised while repairing media."""

    def __init__(self, message: str, *, url: str | None = None) -> None:
        super().__init__(message)
        self.url = url


class PreconditionError(FixMissingMediaError):
    """Raised when the run cannot start, e.g. an invalid source domain."""


class TransportError(FixMissingMediaError):
    """Raised when the existence check of a local URL fails at transport level."""


class DownloadError(FixMissingMediaError):
    """Raised when the replacement file cannot be fetched from the source domain."""

    def __init__(
        self,
        message: str,
        *,
        url: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message, url=url)
        self.status_code = status_code
