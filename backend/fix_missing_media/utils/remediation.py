"""Remediation outcomes and the persisted "processed" marker.

The marker is a single metadata value per attachment with three observable
states: absent, ``"1"`` and an error message. Everything that reads or writes
it goes through :class:`MarkerState` so the encoding lives in one place.

The outcome kind values are stable because they label metrics and log lines.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

MARKER_SUCCEEDED_VALUE = "1"


class MarkerStatus(StrEnum):
    unprocessed = "unprocessed"
    succeeded = "succeeded"
    permanently_failed = "permanently_failed"


@dataclass(frozen=True, slots=True)
class MarkerState:
    status: MarkerStatus
    reason: str | None = None

    @classmethod
    def unprocessed(cls) -> MarkerState:
        return cls(MarkerStatus.unprocessed)

    @classmethod
    def succeeded(cls) -> MarkerState:
        return cls(MarkerStatus.succeeded)

    @classmethod
    def permanently_failed(cls, reason: str) -> MarkerState:
        return cls(MarkerStatus.permanently_failed, reason)

    @property
    def is_processed(self) -> bool:
        return self.status != MarkerStatus.unprocessed

    def encode(self) -> str | None:
        if self.status == MarkerStatus.succeeded:
            return MARKER_SUCCEEDED_VALUE
        if self.status == MarkerStatus.permanently_failed:
            # An empty reason would read back as "absent".
            return self.reason or "failed"
        return None

    @classmethod
    def decode(cls, value: str | None) -> MarkerState:
        if value is None or value == "":
            return cls.unprocessed()
        if value in {MARKER_SUCCEEDED_VALUE, "true"}:
            return cls.succeeded()
        return cls.permanently_failed(value)


class OutcomeKind(StrEnum):
    already_present = "already_present"
    skipped = "skipped"
    downloaded = "downloaded"
    failed = "failed"
    upload_rejected = "upload_rejected"
    deferred = "deferred"


@dataclass(frozen=True, slots=True)
class RemediationOutcome:
    kind: OutcomeKind
    reason: str | None = None
    destination: str | None = None

    @classmethod
    def already_present(cls) -> RemediationOutcome:
        return cls(OutcomeKind.already_present)

    @classmethod
    def skipped(cls, reason: str) -> RemediationOutcome:
        return cls(OutcomeKind.skipped, reason=reason)

    @classmethod
    def downloaded(cls, destination: str) -> RemediationOutcome:
        return cls(OutcomeKind.downloaded, destination=destination)

    @classmethod
    def failed(cls, reason: str) -> RemediationOutcome:
        return cls(OutcomeKind.failed, reason=reason)

    @classmethod
    def upload_rejected(cls, reason: str) -> RemediationOutcome:
        return cls(OutcomeKind.upload_rejected, reason=reason)

    @classmethod
    def deferred(cls, reason: str) -> RemediationOutcome:
        return cls(OutcomeKind.deferred, reason=reason)

    @property
    def marker(self) -> MarkerState | None:
        """Marker to persist for this outcome, or None to leave the record eligible."""
        return marker_for_outcome(self)


def marker_for_outcome(outcome: RemediationOutcome) -> MarkerState | None:
    if outcome.kind == OutcomeKind.deferred:
        return None
    if outcome.kind == OutcomeKind.failed:
        return MarkerState.permanently_failed(outcome.reason or "")
    # Upload rejections are marked done, same as successes.
    return MarkerState.succeeded()
