from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, write_to_textfile

registry = CollectorRegistry()

attachments_total = Counter(
    "fix_missing_media_attachments_total",
    "Attachments resolved, by outcome.",
    ["outcome"],
    registry=registry,
)
batches_total = Counter(
    "fix_missing_media_batches_total",
    "Batches of unprocessed attachments checked.",
    registry=registry,
)
markers_written_total = Counter(
    "fix_missing_media_markers_written_total",
    "Processed markers written, by marker status.",
    ["status"],
    registry=registry,
)


def write_metrics(path: str) -> None:
    write_to_textfile(path, registry)
