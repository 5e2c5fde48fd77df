#!/usr/bin/env python3
"""Find and fix missing media on a migrated site.

Every attachment that has not been processed yet is checked at its local URL.
Files that do not answer 200 are downloaded from SOURCE_DOMAIN and written
back into the uploads directory at the path they had on the source domain.

Each checked attachment gets a ``fmm_processed`` marker so later runs skip it.
Transport errors during the local check leave the attachment unmarked, so it
is retried on the next run.

Examples:
    scripts/fix_missing_media.py https://newspack.blog --limit 50 --batches 4
    scripts/fix_missing_media.py https://newspack.blog 1234
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from functools import partial
from pathlib import Path
from typing import Sequence

import psycopg
import sentry_sdk

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from fix_missing_media.config import settings  # noqa: E402
from fix_missing_media.db import connect, ensure_db_url  # noqa: E402
from fix_missing_media.errors import PreconditionError  # noqa: E402
from fix_missing_media.logging_utils import setup_logging  # noqa: E402
from fix_missing_media.metrics import write_metrics  # noqa: E402
from fix_missing_media.repositories.attachments import AttachmentRepository  # noqa: E402
from fix_missing_media.services.batch_driver import BatchDriver, BatchSummary  # noqa: E402
from fix_missing_media.services.remote_fetcher import RemoteFetcher  # noqa: E402
from fix_missing_media.services.resolver import MissingMediaResolver  # noqa: E402
from fix_missing_media.utils.upload_dir import default_upload_dir  # noqa: E402
from fix_missing_media.utils.urls import is_valid_url  # noqa: E402

logger = logging.getLogger("fix_missing_media")


def _positive_int(value: str | None) -> int | None:
    try:
        parsed = int(str(value or "").strip())
    except ValueError:
        return None
    return parsed if parsed > 0 else None


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Finds and fixes any missing media.")
    parser.add_argument(
        "from_url",
        nargs="?",
        default=None,
        help="Full domain URL where media should be downloaded from, e.g. https://newspack.blog",
    )
    parser.add_argument(
        "attachment",
        nargs="?",
        default=None,
        help="A specific attachment ID to check a single attachment.",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=settings.batch_limit,
        help="How many media items to check in each batch (default: %(default)s, max 100).",
    )
    parser.add_argument(
        "--batches",
        type=int,
        default=settings.batches,
        help="How many batches to run (default: %(default)s).",
    )
    parser.add_argument(
        "--pause",
        type=float,
        default=settings.request_pause_seconds,
        help="Seconds to wait between attachments (default: %(default)s, disabled).",
    )
    parser.add_argument(
        "--database-url",
        default=str(settings.database_url) if settings.database_url else None,
        help="Postgres connection string (default: $FMM_DATABASE_URL or $DATABASE_URL).",
    )
    parser.add_argument(
        "--site-url",
        default=settings.site_url,
        help="URL of the site whose media is being repaired (default: $FMM_SITE_URL).",
    )
    parser.add_argument(
        "--log-level",
        default=settings.log_level,
        help="Logging level (default: %(default)s).",
    )
    parser.add_argument(
        "--metrics-file",
        default=settings.metrics_textfile,
        help="Write Prometheus metrics to this textfile when the run ends.",
    )
    return parser.parse_args(argv)


def validate_source_domain(value: str | None) -> str:
    if not is_valid_url(value):
        raise PreconditionError("Invalid URL.", url=value)
    return str(value)


def _init_sentry() -> None:
    if not settings.sentry_dsn:
        return
    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        traces_sample_rate=settings.sentry_traces_sample_rate,
    )


async def run(args: argparse.Namespace, source_domain: str, db_url: str) -> BatchSummary:
    async with connect(db_url) as conn:
        repository = AttachmentRepository(
            conn,
            site_url=args.site_url,
            uploads_url_path=settings.uploads_url_path,
            schema=settings.db_schema,
            marker_key=settings.marker_meta_key,
            attached_file_key=settings.attached_file_meta_key,
        )
        resolver = MissingMediaResolver(
            repository,
            fetcher=RemoteFetcher(head_timeout=settings.head_timeout_seconds),
            upload_dir_factory=partial(
                default_upload_dir,
                uploads_root=settings.uploads_root,
                site_url=args.site_url,
                uploads_url_path=settings.uploads_url_path,
            ),
        )
        driver = BatchDriver(
            repository,
            resolver,
            pause_seconds=args.pause,
        )

        attachment_id = _positive_int(args.attachment)
        if attachment_id is not None:
            return await driver.run_single(source_domain, attachment_id)
        return await driver.run_batches(
            source_domain,
            limit=args.limit,
            batches=args.batches,
        )


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_level)
    logger.info("Fixing media...")

    try:
        source_domain = validate_source_domain(args.from_url)
    except PreconditionError as exc:
        logger.error("%s", exc, extra={"from_url": exc.url})
        return 1

    db_url = ensure_db_url(args.database_url)
    if not db_url:
        logger.error("Provide --database-url or set $FMM_DATABASE_URL")
        return 1
    if not is_valid_url(args.site_url):
        logger.error("Provide --site-url or set $FMM_SITE_URL")
        return 1

    _init_sentry()

    try:
        summary = asyncio.run(run(args, source_domain, db_url))
    except psycopg.Error as exc:
        logger.error("Database error: %s", exc)
        return 2
    finally:
        if args.metrics_file:
            write_metrics(args.metrics_file)

    logger.info("Finished checking attachments", extra={"summary": summary.as_dict()})
    return 0


def cli() -> None:
    raise SystemExit(main())


if __name__ == "__main__":
    raise SystemExit(main())
