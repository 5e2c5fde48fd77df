from __future__ import annotations

import asyncio
import logging
from collections import Counter
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Protocol

from ..logging_context import pop_context, push_batch_context
from ..metrics import batches_total
from ..utils.remediation import OutcomeKind, RemediationOutcome

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100

SleepFn = Callable[[float], Awaitable[None]]


class UnprocessedQuery(Protocol):
    async def find_unprocessed(self, limit: int, page: int) -> list[int]: ...

    def flush_cache(self) -> None: ...


class Resolver(Protocol):
    async def resolve(self, source_domain: str, attachment_id: int) -> RemediationOutcome: ...


@dataclass(slots=True)
class BatchSummary:
    batches_run: int = 0
    outcomes: Counter[OutcomeKind] = field(default_factory=Counter)

    @property
    def total(self) -> int:
        return sum(self.outcomes.values())

    def add(self, outcome: RemediationOutcome) -> None:
        self.outcomes[outcome.kind] += 1

    def as_dict(self) -> dict[str, int]:
        data = {kind.value: self.outcomes.get(kind, 0) for kind in OutcomeKind}
        data["batches"] = self.batches_run
        data["total"] = self.total
        return data


def effective_page_size(limit: int, *, maximum: int = MAX_PAGE_SIZE) -> int:
    return max(1, min(int(limit), int(maximum)))


class BatchDriver:
    def __init__(
        self,
        query: UnprocessedQuery,
        resolver: Resolver,
        *,
        pause_seconds: float = 0.0,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._query = query
        self._resolver = resolver
        self._pause_seconds = max(0.0, float(pause_seconds))
        self._sleep = sleep
        self._resolved_any = False

    async def _pace(self) -> None:
        # Never pause before the very first item of the run.
        if self._resolved_any and self._pause_seconds > 0:
            await self._sleep(self._pause_seconds)
        self._resolved_any = True

    async def run_single(self, source_domain: str, attachment_id: int) -> BatchSummary:
        logger.info("Checking for specific attachment %d...", attachment_id)
        summary = BatchSummary()
        summary.add(await self._resolver.resolve(source_domain, attachment_id))
        return summary

    async def run_batches(
        self,
        source_domain: str,
        *,
        limit: int = 100,
        batches: int = 1,
    ) -> BatchSummary:
        page_size = effective_page_size(limit)
        logger.info("Checking %d batches of %d items", batches, limit)
        summary = BatchSummary()

        for page in range(1, batches + 1):
            token = push_batch_context(page)
            try:
                logger.info("Checking batch %d", page)
                attachment_ids = await self._query.find_unprocessed(page_size, page)
                if not attachment_ids:
                    logger.info("All the missing attachments have been found!")
                for attachment_id in attachment_ids:
                    await self._pace()
                    summary.add(await self._resolver.resolve(source_domain, attachment_id))
                # The unprocessed query is cached; flush so the next page sees new markers.
                self._query.flush_cache()
            finally:
                pop_context(token)
            summary.batches_run += 1
            batches_total.inc()

        return summary
