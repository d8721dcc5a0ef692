import asyncio
import logging
from collections import deque
from collections.abc import Sequence
from typing import Protocol

from pydantic import BaseModel

from job_harvester.builder import build_record, fallback_outcome, stub_record
from job_harvester.fetchers.base import PageFetcher
from job_harvester.models import DetailOutcome, JobRecord, ListingStub, OutcomeKind

logger = logging.getLogger(__name__)

WINDOW_SIZE = 5
BATCH_SIZE = 25


class BatchSink(Protocol):
    def append(self, records: list[JobRecord]) -> int:
        """Persist a batch and return how many records were accepted."""
        ...


class RunReport(BaseModel):
    saved: int = 0
    enriched: int = 0
    fallbacks: int = 0
    listing_only: int = 0
    skipped: int = 0
    batches: int = 0
    accepted: int = 0


class DetailScheduler:
    """
    Enriches discovered listings in fixed-size windows of concurrent detail
    fetches and hands the resulting records to the sink in batches.

    A failed detail fetch never aborts a window: the item degrades to a
    record built from its listing data. Sink errors are not retried.
    """

    def __init__(
        self,
        fetcher: PageFetcher,
        sink: BatchSink,
        *,
        window_size: int = WINDOW_SIZE,
        batch_size: int = BATCH_SIZE,
        target: int | None = None,
        collect_details: bool = True,
    ) -> None:
        if window_size < 1:
            raise ValueError(f"window_size must be a positive integer, got {window_size}")
        if batch_size < 1:
            raise ValueError(f"batch_size must be a positive integer, got {batch_size}")
        self.fetcher = fetcher
        self.sink = sink
        self.window_size = window_size
        self.batch_size = batch_size
        self.target = target
        self.collect_details = collect_details

    def _capped(self, count: int) -> bool:
        return self.target is not None and count >= self.target

    async def _process(self, stub: ListingStub) -> DetailOutcome:
        if not self.collect_details:
            record = stub_record(stub)
            if record is None:
                return DetailOutcome(kind=OutcomeKind.SKIP, url=stub.url, error="no usable title")
            return DetailOutcome(kind=OutcomeKind.LISTING, url=stub.url, record=record)

        try:
            document = await self.fetcher.fetch(stub.url)
            return build_record(stub, document)
        except Exception as e:
            logger.warning(f"Detail enrichment failed for {stub.url}: {e}. Using listing data only.")
            return fallback_outcome(stub, e)

    def _flush(self, buffer: list[JobRecord], report: RunReport) -> None:
        if not buffer:
            return
        accepted = self.sink.append(list(buffer))
        report.batches += 1
        report.accepted += accepted
        logger.info(f"Flushed batch {report.batches}: {len(buffer)} records ({accepted} accepted)")
        buffer.clear()

    async def run(self, stubs: Sequence[ListingStub]) -> RunReport:
        report = RunReport()
        buffer: list[JobRecord] = []
        queue = deque(stubs)
        window_num = 0

        while queue:
            if self._capped(report.saved):
                logger.info(f"Reached target of {self.target} records; {len(queue)} listings left unfetched")
                break

            window: list[ListingStub] = []
            while queue and len(window) < self.window_size and not self._capped(report.saved + len(window)):
                window.append(queue.popleft())

            window_num += 1
            logger.info(f"Processing window {window_num} ({len(window)} listings, {len(queue)} queued)")

            outcomes = await asyncio.gather(*(self._process(stub) for stub in window))

            for outcome in outcomes:
                if outcome.kind is OutcomeKind.SKIP or outcome.record is None:
                    report.skipped += 1
                    continue
                if outcome.kind is OutcomeKind.FALLBACK:
                    report.fallbacks += 1
                elif outcome.kind is OutcomeKind.LISTING:
                    report.listing_only += 1
                else:
                    report.enriched += 1

                buffer.append(outcome.record)
                report.saved += 1
                logger.info(f"Saved {report.saved}/{self.target or '∞'}: {outcome.record.title}")

                if len(buffer) >= self.batch_size:
                    self._flush(buffer, report)

        self._flush(buffer, report)
        return report
