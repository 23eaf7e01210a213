"""
Events reconciliation against the third-party feed.

A run fetches a rolling window one day at a time (or an explicit override
window page by page), merges every item into the local events table
without touching locally owned fields, generates missing summaries, and
finally deactivates finished events that vanished from the feed unless a
campaign still has them selected.
"""

import asyncio
import logging
import sqlite3
import time
from datetime import date, datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from ..clients.events_feed import EventsFeedClient
from ..clients.oracle import OracleClient
from ..models.content import ExternalEvent
from ..models.results import SyncSummary
from .errors import CurationError
from .scorer import ITEM_ERRORS
from .store import CurationStore
from .utils import local_today, utc_now

logger = logging.getLogger(__name__)

# Fields written from feed data. Everything not listed here is locally owned.
FEED_OWNED_FIELDS = (
    "title",
    "description",
    "start_date",
    "end_date",
    "venue",
    "address",
    "url",
    "image_url",
    "raw_data",
)
LOCAL_OWNED_FIELDS = ("featured", "paid_placement", "active", "event_summary", "created_at")


def merge_event(existing: Optional[ExternalEvent], incoming: ExternalEvent) -> ExternalEvent:
    """Merge a freshly fetched event over the stored one.

    Feed-owned fields come from ``incoming``; locally owned fields always
    keep their stored values. A new event starts active and unflagged.
    """
    if existing is None:
        return incoming.model_copy(
            update={"featured": False, "paid_placement": False, "active": True, "event_summary": None}
        )
    updates = {name: getattr(incoming, name) for name in FEED_OWNED_FIELDS}
    return existing.model_copy(update=updates)


class EventReconciler:
    """Keeps the local events table in sync with the events feed."""

    def __init__(
        self,
        store: CurationStore,
        feed: EventsFeedClient,
        oracle: Optional[OracleClient] = None,
        settings=None,
        clock: Callable[[], float] = time.monotonic,
        sleep=asyncio.sleep,
    ):
        self.store = store
        self.feed = feed
        self.oracle = oracle
        self.clock = clock
        self.sleep = sleep
        if settings:
            self.prefix = settings.events_external_prefix
            self.window_days = settings.sync_window_days
            self.request_delay = settings.feed_request_delay
            self.max_pages = settings.feed_max_pages
            self.batch_size = settings.batch_size
            self.max_concurrency = settings.max_concurrency
            self.time_budget = settings.sync_time_budget
            self.summary_min_length = settings.event_summary_min_length
            self.lapse_when_closed = settings.protection_lapses_when_campaign_closed
            self.timezone = settings.timezone
        else:
            self.prefix = "visitstcloud_"
            self.window_days = 7
            self.request_delay = 0.5
            self.max_pages = 50
            self.batch_size = 10
            self.max_concurrency = 3
            self.time_budget = 600.0
            self.summary_min_length = 20
            self.lapse_when_closed = False
            self.timezone = "America/Chicago"

    def rolling_window(self, today: Optional[date] = None) -> List[Tuple[date, date]]:
        """One single-day span per day from today through today + window - 1."""
        today = today or local_today(self.timezone)
        return [(today + timedelta(days=offset),) * 2 for offset in range(self.window_days)]

    async def _fetch_span(self, start: date, end: date, summary: SyncSummary) -> Tuple[List[ExternalEvent], bool]:
        """Fetch every page of one span.

        Returns:
            The events and whether the span was fetched completely
        """
        events: List[ExternalEvent] = []
        page = 1
        while page <= self.max_pages:
            try:
                result = await self.feed.fetch_external_page(start, end, page)
            except CurationError as e:
                logger.warning(f"Feed fetch failed for {start}..{end} page {page}: {e}")
                summary.errors += 1
                return events, False

            events.extend(result.events)
            summary.errors += result.invalid
            if result.raw_count < self.feed.per_page:
                return events, True
            page += 1
            await self.sleep(self.request_delay)

        logger.warning(f"Reached pagination limit ({self.max_pages} pages) for {start}..{end}")
        return events, True

    async def _fetch_window(
        self, spans: List[Tuple[date, date]], summary: SyncSummary, started: float
    ) -> Tuple[Dict[str, ExternalEvent], int]:
        fetched: Dict[str, ExternalEvent] = {}
        ok_spans = 0
        for index, (start, end) in enumerate(spans):
            if index:
                await self.sleep(self.request_delay)
            if self.clock() - started > self.time_budget:
                summary.budget_exhausted = True
                logger.warning("Sync budget exhausted during fetch, skipping remaining days")
                break
            events, complete = await self._fetch_span(start, end, summary)
            label = start.isoformat() if start == end else f"{start.isoformat()}..{end.isoformat()}"
            if complete:
                ok_spans += 1
            else:
                summary.failed_days.append(label)
            for event in events:
                fetched[event.external_id] = event
            logger.info(f"Fetched {len(events)} events for {label}")
        return fetched, ok_spans

    async def _process_event(self, incoming: ExternalEvent, summary: SyncSummary):
        try:
            existing = self.store.get_event(incoming.external_id)
            merged = merge_event(existing, incoming)
            is_new = self.store.save_event(merged)
        except (sqlite3.Error, ValueError, TypeError) as e:
            logger.error(f"Error storing event {incoming.external_id}: {e}")
            summary.errors += 1
            return

        if is_new:
            summary.new += 1
        else:
            summary.updated += 1

        if self.oracle is None or (merged.event_summary or "").strip():
            return
        if len((merged.description or "").strip()) < self.summary_min_length:
            return
        try:
            text = await self.oracle.summarize_event(merged)
        except ITEM_ERRORS as e:
            logger.warning(f"Summary generation failed for {incoming.external_id}: {e}")
            summary.errors += 1
            return
        if self.store.set_event_summary_if_absent(incoming.external_id, text):
            summary.summaries_generated += 1

    async def _process_batches(self, events: List[ExternalEvent], summary: SyncSummary, started: float):
        batches = [events[i : i + self.batch_size] for i in range(0, len(events), self.batch_size)]
        summary.batches_total = len(batches)
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def limited(event):
            async with semaphore:
                await self._process_event(event, summary)

        for number, batch in enumerate(batches, start=1):
            if self.clock() - started > self.time_budget:
                summary.budget_exhausted = True
                logger.warning(
                    f"Sync budget exhausted after {summary.batches_completed}/{len(batches)} batches"
                )
                break
            await asyncio.gather(*(limited(event) for event in batch))
            summary.batches_completed += 1
            logger.debug(f"Processed batch {number}/{len(batches)}")

    async def sync(
        self,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        now: Optional[datetime] = None,
    ) -> SyncSummary:
        """Run one reconciliation.

        Args:
            start_date: Override window start (requires ``end_date``)
            end_date: Override window end, inclusive
            now: Reference time for the deactivation pass

        Returns:
            Counts of fetched, new, updated and errored items; ``error`` is
            set only when the run failed as a whole.
        """
        started = self.clock()
        summary = SyncSummary()

        if (start_date is None) != (end_date is None):
            summary.error = "start_date and end_date must be given together"
            return summary
        if start_date and end_date and end_date < start_date:
            summary.error = f"end_date {end_date} is before start_date {start_date}"
            return summary

        if start_date and end_date:
            spans = [(start_date, end_date)]
            logger.info(f"Syncing events for override window {start_date}..{end_date}")
        else:
            spans = self.rolling_window(local_today(self.timezone, now))
            logger.info(f"Syncing events for {len(spans)} days starting {spans[0][0]}")

        fetched, ok_spans = await self._fetch_window(spans, summary, started)
        summary.fetched = len(fetched)

        if ok_spans == 0:
            summary.error = "Events feed unreachable for the whole window"
            logger.error(f"{summary.error} (failed: {', '.join(summary.failed_days) or 'none'})")
            return summary

        await self._process_batches(list(fetched.values()), summary, started)

        # Deactivation needs the complete identifier set of this run
        if summary.budget_exhausted:
            logger.warning("Skipping deactivation pass: run stopped early")
        else:
            deactivated = self.store.deactivate_stale_events(
                self.prefix,
                fetched.keys(),
                now or utc_now(),
                self.lapse_when_closed,
            )
            summary.deactivated = len(deactivated)
            if deactivated:
                logger.info(f"Deactivated {len(deactivated)} stale events")

        logger.info(
            f"Events sync complete: {summary.fetched} fetched, {summary.new} new, "
            f"{summary.updated} updated, {summary.errors} errors"
        )
        return summary
