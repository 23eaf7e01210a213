"""Curation engine: wires the components and exposes the job-level operations."""

import logging
import sqlite3
from datetime import date, datetime, timedelta
from typing import Any, Dict, Iterable, Optional

from ..clients.events_feed import EventsFeedClient
from ..clients.oracle import OracleClient
from ..clients.rss import RSSClient
from ..models.content import Campaign, Section
from ..models.results import (
    IngestSummary,
    ProcessSummary,
    SelectionResult,
    SyncSummary,
    TransitionResult,
)
from ..models.settings import Settings
from .campaign import CampaignStateMachine
from .errors import CurationError
from .fact_check import FactCheckGate
from .reconciler import EventReconciler
from .schedule import ScheduleChecker
from .scorer import CandidateScorer
from .sections import SectionSelector
from .selector import BoundedSlotSelector
from .store import CurationStore
from .subject_line import SubjectLineGenerator
from .utils import local_today, utc_now

logger = logging.getLogger(__name__)

RECORD_KINDS = ("dining", "getaways", "road_work")

# Errors that fail one processing stage but not the ones after it
STAGE_ERRORS = (CurationError, sqlite3.Error, ValueError, TypeError)


class CurationEngine:
    """Entry point shared by the CLI, the web triggers and the scheduler."""

    def __init__(
        self,
        settings: Settings,
        store: Optional[CurationStore] = None,
        oracle: Optional[OracleClient] = None,
        feed: Optional[EventsFeedClient] = None,
        rss: Optional[RSSClient] = None,
    ):
        self.settings = settings
        self.store = store or CurationStore(settings.database_path)
        self.oracle = oracle or OracleClient(settings.openrouter_api_key, settings)
        self.feed = feed or EventsFeedClient(settings)
        self.rss = rss or RSSClient(settings.feed_list(), settings)

        self.scorer = CandidateScorer(self.store, self.oracle, settings)
        self.gate = FactCheckGate(self.store, self.oracle, self.scorer, settings)
        self.sections = SectionSelector(self.store, BoundedSlotSelector(self.store), settings.timezone)
        self.reconciler = EventReconciler(self.store, self.feed, self.oracle, settings)
        self.schedule = ScheduleChecker(self.store, settings)
        self.subject_lines = SubjectLineGenerator(self.store, self.oracle, settings)
        self.campaigns = CampaignStateMachine(
            self.store, self.subject_lines, self.gate, self.schedule, settings
        )

    def upcoming_campaign_date(self, now: Optional[datetime] = None) -> date:
        """Date of the issue currently being prepared."""
        return local_today(self.settings.timezone, now) + timedelta(days=self.settings.review_lead_days)

    async def sync_events(
        self, start_date: Optional[date] = None, end_date: Optional[date] = None
    ) -> SyncSummary:
        return await self.reconciler.sync(start_date, end_date)

    async def ingest_articles(
        self, day: Optional[date] = None, now: Optional[datetime] = None
    ) -> IngestSummary:
        """Pull recent RSS items into the candidate pool of a campaign."""
        now = now or utc_now()
        campaign = self.store.get_or_create_campaign(day or self.upcoming_campaign_date(now))
        feeds = self.settings.feed_list()
        summary = IngestSummary(feeds=len(feeds))

        items = await self.rss.get_recent_articles(hours=24, now=now)
        summary.fetched = len(items)
        for item in items:
            try:
                article_id = self.store.insert_article(
                    campaign.id,
                    source=item["source"],
                    external_id=item["external_id"],
                    title=item["title"],
                    body=item.get("body", ""),
                    source_url=item.get("source_url"),
                    image_url=item.get("image_url"),
                    ingested_at=now,
                )
            except (sqlite3.Error, KeyError) as e:
                logger.error(f"Error storing article {item.get('external_id')}: {e}")
                summary.errors += 1
                continue
            if article_id is not None:
                summary.new += 1

        logger.info(
            f"Ingested {summary.new} new articles for campaign {campaign.date} "
            f"({summary.fetched} fetched, {summary.errors} errors)"
        )
        return summary

    async def process_campaign(self, day: date) -> ProcessSummary:
        """Score, deduplicate, select, write and verify one campaign.

        A failing stage is recorded and later stages still run.
        """
        campaign = self.store.get_or_create_campaign(day)
        summary = ProcessSummary(campaign_id=campaign.id, campaign_date=day.isoformat())

        try:
            summary.scoring = await self.scorer.score_candidates(campaign.id)
        except STAGE_ERRORS as e:
            self._stage_failed(summary, "scoring", e)

        try:
            summary.dedup = await self.scorer.deduplicate(campaign.id)
        except STAGE_ERRORS as e:
            self._stage_failed(summary, "dedup", e)

        try:
            summary.selected = self.sections.select_all(campaign)
        except STAGE_ERRORS as e:
            self._stage_failed(summary, "selection", e)

        try:
            summary.copy_generation = await self.scorer.generate_copy_for_selected(campaign.id)
        except STAGE_ERRORS as e:
            self._stage_failed(summary, "copy", e)

        try:
            summary.fact_check = await self.gate.check_campaign(campaign.id)
        except STAGE_ERRORS as e:
            self._stage_failed(summary, "fact_check", e)

        try:
            summary.subject_line = await self.subject_lines.ensure_subject_line(
                self.store.get_campaign_by_id(campaign.id)
            )
        except STAGE_ERRORS as e:
            self._stage_failed(summary, "subject_line", e)

        logger.info(
            f"Processed campaign {day}: {summary.selected} selected, "
            f"{len(summary.stage_errors)} stage errors"
        )
        return summary

    def _stage_failed(self, summary: ProcessSummary, stage: str, error: Exception):
        logger.error(f"Stage {stage} failed for campaign {summary.campaign_date}: {error}")
        summary.stage_errors[stage] = str(error)

    async def run_review_check(self, now: Optional[datetime] = None) -> TransitionResult:
        return await self.campaigns.run_scheduled_review_check(now)

    async def submit_for_review(self, day: date) -> TransitionResult:
        return await self.campaigns.submit_for_review(day)

    def approve(self, day: date, force: bool = False) -> TransitionResult:
        return self.campaigns.approve(day, force=force)

    def mark_sent(self, day: date) -> TransitionResult:
        return self.campaigns.mark_sent(day)

    def archive(self, day: date) -> TransitionResult:
        return self.campaigns.archive(day)

    def _require_campaign(self, day: date) -> Campaign:
        campaign = self.store.get_campaign(day)
        if campaign is None:
            raise CurationError(f"No campaign for {day}")
        return campaign

    def status(self, day: date) -> Optional[Dict[str, Any]]:
        """Campaign state, selections per section and readiness."""
        campaign = self.store.get_campaign(day)
        if campaign is None:
            return None
        selections = {
            section.value: [
                {
                    "candidate_id": s.candidate_id,
                    "slot_key": s.slot_key,
                    "order": s.selection_order,
                    "featured": s.is_featured,
                }
                for s in self.store.get_selections(campaign.id, section)
                if s.is_selected
            ]
            for section in Section
        }
        return {
            "campaign": campaign.model_dump(mode="json"),
            "selections": selections,
            "readiness": self.campaigns.readiness(campaign).model_dump(),
        }

    def toggle_selection(
        self, day: date, section: Section, candidate_id: str, selected: bool, slot_key: str = ""
    ) -> bool:
        campaign = self._require_campaign(day)
        config = self.sections.config_for(section, slot_key)
        if selected and not self.store.candidate_exists(section, candidate_id, campaign.id):
            raise CurationError(f"No {section.value} candidate {candidate_id} for {day}")
        return self.sections.selector.toggle(campaign.id, config, candidate_id, selected, slot_key)

    def reselect(self, day: date, section: Section, slot_key: str = "") -> SelectionResult:
        """Explicitly fill slots freed by removals."""
        campaign = self._require_campaign(day)
        config = self.sections.config_for(section, slot_key)
        candidates = self.sections.candidates_for(campaign, section, slot_key)
        return self.sections.selector.reselect(campaign.id, config, candidates, slot_key)

    def force_include(self, article_id: int, value: bool = True) -> bool:
        changed = self.store.set_force_include(article_id, value)
        if changed:
            logger.info(f"Article {article_id} force_include set to {value}")
        return changed

    def set_event_flags(
        self,
        external_id: str,
        featured: Optional[bool] = None,
        paid_placement: Optional[bool] = None,
        active: Optional[bool] = None,
    ) -> bool:
        return self.store.set_event_flags(external_id, featured, paid_placement, active)

    def import_records(self, kind: str, records: Iterable[Dict[str, Any]]) -> int:
        """Import dining deals, getaway listings or road-work items.

        Raises:
            ValueError: for an unknown kind or a record missing required keys
        """
        if kind not in RECORD_KINDS:
            raise ValueError(f"Unknown record kind {kind!r}, expected one of {', '.join(RECORD_KINDS)}")

        count = 0
        for record in records:
            try:
                if kind == "dining":
                    self.store.add_dining_deal(
                        business_name=record["business_name"],
                        deal_text=record["deal_text"],
                        day_of_week=record["day_of_week"],
                        is_featured=bool(record.get("is_featured", False)),
                        paid_placement=bool(record.get("paid_placement", False)),
                    )
                elif kind == "getaways":
                    listing_type = str(record["listing_type"]).lower()
                    if listing_type not in ("local", "greater"):
                        raise ValueError(f"listing_type must be local or greater, got {listing_type!r}")
                    self.store.add_getaway_listing(
                        title=record["title"],
                        listing_type=listing_type,
                        city=record.get("city"),
                        url=record.get("url"),
                        image_url=record.get("image_url"),
                    )
                else:
                    reopen = record.get("expected_reopen")
                    self.store.add_road_work_item(
                        road_name=record["road_name"],
                        start_date=date.fromisoformat(record["start_date"]),
                        closure_reason=record.get("closure_reason", ""),
                        area=record.get("area"),
                        expected_reopen=date.fromisoformat(reopen) if reopen else None,
                        source_url=record.get("source_url"),
                    )
            except KeyError as e:
                raise ValueError(f"Record {count + 1} is missing {e}") from e
            count += 1

        logger.info(f"Imported {count} {kind} records")
        return count
