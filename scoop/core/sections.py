"""Section rules and candidate providers for the slot selector."""

import logging
from datetime import timedelta
from typing import Dict, List

from ..models.content import Campaign, Section
from ..models.results import SelectionResult
from .selector import BoundedSlotSelector, SectionConfig, SlotCandidate
from .store import CurationStore
from .utils import local_day_bounds, to_utc_iso

logger = logging.getLogger(__name__)

ARTICLES = SectionConfig(Section.ARTICLES, capacity=5)
EVENTS_PER_DAY = SectionConfig(Section.EVENTS, capacity=8)
DINING = SectionConfig(Section.DINING, capacity=8, max_per_group=2)
GETAWAYS_LOCAL = SectionConfig(Section.GETAWAYS, capacity=1)
GETAWAYS_GREATER = SectionConfig(Section.GETAWAYS, capacity=2)
ROAD_WORK = SectionConfig(Section.ROAD_WORK, capacity=9)

EVENT_DAYS = 3
GETAWAY_SLOTS = {"local": GETAWAYS_LOCAL, "greater": GETAWAYS_GREATER}


def _placement_rank(paid: bool, featured: bool) -> float:
    """Paid placements first, then featured items, then everything else."""
    if paid:
        return 2.0
    if featured:
        return 1.0
    return 0.0


class SectionSelector:
    """Builds candidates for each section and runs the bounded selector on them."""

    def __init__(self, store: CurationStore, selector: BoundedSlotSelector, timezone: str = "America/Chicago"):
        self.store = store
        self.selector = selector
        self.timezone = timezone

    def article_candidates(self, campaign: Campaign) -> List[SlotCandidate]:
        return [
            SlotCandidate(
                candidate_id=str(article.id),
                rank_score=article.rank_score or 0.0,
                sort_time=to_utc_iso(article.ingested_at),
            )
            for article in self.store.list_articles(campaign.id, eligible_only=True)
        ]

    def event_slot_keys(self, campaign: Campaign) -> List[str]:
        return [(campaign.date + timedelta(days=offset)).isoformat() for offset in range(EVENT_DAYS)]

    def event_candidates(self, campaign: Campaign, slot_key: str) -> List[SlotCandidate]:
        day = campaign.date + timedelta(days=self.event_slot_keys(campaign).index(slot_key))
        start, end = local_day_bounds(day, self.timezone)
        return [
            SlotCandidate(
                candidate_id=event.external_id,
                rank_score=_placement_rank(event.paid_placement, event.featured),
                sort_time=to_utc_iso(event.start_date),
                featured=event.featured or event.paid_placement,
            )
            for event in self.store.list_events_between(start, end)
        ]

    def dining_candidates(self, campaign: Campaign) -> List[SlotCandidate]:
        weekday = campaign.date.strftime("%A")
        return [
            SlotCandidate(
                candidate_id=str(deal.id),
                rank_score=_placement_rank(deal.paid_placement, deal.is_featured),
                sort_time=to_utc_iso(deal.created_at),
                featured=deal.is_featured or deal.paid_placement,
                group_key=deal.business_name.strip().lower(),
            )
            for deal in self.store.list_dining_deals(weekday)
        ]

    def getaway_candidates(self, listing_type: str) -> List[SlotCandidate]:
        # Never-selected listings sort first, then least recently selected
        return [
            SlotCandidate(
                candidate_id=str(listing.id),
                rank_score=0.0,
                sort_time=listing.last_selected_on.isoformat() if listing.last_selected_on else "",
            )
            for listing in self.store.list_getaway_listings(listing_type)
        ]

    def road_work_candidates(self, campaign: Campaign) -> List[SlotCandidate]:
        return [
            SlotCandidate(
                candidate_id=str(item.id),
                rank_score=0.0,
                sort_time=item.start_date.isoformat(),
            )
            for item in self.store.list_road_work(campaign.date)
        ]

    def select_articles(self, campaign: Campaign) -> SelectionResult:
        return self.selector.select(campaign.id, ARTICLES, self.article_candidates(campaign))

    def select_events(self, campaign: Campaign) -> List[SelectionResult]:
        return [
            self.selector.select(
                campaign.id, EVENTS_PER_DAY, self.event_candidates(campaign, slot_key), slot_key
            )
            for slot_key in self.event_slot_keys(campaign)
        ]

    def select_dining(self, campaign: Campaign) -> SelectionResult:
        return self.selector.select(campaign.id, DINING, self.dining_candidates(campaign))

    def select_getaways(self, campaign: Campaign) -> List[SelectionResult]:
        results = []
        for listing_type, config in GETAWAY_SLOTS.items():
            result = self.selector.select(
                campaign.id, config, self.getaway_candidates(listing_type), listing_type
            )
            if result.newly_selected:
                self.store.mark_getaways_selected(
                    [int(cid) for cid in result.selected_ids], campaign.date
                )
            results.append(result)
        return results

    def select_road_work(self, campaign: Campaign) -> SelectionResult:
        return self.selector.select(campaign.id, ROAD_WORK, self.road_work_candidates(campaign))

    def select_all(self, campaign: Campaign) -> Dict[str, int]:
        """Run every section; returns selected counts per section."""
        counts = {
            Section.ARTICLES.value: len(self.select_articles(campaign).selected_ids),
            Section.EVENTS.value: sum(len(r.selected_ids) for r in self.select_events(campaign)),
            Section.DINING.value: len(self.select_dining(campaign).selected_ids),
            Section.GETAWAYS.value: sum(len(r.selected_ids) for r in self.select_getaways(campaign)),
            Section.ROAD_WORK.value: len(self.select_road_work(campaign).selected_ids),
        }
        logger.info(f"Section selection for campaign {campaign.id}: {counts}")
        return counts

    def config_for(self, section: Section, slot_key: str = "") -> SectionConfig:
        """Capacity rules of a section slot, used by operator toggles."""
        if section == Section.GETAWAYS:
            return GETAWAY_SLOTS[slot_key]
        return {
            Section.ARTICLES: ARTICLES,
            Section.EVENTS: EVENTS_PER_DAY,
            Section.DINING: DINING,
            Section.ROAD_WORK: ROAD_WORK,
        }[section]

    def candidates_for(self, campaign: Campaign, section: Section, slot_key: str = "") -> List[SlotCandidate]:
        if section == Section.ARTICLES:
            return self.article_candidates(campaign)
        if section == Section.EVENTS:
            return self.event_candidates(campaign, slot_key)
        if section == Section.DINING:
            return self.dining_candidates(campaign)
        if section == Section.GETAWAYS:
            return self.getaway_candidates(slot_key)
        return self.road_work_candidates(campaign)
