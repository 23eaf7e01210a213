"""Generic bounded-capacity slot selection with idempotent persistence."""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from ..models.content import Section
from ..models.results import SelectionResult
from .errors import CapacityExceeded
from .store import CurationStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SectionConfig:
    """Fixed capacity rules of one section slot."""

    section: Section
    capacity: int
    max_per_group: Optional[int] = None


@dataclass(frozen=True)
class SlotCandidate:
    """A candidate as seen by the selector.

    ``sort_time`` is an ISO string (ingestion or start time) used to break
    ties in favour of the earliest item.
    """

    candidate_id: str
    rank_score: float
    sort_time: str = ""
    featured: bool = False
    group_key: Optional[str] = None


class BoundedSlotSelector:
    """Pick up to N ranked candidates per (campaign, section, slot) exactly once."""

    def __init__(self, store: CurationStore):
        self.store = store

    def rank(self, candidates: Sequence[SlotCandidate], config: SectionConfig) -> List[SlotCandidate]:
        """Order candidates and cut to capacity.

        Highest ``rank_score`` first, earliest ``sort_time`` on ties. With
        ``max_per_group`` a first pass skips candidates whose group is
        full; a relaxation pass then fills any remaining capacity from the
        skipped ones.
        """
        ordered = sorted(candidates, key=lambda c: (-c.rank_score, c.sort_time, c.candidate_id))
        seen = set()
        unique = []
        for candidate in ordered:
            if candidate.candidate_id not in seen:
                seen.add(candidate.candidate_id)
                unique.append(candidate)

        if not config.max_per_group:
            return unique[: config.capacity]

        picked: List[SlotCandidate] = []
        skipped: List[SlotCandidate] = []
        per_group = {}
        for candidate in unique:
            if len(picked) >= config.capacity:
                break
            key = candidate.group_key
            if key is not None and per_group.get(key, 0) >= config.max_per_group:
                skipped.append(candidate)
                continue
            per_group[key] = per_group.get(key, 0) + 1
            picked.append(candidate)

        if len(picked) < config.capacity and skipped:
            logger.debug(
                f"{config.section.value}: relaxing per-group limit to fill "
                f"{config.capacity - len(picked)} more slots"
            )
            picked.extend(skipped[: config.capacity - len(picked)])
            picked.sort(key=lambda c: (-c.rank_score, c.sort_time, c.candidate_id))
        return picked

    def select(
        self,
        campaign_id: int,
        config: SectionConfig,
        candidates: Sequence[SlotCandidate],
        slot_key: str = "",
    ) -> SelectionResult:
        """Initial selection of a slot; later calls return the stored set unchanged."""
        existing = self.store.get_selections(campaign_id, config.section, slot_key)
        if existing:
            logger.debug(f"{config.section.value}[{slot_key}] already selected for campaign {campaign_id}")
            return SelectionResult(
                section=config.section.value,
                slot_key=slot_key,
                capacity=config.capacity,
                selections=existing,
                reused=True,
            )

        picks = self.rank(candidates, config)
        if len(picks) > config.capacity:
            raise CapacityExceeded(
                f"{config.section.value}[{slot_key}] ranked {len(picks)} picks for capacity {config.capacity}"
            )

        has_featured = any(c.featured for c in picks)
        rows = []
        for position, candidate in enumerate(picks):
            featured = candidate.featured if has_featured else position == 0
            rows.append((candidate.candidate_id, featured))

        selections, created = self.store.insert_selections_if_absent(
            campaign_id, config.section, slot_key, rows
        )
        if created:
            logger.info(
                f"Selected {len(selections)}/{config.capacity} {config.section.value} "
                f"for campaign {campaign_id}{f' [{slot_key}]' if slot_key else ''}"
            )
        else:
            logger.info(
                f"{config.section.value}[{slot_key}] was selected concurrently for campaign "
                f"{campaign_id}, using stored selections"
            )
        return SelectionResult(
            section=config.section.value,
            slot_key=slot_key,
            capacity=config.capacity,
            selections=selections,
            newly_selected=len(selections) if created else 0,
            reused=not created,
        )

    def reselect(
        self,
        campaign_id: int,
        config: SectionConfig,
        candidates: Sequence[SlotCandidate],
        slot_key: str = "",
    ) -> SelectionResult:
        """Fill slots freed by removals with the best unused candidates.

        Candidates that were ever selected in this slot, including ones a
        human removed, are not considered again.
        """
        existing = self.store.get_selections(campaign_id, config.section, slot_key)
        if not existing:
            return self.select(campaign_id, config, candidates, slot_key)

        used = {s.candidate_id for s in existing}
        free = config.capacity - sum(1 for s in existing if s.is_selected)
        fresh = [c for c in candidates if c.candidate_id not in used]
        picks = self.rank(fresh, SectionConfig(config.section, max(free, 0), config.max_per_group))
        if not picks:
            return SelectionResult(
                section=config.section.value,
                slot_key=slot_key,
                capacity=config.capacity,
                selections=existing,
                reused=True,
            )

        selections = self.store.add_selections(
            campaign_id,
            config.section,
            slot_key,
            [c.candidate_id for c in picks],
            config.capacity,
        )
        logger.info(
            f"Re-selection added {len(picks)} {config.section.value} for campaign {campaign_id}"
        )
        return SelectionResult(
            section=config.section.value,
            slot_key=slot_key,
            capacity=config.capacity,
            selections=selections,
            newly_selected=len(picks),
        )

    def toggle(
        self,
        campaign_id: int,
        config: SectionConfig,
        candidate_id: str,
        selected: bool,
        slot_key: str = "",
    ) -> bool:
        """Human toggle of one candidate.

        Turning a candidate off frees its slot without promoting anything.
        Turning one on is refused when the slot is already full.

        Returns:
            True if the change was applied
        """
        if not selected:
            changed = self.store.set_selection_state(
                campaign_id, config.section, candidate_id, is_selected=False, slot_key=slot_key
            )
            if changed:
                logger.info(f"Deselected {config.section.value} {candidate_id} for campaign {campaign_id}")
            return bool(changed)

        try:
            self.store.add_selections(campaign_id, config.section, slot_key, [candidate_id], config.capacity)
        except CapacityExceeded as e:
            logger.warning(f"Refusing to select {config.section.value} {candidate_id}: {e}")
            return False
        logger.info(f"Selected {config.section.value} {candidate_id} for campaign {campaign_id}")
        return True
