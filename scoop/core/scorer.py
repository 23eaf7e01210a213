"""Candidate scoring, topic deduplication and copy generation."""

import asyncio
import logging
from typing import Dict, List, Optional, Tuple

from ..clients.oracle import OracleClient
from ..models.content import CandidateArticle, Section
from ..models.results import CopySummary, DedupSummary, ScoringSummary
from .errors import ExternalSourceError, MalformedResponse, ValidationError
from .store import CurationStore

logger = logging.getLogger(__name__)

PENALIZED_CRITERION = "interest_level"

# Failures that cost one item, never the batch
ITEM_ERRORS = (ExternalSourceError, MalformedResponse, ValidationError)


def compute_rank_score(
    criteria: Dict[str, float], has_image: bool, penalty: float = 5.0
) -> Tuple[float, Dict[str, float]]:
    """Sum criteria into a 0-30 rank score.

    Candidates without an image lose ``penalty`` points on the interest
    criterion before summation (never below zero).

    Returns:
        The rank score and the criteria as stored
    """
    adjusted = dict(criteria)
    if not has_image and PENALIZED_CRITERION in adjusted:
        adjusted[PENALIZED_CRITERION] = max(0.0, adjusted[PENALIZED_CRITERION] - penalty)
    return round(sum(adjusted.values()), 2), adjusted


def pick_canonical(members: List[CandidateArticle]) -> CandidateArticle:
    """Longest body wins; then higher score, then earlier ingestion."""
    return max(
        members,
        key=lambda a: (
            a.content_length,
            a.rank_score or 0.0,
            -a.ingested_at.timestamp(),
            -a.id,
        ),
    )


class CandidateScorer:
    """Turns raw candidates into ranked, deduplicated, rewritten articles."""

    def __init__(self, store: CurationStore, oracle: OracleClient, settings=None):
        self.store = store
        self.oracle = oracle
        self.penalty = settings.missing_image_penalty if settings else 5.0
        self.max_concurrency = settings.max_concurrency if settings else 3

    async def score_candidate(self, article: CandidateArticle) -> Optional[float]:
        """Score one article and persist the result.

        A failed call records ``rank_score = 0`` and flags the article so
        it is excluded from automatic selection.
        """
        try:
            scored = await self.oracle.score(article)
        except ITEM_ERRORS as e:
            logger.warning(f"Scoring failed for article {article.id}: {e}")
            self.store.save_score(article.id, 0.0, {}, failed=True)
            return None

        rank_score, criteria = compute_rank_score(scored.criteria, article.has_image, self.penalty)
        self.store.save_score(article.id, rank_score, criteria)
        logger.debug(f"Article {article.id} scored {rank_score}")
        return rank_score

    async def score_candidates(self, campaign_id: int, force: bool = False) -> ScoringSummary:
        """Score the campaign's unscored articles (all of them with ``force``)."""
        articles = self.store.list_articles(campaign_id, unscored_only=not force)
        summary = ScoringSummary()
        if not articles:
            return summary

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def limited(article):
            async with semaphore:
                return await self.score_candidate(article)

        results = await asyncio.gather(*(limited(a) for a in articles))
        for result in results:
            if result is None:
                summary.failed += 1
            else:
                summary.scored += 1

        logger.info(
            f"Scored {summary.scored} articles for campaign {campaign_id} ({summary.failed} failed)"
        )
        return summary

    async def deduplicate(self, campaign_id: int) -> DedupSummary:
        """Cluster the campaign's canonical articles into topic groups.

        A group holding an already selected article keeps that article as
        its canonical member. Articles left ungrouped, including those that
        failed scoring, get a singleton group. If the oracle call fails
        every candidate is treated as unique.
        """
        articles = self.store.list_articles(campaign_id)
        candidates = [a for a in articles if a.is_active and a.is_canonical and not a.scoring_failed]
        summary = DedupSummary()
        groups = []
        if len(candidates) >= 2:
            try:
                groups = await self.oracle.dedupe(candidates)
            except ITEM_ERRORS as e:
                logger.warning(f"Deduplication failed for campaign {campaign_id}, treating all as unique: {e}")
                summary.failed_open = True
                groups = []

        selected_ids = {a.id for a in self.selected_articles(campaign_id)}
        grouped = set()
        for group in groups:
            members = [candidates[i] for i in group.member_indices]
            chosen = [m for m in members if m.id in selected_ids]
            canonical = pick_canonical(chosen or members)
            self.store.save_topic_group(
                campaign_id, group.topic_signature, canonical.id, [m.id for m in members]
            )
            for member in chosen:
                if member.id != canonical.id:
                    self.store.set_selection_state(
                        campaign_id, Section.ARTICLES, str(member.id), is_selected=False
                    )
                    logger.info(f"Deselected duplicate article {member.id} in favour of {canonical.id}")
            grouped.update(m.id for m in members)
            summary.groups += 1
            summary.duplicates_retired += len(members) - 1
            logger.info(
                f"Topic '{group.topic_signature}': kept article {canonical.id}, "
                f"retired {[m.id for m in members if m.id != canonical.id]}"
            )

        for article in articles:
            if article.id not in grouped and article.topic_group_id is None:
                self.store.save_topic_group(campaign_id, article.title[:100], article.id, [article.id])

        return summary

    async def generate_copy(self, article: CandidateArticle, regeneration: bool = False) -> int:
        """Rewrite one article and store it as a new copy version."""
        copy = await self.oracle.rewrite(article)
        version = self.store.save_generated_copy(article.id, copy.headline, copy.content, regeneration)
        logger.debug(f"Generated copy v{version} for article {article.id}")
        return version

    def selected_articles(self, campaign_id: int) -> List[CandidateArticle]:
        articles = []
        for selection in self.store.get_selections(campaign_id, Section.ARTICLES):
            if selection.is_selected:
                article = self.store.get_article(int(selection.candidate_id))
                if article is not None:
                    articles.append(article)
        return articles

    async def generate_copy_for_selected(self, campaign_id: int) -> CopySummary:
        """Generate copy for selected articles that have none yet."""
        pending = [a for a in self.selected_articles(campaign_id) if not a.generated_body]
        summary = CopySummary()
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def limited(article):
            async with semaphore:
                try:
                    await self.generate_copy(article)
                    return True
                except ITEM_ERRORS as e:
                    logger.warning(f"Copy generation failed for article {article.id}: {e}")
                    return False

        for ok in await asyncio.gather(*(limited(a) for a in pending)):
            if ok:
                summary.generated += 1
            else:
                summary.failed += 1
        return summary
