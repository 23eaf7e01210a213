"""Fact-check gate between generated copy and campaign readiness."""

import logging
from typing import Optional

from ..clients.oracle import OracleClient
from ..models.content import CandidateArticle, FactCheckResult, GeneratedCopy, Section
from ..models.results import FactCheckSummary
from .scorer import ITEM_ERRORS, CandidateScorer
from .store import CurationStore

logger = logging.getLogger(__name__)

HOLD = "hold"
DROP = "drop"


class FactCheckGate:
    """Verifies generated article copy and decides what counts as ready.

    A failing check never deletes copy. The article is regenerated at most
    ``max_regenerations`` times per campaign; after that the failure policy
    either holds it for human review or drops it from the selection.
    """

    def __init__(
        self,
        store: CurationStore,
        oracle: OracleClient,
        scorer: CandidateScorer,
        settings=None,
    ):
        self.store = store
        self.oracle = oracle
        self.scorer = scorer
        self.max_regenerations = settings.max_regenerations if settings else 1
        self.failure_policy = settings.fact_check_failure_policy if settings else HOLD

    async def verify(self, article: CandidateArticle) -> FactCheckResult:
        """Fact-check the article's current copy version and store the result."""
        generated = GeneratedCopy(
            headline=article.generated_headline or article.title,
            content=article.generated_body or "",
        )
        result = await self.oracle.fact_check(generated, article.body)
        result = result.model_copy(update={"article_id": article.id, "copy_version": article.copy_version})
        stored = self.store.save_fact_check(result)
        logger.info(
            f"Fact-check for article {article.id} v{article.copy_version}: "
            f"{'PASSED' if stored.passed else 'FAILED'} (score: {stored.score:g}/30)"
        )
        return stored

    def current_result(self, article: CandidateArticle) -> Optional[FactCheckResult]:
        if not article.generated_body:
            return None
        return self.store.get_fact_check(article.id, article.copy_version)

    def is_ready(self, article: CandidateArticle) -> bool:
        """Ready means force-included or a passing check of the current copy."""
        if article.force_include:
            return True
        result = self.current_result(article)
        return result is not None and result.passed

    async def check_article(self, article: CandidateArticle, summary: FactCheckSummary):
        """Run the gate for one article, updating ``summary`` in place."""
        if article.force_include or not article.generated_body:
            return

        summary.checked += 1
        try:
            result = self.current_result(article) or await self.verify(article)
            while not result.passed and article.regeneration_count < self.max_regenerations:
                logger.info(f"Regenerating copy for article {article.id} after failed fact-check")
                await self.scorer.generate_copy(article, regeneration=True)
                summary.regenerated += 1
                article = self.store.get_article(article.id)
                result = await self.verify(article)
        except ITEM_ERRORS as e:
            logger.warning(f"Fact-check gate failed for article {article.id}: {e}")
            summary.errors += 1
            return

        if result.passed:
            summary.passed += 1
            return

        summary.failed += 1
        if self.failure_policy == DROP:
            self.store.set_selection_state(
                article.campaign_id, Section.ARTICLES, str(article.id), is_selected=False
            )
            summary.dropped += 1
            logger.warning(f"Dropped article {article.id} after repeated fact-check failures")
        else:
            summary.held += 1
            logger.warning(f"Holding article {article.id} for review after repeated fact-check failures")

    async def check_campaign(self, campaign_id: int) -> FactCheckSummary:
        """Gate every selected article of a campaign."""
        summary = FactCheckSummary()
        for article in self.scorer.selected_articles(campaign_id):
            await self.check_article(article, summary)
        logger.info(
            f"Fact-check gate for campaign {campaign_id}: {summary.passed} passed, "
            f"{summary.failed} failed, {summary.regenerated} regenerated"
        )
        return summary
