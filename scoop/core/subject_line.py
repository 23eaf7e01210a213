"""Subject line generation from a campaign's lead article."""

import logging
from typing import Optional

from ..clients.oracle import OracleClient
from ..models.content import Campaign, CandidateArticle, Section
from .store import CurationStore

logger = logging.getLogger(__name__)


def fit_subject_line(text: str, max_length: int) -> str:
    """Trim to ``max_length`` characters, preferring a word boundary."""
    text = " ".join(text.split()).strip().strip('"').strip()
    if len(text) <= max_length:
        return text
    cut = text[:max_length]
    if " " in cut and not text[max_length].isspace():
        cut = cut[: cut.rfind(" ")]
    return cut.rstrip(" ,;:-")


class SubjectLineGenerator:
    def __init__(self, store: CurationStore, oracle: OracleClient, settings=None):
        self.store = store
        self.oracle = oracle
        self.max_length = settings.subject_line_max_length if settings else 40

    def lead_article(self, campaign: Campaign) -> Optional[CandidateArticle]:
        """The selected article in first position."""
        selected = [
            s for s in self.store.get_selections(campaign.id, Section.ARTICLES) if s.is_selected
        ]
        if not selected:
            return None
        lead = min(selected, key=lambda s: s.selection_order)
        return self.store.get_article(int(lead.candidate_id))

    async def ensure_subject_line(self, campaign: Campaign) -> Optional[str]:
        """Return the campaign's subject line, generating one if it has none.

        Raises:
            MalformedResponse, ValidationError, ExternalSourceError: when
            the oracle call fails
        """
        if campaign.subject_line and campaign.subject_line.strip():
            return campaign.subject_line

        article = self.lead_article(campaign)
        if article is None:
            logger.info(f"No selected article to build a subject line for campaign {campaign.id}")
            return None

        raw = await self.oracle.generate_subject_line(
            article.generated_headline or article.title,
            article.generated_body or article.body,
            self.max_length,
        )
        subject = fit_subject_line(raw, self.max_length)
        if not subject:
            return None

        if self.store.set_subject_line_if_absent(campaign.id, subject):
            logger.info(f"Generated subject line for campaign {campaign.id}: {subject!r}")
            return subject
        # Another writer stored one first
        stored = self.store.get_campaign_by_id(campaign.id)
        return stored.subject_line if stored else subject
