"""
Campaign lifecycle: draft -> in_review -> approved -> sent, plus archived.

Every action returns a TransitionResult. Unmet preconditions are reported
as ``skipped``, never raised, and a repeated scheduled check on the same
local day reports ``already_run``.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Optional

from ..models.content import Campaign, CampaignStatus, Section
from ..models.results import ReadinessReport, TransitionOutcome, TransitionResult
from .errors import ScheduleNotDue
from .fact_check import FactCheckGate
from .schedule import ScheduleChecker
from .scorer import ITEM_ERRORS
from .store import CurationStore
from .subject_line import SubjectLineGenerator
from .utils import utc_now

logger = logging.getLogger(__name__)


def _result(
    outcome: TransitionOutcome,
    campaign: Optional[Campaign] = None,
    reason: str = "",
    to_status: Optional[CampaignStatus] = None,
    campaign_date: Optional[date] = None,
) -> TransitionResult:
    day = campaign.date if campaign else campaign_date
    return TransitionResult(
        outcome=outcome,
        campaign_id=campaign.id if campaign else None,
        campaign_date=day.isoformat() if day else None,
        from_status=campaign.status if campaign else None,
        to_status=to_status,
        reason=reason,
    )


class CampaignStateMachine:
    """Owns campaign transitions and their preconditions."""

    def __init__(
        self,
        store: CurationStore,
        subject_lines: SubjectLineGenerator,
        gate: FactCheckGate,
        schedule: ScheduleChecker,
        settings=None,
    ):
        self.store = store
        self.subject_lines = subject_lines
        self.gate = gate
        self.schedule = schedule
        self.lead_days = settings.review_lead_days if settings else 1

    def get_or_create(self, day: date) -> Campaign:
        return self.store.get_or_create_campaign(day)

    def readiness(self, campaign: Campaign) -> ReadinessReport:
        """Check that a campaign has content, a subject and verified copy."""
        selected = [s for s in self.store.get_selections(campaign.id, Section.ARTICLES) if s.is_selected]
        report = ReadinessReport(
            ready=False,
            selected_articles=len(selected),
            has_subject_line=bool(campaign.subject_line and campaign.subject_line.strip()),
        )
        if not selected:
            report.reasons.append("No article selections")
        if not report.has_subject_line:
            report.reasons.append("No subject line")

        for selection in selected:
            article = self.store.get_article(int(selection.candidate_id))
            if article is None or not self.gate.is_ready(article):
                report.not_ready_articles.append(int(selection.candidate_id))
        if report.not_ready_articles:
            report.reasons.append(
                f"{len(report.not_ready_articles)} articles without a passing fact-check"
            )

        report.ready = not report.reasons
        return report

    async def _to_review(
        self, campaign: Campaign, now: datetime, guard_date: Optional[date] = None
    ) -> TransitionResult:
        if campaign.status != CampaignStatus.DRAFT:
            return _result(TransitionOutcome.SKIPPED, campaign, f"Campaign is {campaign.status.value}, not draft")

        if self.store.count_selected(campaign.id, Section.ARTICLES) == 0:
            return _result(TransitionOutcome.SKIPPED, campaign, "No active article selections")

        if not (campaign.subject_line and campaign.subject_line.strip()):
            try:
                subject = await self.subject_lines.ensure_subject_line(campaign)
            except ITEM_ERRORS as e:
                logger.warning(f"Subject line generation failed for campaign {campaign.id}: {e}")
                return _result(TransitionOutcome.SKIPPED, campaign, f"Subject line generation failed: {e}")
            if not subject:
                return _result(TransitionOutcome.SKIPPED, campaign, "No subject line")

        if self.store.transition_campaign(
            campaign.id, [CampaignStatus.DRAFT], CampaignStatus.IN_REVIEW, now, guard_date
        ):
            logger.info(f"Campaign {campaign.date} moved to in_review")
            return _result(TransitionOutcome.TRANSITIONED, campaign, to_status=CampaignStatus.IN_REVIEW)

        current = self.store.get_campaign_by_id(campaign.id)
        if guard_date is not None and current and current.review_check_date == guard_date:
            return _result(TransitionOutcome.ALREADY_RUN, current, "Review check already ran today")
        return _result(TransitionOutcome.SKIPPED, current or campaign, "Campaign changed concurrently")

    async def submit_for_review(self, day: date, now: Optional[datetime] = None) -> TransitionResult:
        """Human-initiated draft -> in_review."""
        campaign = self.store.get_campaign(day)
        if campaign is None:
            return _result(TransitionOutcome.SKIPPED, reason="No campaign for date", campaign_date=day)
        return await self._to_review(campaign, now or utc_now())

    async def run_scheduled_review_check(self, now: Optional[datetime] = None) -> TransitionResult:
        """Scheduled draft -> in_review for the upcoming campaign.

        Gated by the review schedule and guarded so that it transitions at
        most once per local day however often the scheduler calls it.
        """
        now = now or utc_now()
        try:
            local = self.schedule.check_review_due(now)
        except ScheduleNotDue as e:
            logger.debug(f"Review check skipped: {e}")
            return _result(TransitionOutcome.SKIPPED, reason=str(e))

        today = local.date()
        target = today + timedelta(days=self.lead_days)
        campaign = self.store.get_campaign(target)
        if campaign is None:
            return _result(TransitionOutcome.SKIPPED, reason="No campaign for date", campaign_date=target)
        if campaign.review_check_date == today:
            return _result(TransitionOutcome.ALREADY_RUN, campaign, "Review check already ran today")
        return await self._to_review(campaign, now, guard_date=today)

    def approve(self, day: date, force: bool = False, now: Optional[datetime] = None) -> TransitionResult:
        """Human approval: in_review -> approved, requires readiness unless forced."""
        campaign = self.store.get_campaign(day)
        if campaign is None:
            return _result(TransitionOutcome.SKIPPED, reason="No campaign for date", campaign_date=day)
        if campaign.status != CampaignStatus.IN_REVIEW:
            return _result(TransitionOutcome.SKIPPED, campaign, f"Campaign is {campaign.status.value}, not in_review")

        if not force:
            report = self.readiness(campaign)
            if not report.ready:
                return _result(TransitionOutcome.SKIPPED, campaign, "; ".join(report.reasons))

        return self._apply(campaign, [CampaignStatus.IN_REVIEW], CampaignStatus.APPROVED, now)

    def mark_sent(self, day: date, now: Optional[datetime] = None) -> TransitionResult:
        """Delivery confirmation: approved -> sent."""
        campaign = self.store.get_campaign(day)
        if campaign is None:
            return _result(TransitionOutcome.SKIPPED, reason="No campaign for date", campaign_date=day)
        if campaign.status != CampaignStatus.APPROVED:
            return _result(TransitionOutcome.SKIPPED, campaign, f"Campaign is {campaign.status.value}, not approved")
        return self._apply(campaign, [CampaignStatus.APPROVED], CampaignStatus.SENT, now)

    def archive(self, day: date, now: Optional[datetime] = None) -> TransitionResult:
        """Administrative archive from any state."""
        campaign = self.store.get_campaign(day)
        if campaign is None:
            return _result(TransitionOutcome.SKIPPED, reason="No campaign for date", campaign_date=day)
        if campaign.status == CampaignStatus.ARCHIVED:
            return _result(TransitionOutcome.SKIPPED, campaign, "Campaign is already archived")
        sources = [s for s in CampaignStatus if s != CampaignStatus.ARCHIVED]
        return self._apply(campaign, sources, CampaignStatus.ARCHIVED, now)

    def _apply(self, campaign, from_statuses, to_status, now) -> TransitionResult:
        if self.store.transition_campaign(campaign.id, from_statuses, to_status, now or utc_now()):
            logger.info(f"Campaign {campaign.date} moved to {to_status.value}")
            return _result(TransitionOutcome.TRANSITIONED, campaign, to_status=to_status)
        return _result(TransitionOutcome.SKIPPED, campaign, "Campaign changed concurrently")
