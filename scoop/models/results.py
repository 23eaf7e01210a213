"""Run summaries returned by every engine operation."""

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from .content import CampaignStatus, Selection


class SyncSummary(BaseModel):
    """Result contract of one events reconciliation run."""

    fetched: int = 0
    new: int = 0
    updated: int = 0
    errors: int = 0
    deactivated: int = 0
    summaries_generated: int = 0
    batches_completed: int = 0
    batches_total: int = 0
    budget_exhausted: bool = False
    failed_days: List[str] = Field(default_factory=list)
    error: Optional[str] = Field(None, description="Top-level error for a failed run")

    @property
    def succeeded(self) -> bool:
        return self.error is None


class SelectionResult(BaseModel):
    """Selections of one (campaign, section, slot) after a selector call."""

    section: str
    slot_key: str = ""
    capacity: int
    selections: List[Selection] = Field(default_factory=list)
    newly_selected: int = 0
    reused: bool = Field(False, description="Existing selections were returned")

    @property
    def selected_ids(self) -> List[str]:
        return [s.candidate_id for s in self.selections if s.is_selected]


class TransitionOutcome(str, Enum):
    TRANSITIONED = "transitioned"
    SKIPPED = "skipped"
    ALREADY_RUN = "already_run"


class TransitionResult(BaseModel):
    """Structured result of a campaign state transition attempt."""

    outcome: TransitionOutcome
    campaign_id: Optional[int] = None
    campaign_date: Optional[str] = None
    from_status: Optional[CampaignStatus] = None
    to_status: Optional[CampaignStatus] = None
    reason: str = ""

    @property
    def transitioned(self) -> bool:
        return self.outcome == TransitionOutcome.TRANSITIONED


class ScoringSummary(BaseModel):
    scored: int = 0
    failed: int = 0
    skipped: int = 0


class DedupSummary(BaseModel):
    groups: int = 0
    duplicates_retired: int = 0
    failed_open: bool = False


class CopySummary(BaseModel):
    generated: int = 0
    failed: int = 0


class FactCheckSummary(BaseModel):
    checked: int = 0
    passed: int = 0
    failed: int = 0
    regenerated: int = 0
    held: int = 0
    dropped: int = 0
    errors: int = 0


class ReadinessReport(BaseModel):
    """Whether a campaign may be approved and sent."""

    ready: bool
    selected_articles: int = 0
    has_subject_line: bool = False
    not_ready_articles: List[int] = Field(default_factory=list)
    reasons: List[str] = Field(default_factory=list)


class IngestSummary(BaseModel):
    feeds: int = 0
    fetched: int = 0
    new: int = 0
    errors: int = 0


class ProcessSummary(BaseModel):
    """Per-stage results of processing one campaign."""

    campaign_id: int
    campaign_date: str
    scoring: ScoringSummary = Field(default_factory=ScoringSummary)
    dedup: DedupSummary = Field(default_factory=DedupSummary)
    selected: Dict[str, int] = Field(default_factory=dict)
    copy_generation: CopySummary = Field(default_factory=CopySummary)
    fact_check: FactCheckSummary = Field(default_factory=FactCheckSummary)
    subject_line: Optional[str] = None
    stage_errors: Dict[str, str] = Field(default_factory=dict)
