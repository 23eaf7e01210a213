"""Content models for the curation engine."""

import datetime as dt
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, computed_field

FACT_CHECK_PASS_THRESHOLD = 20


class CampaignStatus(str, Enum):
    """Lifecycle states of a daily campaign."""

    DRAFT = "draft"
    IN_REVIEW = "in_review"
    APPROVED = "approved"
    SENT = "sent"
    ARCHIVED = "archived"


class Section(str, Enum):
    """Newsletter sections filled by the slot selector."""

    ARTICLES = "articles"
    EVENTS = "events"
    DINING = "dining"
    GETAWAYS = "getaways"
    ROAD_WORK = "road_work"


class Campaign(BaseModel):
    """One newsletter issue per calendar date."""

    id: int = Field(..., description="Row identifier")
    date: dt.date = Field(..., description="Issue date (unique)")
    status: CampaignStatus = Field(CampaignStatus.DRAFT, description="Workflow state")
    subject_line: Optional[str] = Field(None, description="Email subject line")
    created_at: dt.datetime = Field(..., description="Creation time")
    in_review_at: Optional[dt.datetime] = None
    approved_at: Optional[dt.datetime] = None
    sent_at: Optional[dt.datetime] = None
    archived_at: Optional[dt.datetime] = None
    review_check_date: Optional[dt.date] = Field(
        None, description="Local date the scheduled review check last ran"
    )


class CandidateArticle(BaseModel):
    """Raw ingested content item."""

    id: int = Field(..., description="Row identifier")
    campaign_id: Optional[int] = Field(None, description="Owning campaign")
    source: str = Field(..., description="Source identifier")
    external_id: str = Field(..., description="Identifier within the source")
    title: str = Field(..., description="Original title")
    body: str = Field("", description="Original body or description")
    source_url: Optional[str] = Field(None, description="Canonical source URL")
    image_url: Optional[str] = Field(None, description="Accompanying image")
    ingested_at: dt.datetime = Field(..., description="Ingestion time")
    is_active: bool = Field(True, description="Eligible for selection")
    is_canonical: bool = Field(True, description="Representative of its topic group")
    rank_score: Optional[float] = Field(None, description="0-30 weighted score")
    criteria: Dict[str, float] = Field(default_factory=dict, description="Sub-scores")
    scoring_failed: bool = Field(False, description="Last scoring attempt failed")
    topic_group_id: Optional[int] = Field(None, description="Dedup topic group")
    generated_headline: Optional[str] = None
    generated_body: Optional[str] = None
    copy_version: int = Field(0, description="Incremented on every (re)generation")
    regeneration_count: int = Field(0, description="Regenerations after fact-check")
    force_include: bool = Field(False, description="Operator override of fact-check")

    @property
    def has_image(self) -> bool:
        return bool(self.image_url)

    @property
    def is_scored(self) -> bool:
        return self.rank_score is not None

    @property
    def content_length(self) -> int:
        """Length used to pick the canonical member of a topic group."""
        return len(self.generated_body or self.body or "")


class TopicGroup(BaseModel):
    """Dedup unit: one canonical article plus its duplicates."""

    id: int
    campaign_id: int
    topic_signature: str = ""
    canonical_article_id: int
    member_ids: List[int] = Field(default_factory=list)


class ExternalEvent(BaseModel):
    """One item from the third-party events feed plus local overrides."""

    external_id: str = Field(..., description="Stable external identifier")
    title: str = Field(..., description="Event title")
    description: Optional[str] = None
    start_date: dt.datetime = Field(..., description="Event start")
    end_date: Optional[dt.datetime] = None
    venue: Optional[str] = None
    address: Optional[str] = None
    url: Optional[str] = None
    image_url: Optional[str] = None
    raw_data: Dict[str, Any] = Field(default_factory=dict)
    # Local-only fields, never written from feed data
    featured: bool = False
    paid_placement: bool = False
    active: bool = True
    event_summary: Optional[str] = None
    created_at: Optional[dt.datetime] = None
    updated_at: Optional[dt.datetime] = None

    @property
    def finishes_at(self) -> dt.datetime:
        return self.end_date or self.start_date


class Selection(BaseModel):
    """A candidate chosen for a campaign section."""

    id: int
    campaign_id: int
    section: Section
    slot_key: str = Field("", description="Sub-slot, e.g. the event day")
    candidate_id: str
    selection_order: int
    is_selected: bool = True
    is_featured: bool = False
    created_at: dt.datetime
    updated_at: dt.datetime


class ScoredResult(BaseModel):
    """Oracle rating of one candidate."""

    criteria: Dict[str, float] = Field(..., description="Per-criterion 0-10 ratings")
    reasoning: str = ""


class GeneratedCopy(BaseModel):
    """Rewritten, publish-ready article copy."""

    headline: str
    content: str
    word_count: int = 0


class DuplicateGroup(BaseModel):
    """Oracle verdict that several candidates cover one story."""

    topic_signature: str = ""
    member_indices: List[int] = Field(default_factory=list)


class FactCheckResult(BaseModel):
    """Accuracy verdict for one generated article version."""

    article_id: Optional[int] = None
    copy_version: int = 0
    factual_accuracy: float = Field(..., ge=0, le=10)
    context_preservation: float = Field(..., ge=0, le=10)
    no_misleading_claims: float = Field(..., ge=0, le=10)
    details: str = ""
    checked_at: Optional[dt.datetime] = None

    @computed_field  # type: ignore[misc]
    @property
    def score(self) -> float:
        return self.factual_accuracy + self.context_preservation + self.no_misleading_claims

    @computed_field  # type: ignore[misc]
    @property
    def passed(self) -> bool:
        return self.score >= FACT_CHECK_PASS_THRESHOLD


class DiningDeal(BaseModel):
    id: int
    business_name: str
    deal_text: str
    day_of_week: str
    is_featured: bool = False
    paid_placement: bool = False
    is_active: bool = True
    created_at: dt.datetime


class GetawayListing(BaseModel):
    id: int
    title: str
    listing_type: str = Field(..., pattern="^(local|greater)$")
    city: Optional[str] = None
    url: Optional[str] = None
    image_url: Optional[str] = None
    is_active: bool = True
    last_selected_on: Optional[dt.date] = None
    created_at: dt.datetime


class RoadWorkItem(BaseModel):
    id: int
    road_name: str
    closure_reason: str = ""
    area: Optional[str] = None
    start_date: dt.date
    expected_reopen: Optional[dt.date] = None
    source_url: Optional[str] = None
    is_active: bool = True
    created_at: dt.datetime
