from .content import (
    FACT_CHECK_PASS_THRESHOLD,
    Campaign,
    CampaignStatus,
    CandidateArticle,
    ExternalEvent,
    FactCheckResult,
    Section,
    Selection,
)
from .settings import Settings

__all__ = [
    "FACT_CHECK_PASS_THRESHOLD",
    "Campaign",
    "CampaignStatus",
    "CandidateArticle",
    "ExternalEvent",
    "FactCheckResult",
    "Section",
    "Selection",
    "Settings",
]
