"""FastAPI trigger endpoints for the scheduler and for operators."""

import logging
import secrets
from datetime import date, datetime, timezone
from functools import lru_cache
from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import Depends, FastAPI, Header, HTTPException
from pydantic import BaseModel

from scoop.core.curation import CurationEngine
from scoop.core.errors import CurationError
from scoop.models.content import Section
from scoop.models.settings import Settings

logger = logging.getLogger(__name__)

app = FastAPI(
    title="St. Cloud Scoop Curation Engine",
    description="Scheduled and operator triggers for newsletter curation",
    version="1.0.0",
)


@lru_cache
def get_settings() -> Settings:
    return Settings()


@lru_cache
def get_engine() -> CurationEngine:
    return CurationEngine(get_settings())


def _matches(provided: Optional[str], expected: Optional[str]) -> bool:
    return bool(expected) and bool(provided) and secrets.compare_digest(provided, expected)


def require_cron(
    authorization: Optional[str] = Header(None), settings: Settings = Depends(get_settings)
) -> None:
    """Scheduler calls carry ``Authorization: Bearer <cron_secret>``."""
    token = None
    if authorization and authorization.lower().startswith("bearer "):
        token = authorization[7:].strip()
    if not _matches(token, settings.cron_secret):
        raise HTTPException(status_code=401, detail="Unauthorized")


def require_operator(
    x_operator_token: Optional[str] = Header(None), settings: Settings = Depends(get_settings)
) -> None:
    if not _matches(x_operator_token, settings.operator_token):
        raise HTTPException(status_code=401, detail="Unauthorized")


class ToggleRequest(BaseModel):
    selected: bool
    slot_key: str = ""


class EventFlagsRequest(BaseModel):
    featured: Optional[bool] = None
    paid_placement: Optional[bool] = None
    active: Optional[bool] = None


def _section(name: str) -> Section:
    try:
        return Section(name)
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Unknown section {name}")


@app.get("/api/health")
async def health_check(settings: Settings = Depends(get_settings)):
    """Health check endpoint."""
    return {
        "status": "healthy" if settings.openrouter_api_key else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": "1.0.0",
        "oracle_configured": bool(settings.openrouter_api_key),
        "rss_feeds": len(settings.feed_list()),
    }


# Scheduler triggers


@app.post("/api/cron/sync-events", dependencies=[Depends(require_cron)])
async def cron_sync_events(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    engine: CurationEngine = Depends(get_engine),
):
    summary = await engine.sync_events(start_date, end_date)
    return {"success": summary.error is None, **summary.model_dump()}


@app.post("/api/cron/ingest", dependencies=[Depends(require_cron)])
async def cron_ingest(engine: CurationEngine = Depends(get_engine)):
    return (await engine.ingest_articles()).model_dump()


@app.post("/api/cron/process", dependencies=[Depends(require_cron)])
async def cron_process(day: Optional[date] = None, engine: CurationEngine = Depends(get_engine)):
    summary = await engine.process_campaign(day or engine.upcoming_campaign_date())
    return summary.model_dump()


@app.post("/api/cron/review-check", dependencies=[Depends(require_cron)])
async def cron_review_check(engine: CurationEngine = Depends(get_engine)):
    return (await engine.run_review_check()).model_dump(mode="json")


# Operator actions


@app.post("/api/events/sync", dependencies=[Depends(require_operator)])
async def operator_sync_events(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    engine: CurationEngine = Depends(get_engine),
):
    summary = await engine.sync_events(start_date, end_date)
    return {"success": summary.error is None, **summary.model_dump()}


@app.post("/api/campaigns/{day}/process", dependencies=[Depends(require_operator)])
async def process_campaign(day: date, engine: CurationEngine = Depends(get_engine)):
    return (await engine.process_campaign(day)).model_dump()


@app.get("/api/campaigns/{day}", dependencies=[Depends(require_operator)])
async def campaign_status(day: date, engine: CurationEngine = Depends(get_engine)):
    report = engine.status(day)
    if report is None:
        raise HTTPException(status_code=404, detail="Campaign not found")
    return report


@app.post("/api/campaigns/{day}/submit-review", dependencies=[Depends(require_operator)])
async def submit_review(day: date, engine: CurationEngine = Depends(get_engine)):
    return (await engine.submit_for_review(day)).model_dump(mode="json")


@app.post("/api/campaigns/{day}/approve", dependencies=[Depends(require_operator)])
async def approve(day: date, force: bool = False, engine: CurationEngine = Depends(get_engine)):
    return engine.approve(day, force=force).model_dump(mode="json")


@app.post("/api/campaigns/{day}/mark-sent", dependencies=[Depends(require_operator)])
async def mark_sent(day: date, engine: CurationEngine = Depends(get_engine)):
    return engine.mark_sent(day).model_dump(mode="json")


@app.post("/api/campaigns/{day}/archive", dependencies=[Depends(require_operator)])
async def archive(day: date, engine: CurationEngine = Depends(get_engine)):
    return engine.archive(day).model_dump(mode="json")


@app.post(
    "/api/campaigns/{day}/selections/{section}/{candidate_id}",
    dependencies=[Depends(require_operator)],
)
async def toggle_selection(
    day: date,
    section: str,
    candidate_id: str,
    body: ToggleRequest,
    engine: CurationEngine = Depends(get_engine),
):
    try:
        applied = engine.toggle_selection(day, _section(section), candidate_id, body.selected, body.slot_key)
    except CurationError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown slot {body.slot_key}")
    if not applied:
        raise HTTPException(
            status_code=409,
            detail="Section is full" if body.selected else "Selection not found",
        )
    return {"success": True}


@app.post("/api/campaigns/{day}/sections/{section}/reselect", dependencies=[Depends(require_operator)])
async def reselect(
    day: date, section: str, slot_key: str = "", engine: CurationEngine = Depends(get_engine)
):
    try:
        result = engine.reselect(day, _section(section), slot_key)
    except CurationError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except (KeyError, ValueError):
        raise HTTPException(status_code=404, detail=f"Unknown slot {slot_key}")
    return result.model_dump(mode="json")


@app.post("/api/articles/{article_id}/force-include", dependencies=[Depends(require_operator)])
async def force_include(article_id: int, value: bool = True, engine: CurationEngine = Depends(get_engine)):
    if not engine.force_include(article_id, value):
        raise HTTPException(status_code=404, detail="Article not found")
    return {"success": True}


@app.patch("/api/events/{external_id}", dependencies=[Depends(require_operator)])
async def update_event_flags(
    external_id: str, body: EventFlagsRequest, engine: CurationEngine = Depends(get_engine)
):
    if not engine.set_event_flags(external_id, body.featured, body.paid_placement, body.active):
        raise HTTPException(status_code=404, detail="Event not found")
    return {"success": True}


@app.post("/api/records/{kind}", dependencies=[Depends(require_operator)])
async def import_records(
    kind: str, records: List[Dict[str, Any]], engine: CurationEngine = Depends(get_engine)
):
    try:
        count = engine.import_records(kind, records)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return {"success": True, "imported": count}


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
