"""Celery beat schedule for the curation jobs.

Tasks run the engine in-process. The review check fires every 15 minutes;
the check itself is time-gated and guarded to transition once per day.
"""

import asyncio
import logging
from datetime import date, datetime, timezone
from typing import Optional

from celery import Celery
from celery.schedules import crontab

from scoop.core.curation import CurationEngine
from scoop.models.settings import Settings

logger = logging.getLogger(__name__)

settings = Settings()

app = Celery("scoop-scheduler")

app.conf.update(
    broker_url=settings.celery_broker_url,
    result_backend=settings.celery_broker_url,
    timezone=settings.timezone,
    enable_utc=True,
    beat_schedule={
        "sync-events-daily": {
            "task": "scoop.scheduler.sync_events_task",
            "schedule": crontab(hour=20, minute=0),
        },
        "ingest-articles": {
            "task": "scoop.scheduler.ingest_articles_task",
            "schedule": crontab(hour=20, minute=30),
        },
        "process-campaign": {
            "task": "scoop.scheduler.process_campaign_task",
            "schedule": crontab(hour=20, minute=40),
        },
        "review-check": {
            "task": "scoop.scheduler.review_check_task",
            "schedule": crontab(minute="*/15"),
        },
    },
)


def _engine() -> CurationEngine:
    return CurationEngine(Settings())


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


@app.task
def sync_events_task() -> dict:
    """Reconcile the rolling events window."""
    logger.info("Starting scheduled events sync")
    summary = asyncio.run(_engine().sync_events())
    return {
        "status": "error" if summary.error else "success",
        "timestamp": _timestamp(),
        "summary": summary.model_dump(),
    }


@app.task
def ingest_articles_task() -> dict:
    logger.info("Starting scheduled article ingestion")
    summary = asyncio.run(_engine().ingest_articles())
    return {"status": "success", "timestamp": _timestamp(), "summary": summary.model_dump()}


@app.task
def process_campaign_task(day: Optional[str] = None) -> dict:
    """Process the upcoming campaign (or the given ISO date)."""
    engine = _engine()
    target = date.fromisoformat(day) if day else engine.upcoming_campaign_date()
    logger.info(f"Starting scheduled processing of campaign {target}")
    summary = asyncio.run(engine.process_campaign(target))
    return {
        "status": "warning" if summary.stage_errors else "success",
        "timestamp": _timestamp(),
        "summary": summary.model_dump(),
    }


@app.task
def review_check_task() -> dict:
    result = asyncio.run(_engine().run_review_check())
    if result.transitioned:
        logger.info(f"Scheduled review check moved campaign {result.campaign_date} to review")
    return {
        "status": result.outcome.value,
        "timestamp": _timestamp(),
        "result": result.model_dump(mode="json"),
    }


if __name__ == "__main__":
    app.start()
