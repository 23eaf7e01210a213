import itertools
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest


@pytest.fixture
def mock_settings(tmp_path):
    """Settings for testing, backed by a throwaway database."""
    from scoop.models.settings import Settings

    return Settings(
        openrouter_api_key="test_key",
        database_path=str(tmp_path / "scoop-test.db"),
        cron_secret="cron-secret",
        operator_token="operator-token",
        rss_feeds=None,
        feed_request_delay=0.0,
        feed_backoff_base=0.0,
        oracle_min_request_interval=0.0,
        timezone="America/Chicago",
    )


@pytest.fixture
def store(mock_settings):
    from scoop.core.store import CurationStore

    return CurationStore(mock_settings.database_path)


@pytest.fixture
def mock_oracle():
    """Oracle double whose operations are AsyncMocks with passing defaults."""
    from scoop.clients.oracle import OracleClient
    from scoop.models.content import FactCheckResult, GeneratedCopy, ScoredResult

    oracle = MagicMock(spec=OracleClient)
    oracle.score = AsyncMock(
        return_value=ScoredResult(
            criteria={"interest_level": 7, "local_relevance": 7, "community_impact": 6}
        )
    )
    oracle.dedupe = AsyncMock(return_value=[])
    oracle.rewrite = AsyncMock(
        return_value=GeneratedCopy(
            headline="City Council Approves New Park", content="The council voted 6-1.", word_count=4
        )
    )
    oracle.fact_check = AsyncMock(
        return_value=FactCheckResult(factual_accuracy=8, context_preservation=8, no_misleading_claims=8)
    )
    oracle.summarize_event = AsyncMock(return_value="A lively evening of local music.")
    oracle.generate_subject_line = AsyncMock(return_value="Council approves new park")
    return oracle


@pytest.fixture
def make_article(store):
    """Factory inserting candidate articles, optionally pre-scored."""
    counter = itertools.count(1)
    base = datetime(2025, 9, 25, 12, 0, tzinfo=timezone.utc)

    def _make(campaign_id, title=None, body="Local story body.", score=None, image=True):
        n = next(counter)
        article_id = store.insert_article(
            campaign_id,
            source="St Cloud Times",
            external_id=f"story-{n}",
            title=title or f"Story {n}",
            body=body,
            source_url=f"https://www.sctimes.com/story/{n}",
            image_url="https://www.sctimes.com/img.jpg" if image else None,
            ingested_at=base + timedelta(minutes=n),
        )
        if score is not None:
            store.save_score(article_id, float(score), {"interest_level": float(score)})
        return article_id

    return _make


@pytest.fixture
def make_event(store):
    """Factory storing events exactly as given, local flags included."""
    from scoop.models.content import ExternalEvent

    def _make(external_id, start, end=None, **fields):
        event = ExternalEvent(
            external_id=external_id,
            title=fields.pop("title", f"Event {external_id}"),
            start_date=start,
            end_date=end,
            **fields,
        )
        store.save_event(event)
        return event

    return _make
