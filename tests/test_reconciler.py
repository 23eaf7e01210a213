from datetime import date, datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from scoop.clients.events_feed import FeedPage
from scoop.core.errors import TransientSourceError
from scoop.core.reconciler import EventReconciler, merge_event
from scoop.models.content import CampaignStatus, ExternalEvent, Section

NOW = datetime(2025, 9, 26, 15, 0, tzinfo=timezone.utc)
TODAY = date(2025, 9, 26)
LONG_DESCRIPTION = "An evening of live jazz with local musicians and food trucks downtown."


class StepClock:
    """Monotonic clock that advances one second per reading."""

    def __init__(self):
        self.t = -1.0

    def __call__(self):
        self.t += 1.0
        return self.t


def _event(external_id, start=None, **fields):
    return ExternalEvent(
        external_id=external_id,
        title=fields.pop("title", f"Event {external_id}"),
        start_date=start or NOW + timedelta(days=1),
        **fields,
    )


def _feed(pages_by_day):
    """Feed double serving one page per day from a {date: [events]} map."""
    feed = MagicMock()
    feed.per_page = 100

    async def fetch(start, end, page=1):
        result = pages_by_day.get(start, [])
        if isinstance(result, Exception):
            raise result
        return FeedPage(events=list(result), raw_count=len(result))

    feed.fetch_external_page = AsyncMock(side_effect=fetch)
    return feed


def _reconciler(store, feed, oracle, settings, **kwargs):
    return EventReconciler(store, feed, oracle, settings, sleep=AsyncMock(), **kwargs)


def test_merge_event_keeps_local_fields():
    existing = _event("visitstcloud_1", featured=True, paid_placement=True, active=False, event_summary="Ours")
    incoming = _event("visitstcloud_1", title="Renamed", description="New text")

    merged = merge_event(existing, incoming)

    assert merged.title == "Renamed"
    assert merged.description == "New text"
    assert merged.featured and merged.paid_placement
    assert merged.active is False
    assert merged.event_summary == "Ours"


def test_merge_new_event_starts_clean():
    merged = merge_event(None, _event("visitstcloud_1", featured=True, event_summary="from feed"))
    assert merged.featured is False
    assert merged.active is True
    assert merged.event_summary is None


def test_rolling_window_is_single_days(store, mock_settings):
    reconciler = _reconciler(store, _feed({}), None, mock_settings)
    spans = reconciler.rolling_window(TODAY)
    assert len(spans) == 7
    assert spans[0] == (TODAY, TODAY)
    assert spans[-1] == (TODAY + timedelta(days=6),) * 2


@pytest.mark.asyncio
async def test_sync_inserts_and_summarizes(store, mock_oracle, mock_settings):
    feed = _feed(
        {
            TODAY: [_event("visitstcloud_1", description=LONG_DESCRIPTION)],
            TODAY + timedelta(days=1): [_event("visitstcloud_2", description="Short.")],
        }
    )
    summary = await _reconciler(store, feed, mock_oracle, mock_settings).sync(now=NOW)

    assert summary.error is None
    assert summary.fetched == 2
    assert summary.new == 2
    assert summary.summaries_generated == 1
    assert feed.fetch_external_page.await_count == 7
    assert store.get_event("visitstcloud_1").event_summary == "A lively evening of local music."
    assert store.get_event("visitstcloud_2").event_summary is None


@pytest.mark.asyncio
async def test_sync_preserves_overrides(store, make_event, mock_oracle, mock_settings):
    make_event(
        "visitstcloud_1",
        NOW + timedelta(days=1),
        featured=True,
        paid_placement=True,
        event_summary="Hand-written summary",
        description=LONG_DESCRIPTION,
    )
    feed = _feed({TODAY: [_event("visitstcloud_1", title="Updated title", description=LONG_DESCRIPTION)]})

    summary = await _reconciler(store, feed, mock_oracle, mock_settings).sync(now=NOW)

    event = store.get_event("visitstcloud_1")
    assert summary.updated == 1
    assert event.title == "Updated title"
    assert event.featured and event.paid_placement
    assert event.event_summary == "Hand-written summary"
    mock_oracle.summarize_event.assert_not_awaited()


@pytest.mark.asyncio
async def test_inactive_event_stays_inactive(store, make_event, mock_oracle, mock_settings):
    make_event("visitstcloud_1", NOW + timedelta(days=1), active=False)
    feed = _feed({TODAY: [_event("visitstcloud_1")]})

    await _reconciler(store, feed, mock_oracle, mock_settings).sync(now=NOW)

    assert store.get_event("visitstcloud_1").active is False


@pytest.mark.asyncio
async def test_failed_day_is_isolated(store, mock_oracle, mock_settings):
    bad_day = TODAY + timedelta(days=2)
    feed = _feed(
        {
            TODAY: [_event("visitstcloud_1")],
            bad_day: TransientSourceError("503 after retries"),
            TODAY + timedelta(days=3): [_event("visitstcloud_3")],
        }
    )

    summary = await _reconciler(store, feed, mock_oracle, mock_settings).sync(now=NOW)

    assert summary.error is None
    assert summary.failed_days == [bad_day.isoformat()]
    assert summary.new == 2
    assert summary.errors == 1


@pytest.mark.asyncio
async def test_all_days_failing_is_a_run_error(store, make_event, mock_oracle, mock_settings):
    make_event("visitstcloud_old", NOW - timedelta(days=2))
    feed = MagicMock()
    feed.per_page = 100
    feed.fetch_external_page = AsyncMock(side_effect=TransientSourceError("down"))

    summary = await _reconciler(store, feed, mock_oracle, mock_settings).sync(now=NOW)

    assert summary.error is not None
    assert len(summary.failed_days) == 7
    # No deactivation without a complete identifier set
    assert store.get_event("visitstcloud_old").active is True


@pytest.mark.asyncio
async def test_stale_events_deactivated_unless_selected(store, make_event, mock_oracle, mock_settings):
    yesterday = NOW - timedelta(days=1)
    make_event("visitstcloud_stale", yesterday)
    make_event("visitstcloud_selected", yesterday)
    make_event("visitstcloud_upcoming", NOW + timedelta(days=3))
    campaign = store.get_or_create_campaign(TODAY)
    store.insert_selections_if_absent(
        campaign.id, Section.EVENTS, TODAY.isoformat(), [("visitstcloud_selected", True)]
    )
    feed = _feed({TODAY: [_event("visitstcloud_new")]})

    summary = await _reconciler(store, feed, mock_oracle, mock_settings).sync(now=NOW)

    assert summary.deactivated == 1
    assert store.get_event("visitstcloud_stale").active is False
    assert store.get_event("visitstcloud_selected").active is True
    assert store.get_event("visitstcloud_upcoming").active is True


@pytest.mark.asyncio
async def test_protection_lapses_for_sent_campaigns_when_enabled(
    store, make_event, mock_oracle, mock_settings
):
    settings = mock_settings.model_copy(update={"protection_lapses_when_campaign_closed": True})
    make_event("visitstcloud_selected", NOW - timedelta(days=1))
    campaign = store.get_or_create_campaign(TODAY - timedelta(days=1))
    store.insert_selections_if_absent(
        campaign.id, Section.EVENTS, "2025-09-25", [("visitstcloud_selected", True)]
    )
    store.transition_campaign(campaign.id, list(CampaignStatus), CampaignStatus.SENT, NOW)
    feed = _feed({TODAY: [_event("visitstcloud_new")]})

    summary = await _reconciler(store, feed, mock_oracle, settings).sync(now=NOW)

    assert summary.deactivated == 1
    assert store.get_event("visitstcloud_selected").active is False


@pytest.mark.asyncio
async def test_budget_exhaustion_stops_between_batches(store, make_event, mock_oracle, mock_settings):
    make_event("visitstcloud_stale", NOW - timedelta(days=1))
    feed = _feed({TODAY: [_event(f"visitstcloud_{i}") for i in range(3)]})
    reconciler = _reconciler(store, feed, mock_oracle, mock_settings, clock=StepClock())
    reconciler.batch_size = 1
    # Start reads 0, the seven day checks read 1..7, batch checks read 8, 9, ...
    reconciler.time_budget = 8.5

    summary = await reconciler.sync(now=NOW)

    assert summary.budget_exhausted is True
    assert summary.batches_total == 3
    assert summary.batches_completed == 1
    assert summary.new == 1
    assert summary.deactivated == 0
    assert store.get_event("visitstcloud_stale").active is True


@pytest.mark.asyncio
async def test_override_window_is_one_span(store, mock_oracle, mock_settings):
    feed = _feed({date(2025, 10, 1): [_event("visitstcloud_1")]})
    reconciler = _reconciler(store, feed, mock_oracle, mock_settings)

    summary = await reconciler.sync(date(2025, 10, 1), date(2025, 10, 5), now=NOW)

    assert summary.fetched == 1
    feed.fetch_external_page.assert_awaited_once_with(date(2025, 10, 1), date(2025, 10, 5), 1)


@pytest.mark.asyncio
async def test_override_window_validation(store, mock_oracle, mock_settings):
    reconciler = _reconciler(store, _feed({}), mock_oracle, mock_settings)

    assert (await reconciler.sync(start_date=date(2025, 10, 1))).error is not None
    assert (await reconciler.sync(date(2025, 10, 5), date(2025, 10, 1))).error is not None


@pytest.mark.asyncio
async def test_pagination_until_short_page(store, mock_oracle, mock_settings):
    feed = MagicMock()
    feed.per_page = 2
    feed.fetch_external_page = AsyncMock(
        side_effect=[
            FeedPage(events=[_event("visitstcloud_1"), _event("visitstcloud_2")], raw_count=2),
            FeedPage(events=[_event("visitstcloud_3")], raw_count=1),
        ]
    )
    reconciler = _reconciler(store, feed, mock_oracle, mock_settings)

    summary = await reconciler.sync(date(2025, 10, 1), date(2025, 10, 1), now=NOW)

    assert summary.fetched == 3
    assert feed.fetch_external_page.await_count == 2
