from datetime import date, datetime
from zoneinfo import ZoneInfo

import pytest

from scoop.core.sections import SectionSelector
from scoop.core.selector import BoundedSlotSelector
from scoop.models.content import Section

CHICAGO = ZoneInfo("America/Chicago")
FRIDAY = date(2025, 9, 26)


@pytest.fixture
def campaign(store):
    return store.get_or_create_campaign(FRIDAY)


@pytest.fixture
def sections(store):
    return SectionSelector(store, BoundedSlotSelector(store), "America/Chicago")


def test_event_slots_cover_three_local_days(sections, campaign, make_event):
    # 23:30 local on Friday is already Saturday in UTC
    make_event("visitstcloud_late", datetime(2025, 9, 26, 23, 30, tzinfo=CHICAGO))
    make_event("visitstcloud_sat", datetime(2025, 9, 27, 10, 0, tzinfo=CHICAGO))
    make_event("visitstcloud_off", datetime(2025, 9, 26, 12, 0, tzinfo=CHICAGO), active=False)

    results = sections.select_events(campaign)

    assert [r.slot_key for r in results] == ["2025-09-26", "2025-09-27", "2025-09-28"]
    assert results[0].selected_ids == ["visitstcloud_late"]
    assert results[1].selected_ids == ["visitstcloud_sat"]
    assert results[2].selected_ids == []


def test_paid_and_featured_events_rank_first(sections, campaign, make_event):
    for hour in range(8, 18):
        make_event(f"visitstcloud_{hour}", datetime(2025, 9, 26, hour, 0, tzinfo=CHICAGO))
    make_event("visitstcloud_paid", datetime(2025, 9, 26, 19, 0, tzinfo=CHICAGO), paid_placement=True)
    make_event("visitstcloud_feat", datetime(2025, 9, 26, 20, 0, tzinfo=CHICAGO), featured=True)

    friday = sections.select_events(campaign)[0]

    assert len(friday.selected_ids) == 8
    assert friday.selected_ids[:2] == ["visitstcloud_paid", "visitstcloud_feat"]
    assert {s.candidate_id for s in friday.selections if s.is_featured} == {
        "visitstcloud_paid",
        "visitstcloud_feat",
    }


def test_dining_uses_campaign_weekday_and_business_limit(sections, store, campaign):
    for i in range(3):
        store.add_dining_deal("Pizza Place", f"Deal {i}", "Friday")
    store.add_dining_deal("Taco Spot", "Fish tacos", "Friday")
    store.add_dining_deal("Burger Barn", "Half-price burgers", "Monday")

    result = sections.select_dining(campaign)

    deals = {d.id: d.business_name for d in store.list_dining_deals("Friday")}
    names = [deals[int(cid)] for cid in result.selected_ids]
    assert len(names) == 4
    assert names.count("Taco Spot") == 1


def test_getaways_rotate_least_recently_used(sections, store):
    local_ids = [store.add_getaway_listing(f"Cabin {i}", "local") for i in range(3)]
    store.add_getaway_listing("Duluth Lakewalk", "greater")

    first = store.get_or_create_campaign(FRIDAY)
    results = sections.select_getaways(first)
    assert results[0].selected_ids == [str(local_ids[0])]
    assert results[1].selected_ids != []

    second = store.get_or_create_campaign(date(2025, 9, 27))
    assert sections.select_getaways(second)[0].selected_ids == [str(local_ids[1])]


def test_road_work_only_in_effect(sections, store, campaign):
    open_id = store.add_road_work_item("Division St", date(2025, 9, 20))
    store.add_road_work_item("Hwy 10", date(2025, 10, 5))

    assert sections.select_road_work(campaign).selected_ids == [str(open_id)]


def test_select_all_counts(sections, campaign, make_article, store):
    make_article(campaign.id, score=25)
    store.add_road_work_item("Division St", date(2025, 9, 20))

    counts = sections.select_all(campaign)

    assert counts == {
        "articles": 1,
        "events": 0,
        "dining": 0,
        "getaways": 0,
        "road_work": 1,
    }


def test_config_for_getaway_slots(sections):
    assert sections.config_for(Section.GETAWAYS, "local").capacity == 1
    assert sections.config_for(Section.GETAWAYS, "greater").capacity == 2
    with pytest.raises(KeyError):
        sections.config_for(Section.GETAWAYS, "abroad")
