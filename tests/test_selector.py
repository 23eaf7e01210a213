from concurrent.futures import ThreadPoolExecutor
from datetime import date

import pytest

from scoop.core.selector import BoundedSlotSelector, SectionConfig, SlotCandidate
from scoop.core.store import CurationStore
from scoop.models.content import Section

ARTICLES = SectionConfig(Section.ARTICLES, capacity=5)


def _candidates(scores):
    return [
        SlotCandidate(candidate_id=str(i), rank_score=score, sort_time=f"2025-09-25T12:{i:02d}:00+00:00")
        for i, score in enumerate(scores, start=1)
    ]


@pytest.fixture
def campaign(store):
    return store.get_or_create_campaign(date(2025, 9, 26))


@pytest.fixture
def selector(store):
    return BoundedSlotSelector(store)


@pytest.mark.parametrize("count,expected", [(3, 3), (5, 5), (8, 5)])
def test_selects_up_to_capacity(selector, campaign, count, expected):
    result = selector.select(campaign.id, ARTICLES, _candidates([10 + i for i in range(count)]))
    assert len(result.selected_ids) == expected
    assert result.newly_selected == expected


def test_empty_candidate_pool(selector, campaign):
    result = selector.select(campaign.id, ARTICLES, [])
    assert result.selected_ids == []


def test_ranked_by_score_then_earliest(selector, campaign):
    candidates = _candidates([20, 25, 20, 28, 19, 30])
    result = selector.select(campaign.id, SectionConfig(Section.ARTICLES, capacity=4), candidates)
    # Ties at 20 go to the earlier candidate 1
    assert result.selected_ids == ["6", "4", "2", "1"]


def test_selection_is_idempotent(selector, campaign):
    first = selector.select(campaign.id, ARTICLES, _candidates([28, 25, 22, 19, 15, 10]))
    second = selector.select(campaign.id, ARTICLES, _candidates([99, 98, 97]))

    assert second.reused is True
    assert second.newly_selected == 0
    assert [s.model_dump() for s in second.selections] == [s.model_dump() for s in first.selections]


def test_top_pick_featured_when_none_flagged(selector, campaign):
    result = selector.select(campaign.id, ARTICLES, _candidates([28, 25, 22]))
    featured = [s.candidate_id for s in result.selections if s.is_featured]
    assert featured == ["1"]


def test_flagged_candidates_keep_featured(selector, campaign):
    candidates = _candidates([2, 0, 0])
    candidates[1] = SlotCandidate(candidate_id="2", rank_score=1, featured=True)
    result = selector.select(campaign.id, SectionConfig(Section.EVENTS, capacity=8), candidates, "2025-09-26")

    assert [s.candidate_id for s in result.selections if s.is_featured] == ["2"]


def test_group_limit_relaxes_to_fill(selector, campaign):
    config = SectionConfig(Section.DINING, capacity=4, max_per_group=2)
    candidates = [
        SlotCandidate(candidate_id="1", rank_score=3, group_key="pizza place"),
        SlotCandidate(candidate_id="2", rank_score=2, group_key="pizza place"),
        SlotCandidate(candidate_id="3", rank_score=2, group_key="pizza place"),
        SlotCandidate(candidate_id="4", rank_score=1, group_key="taco spot"),
    ]

    strict = selector.rank(candidates, SectionConfig(Section.DINING, capacity=3, max_per_group=2))
    assert [c.candidate_id for c in strict] == ["1", "2", "4"]

    relaxed = selector.select(campaign.id, config, candidates)
    assert sorted(relaxed.selected_ids) == ["1", "2", "3", "4"]


def test_toggle_off_frees_slot_without_promotion(selector, store, campaign):
    selector.select(campaign.id, ARTICLES, _candidates([28, 25, 22, 19, 15, 10]))

    assert selector.toggle(campaign.id, ARTICLES, "2", selected=False)
    assert store.count_selected(campaign.id, Section.ARTICLES) == 4
    assert "6" not in {s.candidate_id for s in store.get_selections(campaign.id, Section.ARTICLES)}


def test_toggle_on_refused_when_full(selector, store, campaign):
    selector.select(campaign.id, ARTICLES, _candidates([28, 25, 22, 19, 15, 10]))

    assert selector.toggle(campaign.id, ARTICLES, "6", selected=True) is False
    assert store.count_selected(campaign.id, Section.ARTICLES) == 5


def test_toggle_unknown_candidate_off(selector, campaign):
    assert selector.toggle(campaign.id, ARTICLES, "404", selected=False) is False


def test_reselect_fills_freed_slot_with_unused_candidate(selector, store, campaign):
    candidates = _candidates([28, 25, 22, 19, 15, 10, 5])
    selector.select(campaign.id, ARTICLES, candidates)
    selector.toggle(campaign.id, ARTICLES, "2", selected=False)

    result = selector.reselect(campaign.id, ARTICLES, candidates)

    assert result.newly_selected == 1
    assert sorted(result.selected_ids) == ["1", "3", "4", "5", "6"]
    assert store.count_selected(campaign.id, Section.ARTICLES) == 5


def test_reselect_when_full_changes_nothing(selector, campaign):
    candidates = _candidates([28, 25, 22, 19, 15, 10])
    first = selector.select(campaign.id, ARTICLES, candidates)
    result = selector.reselect(campaign.id, ARTICLES, candidates)

    assert result.reused is True
    assert result.selected_ids == first.selected_ids


def test_concurrent_first_selection_writes_once(mock_settings, campaign):
    def run(scores):
        selector = BoundedSlotSelector(CurationStore(mock_settings.database_path))
        return selector.select(campaign.id, ARTICLES, _candidates(scores))

    with ThreadPoolExecutor(max_workers=2) as pool:
        results = list(pool.map(run, [[28, 25, 22, 19, 15, 10], [1, 2, 3, 4, 5, 6]]))

    assert results[0].selected_ids == results[1].selected_ids
    assert sum(1 for r in results if r.newly_selected) == 1
    store = CurationStore(mock_settings.database_path)
    assert store.count_selected(campaign.id, Section.ARTICLES) == 5
