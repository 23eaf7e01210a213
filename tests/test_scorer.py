from datetime import date
from unittest.mock import AsyncMock

import pytest

from scoop.core.errors import MalformedResponse, TransientSourceError
from scoop.core.scorer import CandidateScorer, compute_rank_score
from scoop.models.content import DuplicateGroup, ScoredResult, Section


@pytest.fixture
def campaign(store):
    return store.get_or_create_campaign(date(2025, 9, 26))


@pytest.fixture
def scorer(store, mock_oracle, mock_settings):
    return CandidateScorer(store, mock_oracle, mock_settings)


def test_rank_score_sums_criteria():
    score, criteria = compute_rank_score(
        {"interest_level": 8, "local_relevance": 7, "community_impact": 6}, has_image=True
    )
    assert score == 21
    assert criteria["interest_level"] == 8


def test_missing_image_penalizes_interest():
    score, criteria = compute_rank_score(
        {"interest_level": 8, "local_relevance": 7, "community_impact": 6}, has_image=False, penalty=5
    )
    assert score == 16
    assert criteria["interest_level"] == 3


def test_penalty_never_goes_negative():
    score, criteria = compute_rank_score(
        {"interest_level": 2, "local_relevance": 5, "community_impact": 5}, has_image=False, penalty=5
    )
    assert criteria["interest_level"] == 0
    assert score == 10


@pytest.mark.asyncio
async def test_score_candidates_persists_scores(scorer, store, campaign, make_article, mock_oracle):
    with_image = make_article(campaign.id)
    without_image = make_article(campaign.id, image=False)

    summary = await scorer.score_candidates(campaign.id)

    assert summary.scored == 2
    assert store.get_article(with_image).rank_score == 20
    assert store.get_article(without_image).rank_score == 15
    assert mock_oracle.score.await_count == 2


@pytest.mark.asyncio
async def test_already_scored_articles_are_skipped(scorer, campaign, make_article, mock_oracle):
    make_article(campaign.id, score=22)
    summary = await scorer.score_candidates(campaign.id)
    assert summary.scored == 0
    mock_oracle.score.assert_not_awaited()


@pytest.mark.asyncio
async def test_scoring_failure_records_zero_and_excludes(scorer, store, campaign, make_article, mock_oracle):
    good = make_article(campaign.id)
    bad = make_article(campaign.id)
    criteria = {"interest_level": 9, "local_relevance": 9, "community_impact": 9}

    async def score(article):
        if article.id == bad:
            raise MalformedResponse("not json")
        return ScoredResult(criteria=criteria)

    mock_oracle.score = AsyncMock(side_effect=score)
    summary = await scorer.score_candidates(campaign.id)

    assert summary.scored == 1
    assert summary.failed == 1
    failed = store.get_article(bad)
    assert failed.rank_score == 0
    assert failed.scoring_failed is True
    assert [a.id for a in store.list_articles(campaign.id, eligible_only=True)] == [good]


@pytest.mark.asyncio
async def test_dedupe_keeps_longest_member(scorer, store, campaign, make_article, mock_oracle):
    short = make_article(campaign.id, body="x" * 50, score=25)
    long = make_article(campaign.id, body="y" * 120, score=25)
    other = make_article(campaign.id, score=20)
    mock_oracle.dedupe = AsyncMock(
        return_value=[DuplicateGroup(topic_signature="park vote", member_indices=[0, 1])]
    )

    summary = await scorer.deduplicate(campaign.id)

    assert summary.groups == 1
    assert summary.duplicates_retired == 1
    assert store.get_article(long).is_canonical
    retired = store.get_article(short)
    assert not retired.is_active and not retired.is_canonical
    assert retired.topic_group_id == store.get_article(long).topic_group_id
    # Ungrouped articles still belong to exactly one (singleton) group
    assert store.get_article(other).topic_group_id is not None
    assert len(store.list_topic_groups(campaign.id)) == 2


@pytest.mark.asyncio
async def test_dedupe_fails_open(scorer, store, campaign, make_article, mock_oracle):
    ids = [make_article(campaign.id, score=20) for _ in range(3)]
    mock_oracle.dedupe = AsyncMock(side_effect=MalformedResponse("garbage"))

    summary = await scorer.deduplicate(campaign.id)

    assert summary.failed_open is True
    for article_id in ids:
        article = store.get_article(article_id)
        assert article.is_active and article.is_canonical
    assert len(store.list_topic_groups(campaign.id)) == 3


@pytest.mark.asyncio
async def test_dedupe_keeps_selected_member_canonical(scorer, store, campaign, make_article, mock_oracle):
    selected = make_article(campaign.id, body="x" * 50, score=25)
    store.insert_selections_if_absent(campaign.id, Section.ARTICLES, "", [(str(selected), True)])
    late = make_article(campaign.id, body="y" * 120, score=25)
    mock_oracle.dedupe = AsyncMock(
        return_value=[DuplicateGroup(topic_signature="park vote", member_indices=[0, 1])]
    )

    await scorer.deduplicate(campaign.id)

    kept = store.get_article(selected)
    assert kept.is_canonical and kept.is_active
    retired = store.get_article(late)
    assert not retired.is_canonical and not retired.is_active
    assert [s.candidate_id for s in store.get_selections(campaign.id, Section.ARTICLES) if s.is_selected] == [
        str(selected)
    ]


@pytest.mark.asyncio
async def test_dedupe_deselects_selected_duplicates(scorer, store, campaign, make_article, mock_oracle):
    short = make_article(campaign.id, body="x" * 50, score=25)
    long = make_article(campaign.id, body="y" * 120, score=25)
    store.insert_selections_if_absent(
        campaign.id, Section.ARTICLES, "", [(str(short), True), (str(long), False)]
    )
    mock_oracle.dedupe = AsyncMock(
        return_value=[DuplicateGroup(topic_signature="park vote", member_indices=[0, 1])]
    )

    await scorer.deduplicate(campaign.id)

    assert store.get_article(long).is_canonical
    states = {s.candidate_id: s.is_selected for s in store.get_selections(campaign.id, Section.ARTICLES)}
    assert states == {str(short): False, str(long): True}


@pytest.mark.asyncio
async def test_failed_score_article_gets_singleton_group(scorer, store, campaign, make_article, mock_oracle):
    good = make_article(campaign.id)
    bad = make_article(campaign.id)
    criteria = {"interest_level": 9, "local_relevance": 9, "community_impact": 9}

    async def score(article):
        if article.id == bad:
            raise MalformedResponse("not json")
        return ScoredResult(criteria=criteria)

    mock_oracle.score = AsyncMock(side_effect=score)
    await scorer.score_candidates(campaign.id)
    await scorer.deduplicate(campaign.id)

    groups = store.list_topic_groups(campaign.id)
    assert sorted(g.canonical_article_id for g in groups) == [good, bad]
    failed = store.get_article(bad)
    assert failed.topic_group_id is not None
    assert failed.scoring_failed is True
    # Still excluded from automatic selection
    assert [a.id for a in store.list_articles(campaign.id, eligible_only=True)] == [good]


@pytest.mark.asyncio
async def test_generate_copy_for_selected_only(scorer, store, campaign, make_article, mock_oracle):
    chosen = make_article(campaign.id, score=25)
    make_article(campaign.id, score=10)
    store.insert_selections_if_absent(campaign.id, Section.ARTICLES, "", [(str(chosen), True)])

    summary = await scorer.generate_copy_for_selected(campaign.id)

    assert summary.generated == 1
    article = store.get_article(chosen)
    assert article.generated_headline == "City Council Approves New Park"
    assert article.copy_version == 1
    # Existing copy is not regenerated
    assert (await scorer.generate_copy_for_selected(campaign.id)).generated == 0


@pytest.mark.asyncio
async def test_generate_copy_failure_is_counted(scorer, store, campaign, make_article, mock_oracle):
    chosen = make_article(campaign.id, score=25)
    store.insert_selections_if_absent(campaign.id, Section.ARTICLES, "", [(str(chosen), True)])
    mock_oracle.rewrite = AsyncMock(side_effect=TransientSourceError("timeout"))

    summary = await scorer.generate_copy_for_selected(campaign.id)

    assert summary.failed == 1
    assert store.get_article(chosen).generated_body is None
