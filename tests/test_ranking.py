from __future__ import annotations

from datetime import timedelta

import allure

from blazion.config import RecommendationSettings
from blazion.content.models import RecommendationStrategy
from blazion.content.ranking import RecommendationWeights, rank_recommendations, recency_score
from conftest import BASE_TIME, make_record

pytestmark = [
    allure.epic("Content API"),
    allure.feature("Recommendations"),
]

OLD = BASE_TIME - timedelta(days=90)


def _candidate(source_id: str, **overrides):
    values = {
        "source_id": source_id,
        "slug": source_id,
        "tags": [],
        "segment": None,
        "published_at": OLD,
        "created_at": OLD,
        "updated_at": OLD,
    }
    values.update(overrides)
    return make_record(**values)


def test_related_ids_outrank_everything() -> None:
    current = make_record(source_id="current", related_source_ids=["rel"], tags=["python"])
    candidates = [
        _candidate("tagged", tags=["Python"], featured=True),
        _candidate("rel"),
    ]

    result = rank_recommendations(current, candidates, now=BASE_TIME, limit=2)

    assert [record.source_id for record in result.records] == ["rel", "tagged"]
    assert result.strategy == RecommendationStrategy.RELATED_IDS


def test_relation_is_symmetric() -> None:
    current = make_record(source_id="current", tags=[])
    candidates = [_candidate("other"), _candidate("back", related_source_ids=["current"])]

    result = rank_recommendations(current, candidates, now=BASE_TIME, limit=1)

    assert [record.source_id for record in result.records] == ["back"]
    assert result.strategy == RecommendationStrategy.RELATED_IDS


def test_shared_tags_count_case_insensitively() -> None:
    current = make_record(source_id="current", tags=["Python", "Testing"], segment=None)
    candidates = [
        _candidate("one-tag", tags=["python"]),
        _candidate("two-tags", tags=["PYTHON", "testing"]),
    ]

    result = rank_recommendations(current, candidates, now=BASE_TIME, limit=3)

    assert [record.source_id for record in result.records] == ["two-tags", "one-tag"]
    assert result.strategy == RecommendationStrategy.TAGS


def test_strategy_falls_through_segment_featured_latest() -> None:
    current = make_record(source_id="current", tags=[], segment=" Engineering ")

    segment = rank_recommendations(
        current,
        [_candidate("seg", segment="engineering")],
        now=BASE_TIME,
        limit=1,
    )
    featured = rank_recommendations(
        current,
        [_candidate("feat", featured=True)],
        now=BASE_TIME,
        limit=1,
    )
    latest = rank_recommendations(current, [_candidate("plain")], now=BASE_TIME, limit=1)

    assert segment.strategy == RecommendationStrategy.SEGMENT
    assert featured.strategy == RecommendationStrategy.FEATURED
    assert latest.strategy == RecommendationStrategy.LATEST


def test_ties_go_to_more_recent_candidate() -> None:
    current = make_record(source_id="current", tags=[], segment=None)
    candidates = [
        _candidate("older", published_at=OLD - timedelta(days=1)),
        _candidate("newer"),
    ]

    result = rank_recommendations(current, candidates, now=BASE_TIME, limit=2)

    assert [record.source_id for record in result.records] == ["newer", "older"]


def test_recency_decays_linearly_inside_window() -> None:
    weights = RecommendationWeights()

    assert recency_score(BASE_TIME, now=BASE_TIME, weights=weights) == 6
    assert recency_score(BASE_TIME - timedelta(days=15), now=BASE_TIME, weights=weights) == 3
    assert recency_score(BASE_TIME - timedelta(days=30), now=BASE_TIME, weights=weights) == 0
    assert recency_score(BASE_TIME + timedelta(days=1), now=BASE_TIME, weights=weights) == 0
    assert recency_score(None, now=BASE_TIME, weights=weights) == 0


def test_recent_candidate_beats_stale_one_with_equal_signals() -> None:
    current = make_record(source_id="current", tags=[], segment=None)
    recent = _candidate("recent", published_at=BASE_TIME - timedelta(days=1))

    result = rank_recommendations(current, [_candidate("stale"), recent], now=BASE_TIME, limit=1)

    assert [record.source_id for record in result.records] == ["recent"]


def test_weights_come_from_settings() -> None:
    weights = RecommendationWeights.from_settings(
        RecommendationSettings(weight_tag=1, weight_featured=50),
    )
    current = make_record(source_id="current", tags=["python"], segment=None)
    candidates = [_candidate("tagged", tags=["python"]), _candidate("feat", featured=True)]

    result = rank_recommendations(current, candidates, now=BASE_TIME, limit=1, weights=weights)

    assert [record.source_id for record in result.records] == ["feat"]
    assert result.strategy == RecommendationStrategy.FEATURED


def test_zero_limit_selects_nothing() -> None:
    current = make_record(source_id="current")

    result = rank_recommendations(current, [_candidate("x")], now=BASE_TIME, limit=0)

    assert result.records == []
    assert result.strategy == RecommendationStrategy.LATEST
