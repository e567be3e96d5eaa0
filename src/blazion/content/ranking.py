"""Related content ranking."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from blazion.config import RecommendationSettings
from blazion.content.models import ContentRecord, RecommendationResult, RecommendationStrategy


@dataclass(slots=True, frozen=True)
class RecommendationWeights:
    related: float = 100
    tag: float = 20
    segment: float = 12
    featured: float = 8
    recency: float = 6
    recency_window_days: float = 30

    @classmethod
    def from_settings(cls, settings: RecommendationSettings) -> RecommendationWeights:
        return cls(
            related=settings.weight_related,
            tag=settings.weight_tag,
            segment=settings.weight_segment,
            featured=settings.weight_featured,
            recency=settings.weight_recency,
            recency_window_days=settings.recency_window_days,
        )


@dataclass(slots=True)
class _ScoredCandidate:
    record: ContentRecord
    score: float
    related: bool
    shared_tags: int
    same_segment: bool


def rank_recommendations(
    current: ContentRecord,
    candidates: list[ContentRecord],
    *,
    now: datetime,
    limit: int,
    weights: RecommendationWeights | None = None,
) -> RecommendationResult:
    """Score candidates against ``current`` and return the top ``limit`` with a strategy label.

    Ties on score go to the more recent candidate. The strategy names the highest-priority
    signal present anywhere in the selected set.
    """

    weights = weights or RecommendationWeights()
    current_related = set(current.related_source_ids)
    current_tags = {tag.lower() for tag in current.tags}
    current_segment = _normalize_segment(current.segment)

    scored: list[_ScoredCandidate] = []
    for candidate in candidates:
        related = (
            candidate.source_id in current_related
            or current.source_id in candidate.related_source_ids
        )
        shared_tags = sum(1 for tag in candidate.tags if tag.lower() in current_tags)
        same_segment = (
            current_segment is not None and current_segment == _normalize_segment(candidate.segment)
        )
        score = (
            (weights.related if related else 0)
            + shared_tags * weights.tag
            + (weights.segment if same_segment else 0)
            + (weights.featured if candidate.featured else 0)
            + recency_score(candidate.effective_timestamp, now=now, weights=weights)
        )
        scored.append(
            _ScoredCandidate(
                record=candidate,
                score=score,
                related=related,
                shared_tags=shared_tags,
                same_segment=same_segment,
            ),
        )

    scored.sort(key=lambda entry: (entry.score, entry.record.effective_timestamp), reverse=True)
    selected = scored[: max(0, limit)]
    return RecommendationResult(
        records=[entry.record for entry in selected],
        strategy=_resolve_strategy(selected),
    )


def recency_score(
    timestamp: datetime | None,
    *,
    now: datetime,
    weights: RecommendationWeights,
) -> float:
    """Linear decay from the full recency weight to zero across the window."""

    if timestamp is None or timestamp > now:
        return 0.0
    window = timedelta(days=weights.recency_window_days)
    if window.total_seconds() <= 0:
        return 0.0
    age = now - timestamp
    if age >= window:
        return 0.0
    return (1 - age / window) * weights.recency


def _resolve_strategy(selected: list[_ScoredCandidate]) -> RecommendationStrategy:
    if any(entry.related for entry in selected):
        return RecommendationStrategy.RELATED_IDS
    if any(entry.shared_tags > 0 for entry in selected):
        return RecommendationStrategy.TAGS
    if any(entry.same_segment for entry in selected):
        return RecommendationStrategy.SEGMENT
    if any(entry.record.featured for entry in selected):
        return RecommendationStrategy.FEATURED
    return RecommendationStrategy.LATEST


def _normalize_segment(value: str | None) -> str | None:
    if not value:
        return None
    normalized = value.strip().lower()
    return normalized or None
