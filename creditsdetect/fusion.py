"""Fusion of detection candidates into a single credits timestamp."""

from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from creditsdetect.models import DetectionCandidate

AGREEMENT_WEIGHT = 0.5
DIVERSITY_WEIGHT = 0.1


class SelectionStrategy(str, Enum):
    CORRELATION_SCORING = "CorrelationScoring"
    EARLIEST = "Earliest"
    LATEST = "Latest"
    AVERAGE = "Average"
    MEDIAN = "Median"
    PRIORITY = "Priority"

    @classmethod
    def parse(cls, value: str) -> "SelectionStrategy":
        for strategy in cls:
            if strategy.value.lower() == str(value).lower():
                return strategy
        return cls.CORRELATION_SCORING


class CandidateGroup:
    """Candidates treated as the same event, represented by the first member."""

    def __init__(self, first: DetectionCandidate):
        self.timestamp = first.timestamp
        self.members = [first]

    @property
    def score(self) -> float:
        return sum(c.confidence for c in self.members)


def median(values: Sequence[float]) -> float:
    """Median; an even count yields the mean of the two middle values."""
    if not values:
        return 0.0
    ordered = sorted(values)
    middle = len(ordered) // 2
    if len(ordered) % 2 == 0:
        return (ordered[middle - 1] + ordered[middle]) / 2
    return ordered[middle]


def group_candidates(candidates: Sequence[DetectionCandidate], window_seconds: float) -> List[CandidateGroup]:
    """Greedily merge candidates into groups; the first group within the window wins."""
    groups: List[CandidateGroup] = []
    for candidate in candidates:
        for group in groups:
            if abs(group.timestamp - candidate.timestamp) <= window_seconds:
                group.members.append(candidate)
                break
        else:
            groups.append(CandidateGroup(candidate))
    return groups


def select_by_correlation(candidates: Sequence[DetectionCandidate], window_seconds: float) -> float:
    """Representative timestamp of the highest-scoring group (first group wins ties)."""
    groups = group_candidates(candidates, window_seconds)
    if not groups:
        return 0.0
    return max(groups, key=lambda g: g.score).timestamp


def select_by_strategy(
    candidates: Sequence[DetectionCandidate],
    strategy: SelectionStrategy,
    window_seconds: float,
) -> float:
    """
    Reduce candidates to one timestamp.

    Args:
        candidates: Candidates with timestamps > 0
        strategy: How to choose between them
        window_seconds: Correlation window for CorrelationScoring

    Returns:
        The selected timestamp, 0.0 if there are no candidates
    """
    if not candidates:
        return 0.0
    if len(candidates) == 1:
        return candidates[0].timestamp

    timestamps = [c.timestamp for c in candidates]
    if strategy == SelectionStrategy.EARLIEST:
        return min(timestamps)
    if strategy == SelectionStrategy.LATEST:
        return max(timestamps)
    if strategy == SelectionStrategy.AVERAGE:
        return sum(sorted(timestamps)) / len(timestamps)
    if strategy == SelectionStrategy.MEDIAN:
        return median(timestamps)
    if strategy == SelectionStrategy.PRIORITY:
        return min(candidates, key=lambda c: c.priority).timestamp
    return select_by_correlation(candidates, window_seconds)


def agreement_confidence(
    candidate: DetectionCandidate,
    comparison_results: Sequence[Sequence[Tuple[str, float]]],
    window_seconds: float,
    comparison_count: Optional[int] = None,
) -> float:
    """
    Boost a candidate's confidence by how well other episodes agree with it.

    Each comparison episode agrees at most once, through its first
    (method, timestamp) pair inside the window. The agreement bonus is the
    agreeing fraction times 0.5; each additional distinct agreeing method
    adds 0.1. The result is capped at 1.0.

    comparison_count is the number of episodes asked for, including those
    that produced no results at all; it defaults to len(comparison_results).
    """
    total = max(comparison_count or 0, len(comparison_results))
    if total == 0:
        return min(1.0, candidate.confidence)

    agreeing = 0
    methods = {candidate.method_name}
    for results in comparison_results:
        for method_name, timestamp in results:
            if abs(timestamp - candidate.timestamp) <= window_seconds:
                agreeing += 1
                methods.add(method_name)
                break

    bonus = agreeing / total * AGREEMENT_WEIGHT
    diversity = (len(methods) - 1) * DIVERSITY_WEIGHT
    return min(1.0, candidate.confidence + bonus + diversity)


def fallback_timestamp(
    comparison_results: Sequence[Sequence[Tuple[str, float]]],
    minimum_success_rate: float,
    comparison_count: Optional[int] = None,
) -> Optional[float]:
    """
    Estimate a timestamp for an episode with no detections of its own.

    Uses the median of the other episodes' average timestamps, provided the
    share of episodes that detected anything reaches minimum_success_rate.
    Episodes that could not be analyzed still count towards that share when
    comparison_count includes them.

    Returns:
        The estimate, or None when there is not enough evidence
    """
    total = max(comparison_count or 0, len(comparison_results))
    if total == 0:
        return None
    averages = [sum(ts for _, ts in results) / len(results) for results in comparison_results if results]
    if not averages:
        return None
    success_rate = len(averages) / total
    if success_rate < minimum_success_rate:
        return None
    return median(averages)


def describe_candidates(candidates: Sequence[DetectionCandidate]) -> Dict[str, float]:
    return {c.method_name: round(c.timestamp, 2) for c in candidates}
