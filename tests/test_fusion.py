import itertools

import pytest

from creditsdetect.fusion import (
    SelectionStrategy,
    agreement_confidence,
    fallback_timestamp,
    group_candidates,
    median,
    select_by_correlation,
    select_by_strategy,
)
from creditsdetect.models import DetectionCandidate


def _candidates(*specs):
    return [DetectionCandidate(name, ts, conf, prio) for name, ts, conf, prio in specs]


def test_correlation_prefers_agreeing_group():
    candidates = _candidates(("M1", 100, 0.9, 1), ("M2", 103, 0.8, 2), ("M3", 500, 0.5, 3))
    groups = group_candidates(candidates, 5)
    assert [len(g.members) for g in groups] == [2, 1]
    assert groups[0].score == pytest.approx(1.7)
    assert select_by_correlation(candidates, 5) == 100


def test_correlation_result_comes_from_candidates():
    sets = [
        _candidates(("A", 10, 0.1, 1), ("B", 20, 0.9, 1)),
        _candidates(("A", 300, 0.5, 1), ("B", 302, 0.5, 1), ("C", 304, 0.5, 1), ("D", 309, 0.5, 1)),
        _candidates(("A", 1200.5, 0.95, 1), ("B", 1180.25, 0.6, 2), ("C", 1201, 0.4, 3)),
    ]
    for candidates in sets:
        result = select_by_strategy(candidates, SelectionStrategy.CORRELATION_SCORING, 5)
        assert result in [c.timestamp for c in candidates]


def test_correlation_tie_keeps_first_group():
    candidates = _candidates(("A", 50, 0.5, 1), ("B", 900, 0.5, 1))
    assert select_by_correlation(candidates, 5) == 50


def test_median_even_count():
    assert median([90, 100, 110, 1000]) == 105
    assert median([3, 1, 2]) == 2
    assert median([]) == 0.0


@pytest.mark.parametrize("strategy", [SelectionStrategy.MEDIAN, SelectionStrategy.AVERAGE])
def test_median_and_average_ignore_order(strategy):
    candidates = _candidates(("A", 90.1, 0.5, 1), ("B", 100.7, 0.5, 1), ("C", 110.3, 0.5, 1), ("D", 1000.9, 0.5, 1))
    results = {select_by_strategy(list(p), strategy, 5) for p in itertools.permutations(candidates)}
    assert len(results) == 1


def test_simple_strategies():
    candidates = _candidates(("A", 120, 0.5, 3), ("B", 100, 0.5, 2), ("C", 140, 0.5, 1))
    assert select_by_strategy(candidates, SelectionStrategy.EARLIEST, 5) == 100
    assert select_by_strategy(candidates, SelectionStrategy.LATEST, 5) == 140
    assert select_by_strategy(candidates, SelectionStrategy.AVERAGE, 5) == 120
    assert select_by_strategy(candidates, SelectionStrategy.PRIORITY, 5) == 140
    assert select_by_strategy([], SelectionStrategy.EARLIEST, 5) == 0.0


def test_strategy_parse_falls_back_to_correlation():
    assert SelectionStrategy.parse("median") is SelectionStrategy.MEDIAN
    assert SelectionStrategy.parse("Bogus") is SelectionStrategy.CORRELATION_SCORING


def test_agreement_confidence_bonuses():
    candidate = DetectionCandidate("OCR", 100, 0.5, 1)
    comparisons = [
        [("Other", 102), ("OCR", 101)],
        [("OCR", 300)],
    ]
    # one of two episodes agrees (+0.25) through a second method (+0.1)
    assert agreement_confidence(candidate, comparisons, 5) == pytest.approx(0.85)


def test_agreement_confidence_is_capped():
    candidate = DetectionCandidate("OCR", 100, 0.95, 1)
    comparisons = [[("OCR", 100)], [("OCR", 101)]]
    assert agreement_confidence(candidate, comparisons, 5) == 1.0


def test_fallback_uses_median_of_episode_averages():
    comparisons = [[("OCR", 100), ("OCR", 110)], [("OCR", 120)], []]
    assert fallback_timestamp(comparisons, 0.5) == pytest.approx(112.5)


def test_fallback_requires_success_rate():
    comparisons = [[("OCR", 100)], [], []]
    assert fallback_timestamp(comparisons, 0.5) is None
    assert fallback_timestamp([], 0.0) is None


def test_agreement_counts_episodes_without_results():
    candidate = DetectionCandidate("OCR", 100, 0.5, 1)
    comparisons = [[("OCR", 101)], [("OCR", 99)]]
    # two of four requested episodes agree (+0.25)
    assert agreement_confidence(candidate, comparisons, 5, comparison_count=4) == pytest.approx(0.75)


def test_fallback_counts_episodes_without_results():
    comparisons = [[("OCR", 1200)]]
    assert fallback_timestamp(comparisons, 0.5) == pytest.approx(1200)
    assert fallback_timestamp(comparisons, 0.5, comparison_count=4) is None
    assert fallback_timestamp(comparisons, 0.25, comparison_count=4) == pytest.approx(1200)
