"""Summary statistics for evaluation results."""

import statistics

from .models import EvaluationResult, SummaryStats

HISTOGRAM_BUCKETS = ["0-49", "50-64", "65-79", "80-89", "90+"]


def summarize(results: list[EvaluationResult]) -> SummaryStats:
    """Compute aggregate statistics over a list of evaluation results."""
    if not results:
        return SummaryStats(
            total=0,
            passed=0,
            failed=0,
            pass_rate=0.0,
            mean_score=0.0,
            median_score=0.0,
            min_score=0.0,
            max_score=0.0,
            score_histogram={b: 0 for b in HISTOGRAM_BUCKETS},
        )

    scores = [r.score for r in results]
    passed = sum(1 for r in results if r.passed)

    return SummaryStats(
        total=len(results),
        passed=passed,
        failed=len(results) - passed,
        pass_rate=round(passed / len(results) * 100, 1),
        mean_score=round(statistics.mean(scores), 1),
        median_score=round(statistics.median(scores), 1),
        min_score=min(scores),
        max_score=max(scores),
        score_histogram=_build_histogram(scores),
    )


def _build_histogram(values: list[float]) -> dict[str, int]:
    """Bucket scores into a histogram."""
    buckets = {b: 0 for b in HISTOGRAM_BUCKETS}
    for v in values:
        if v < 50:
            buckets["0-49"] += 1
        elif v < 65:
            buckets["50-64"] += 1
        elif v < 80:
            buckets["65-79"] += 1
        elif v < 90:
            buckets["80-89"] += 1
        else:
            buckets["90+"] += 1
    return buckets
