"""Score aggregation over weighted pass/fail items."""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable

from .exceptions import ConfigurationError


class ScoringMethod(str, Enum):
    """How a list of weighted outcomes becomes a single score."""

    WEIGHTED = "weighted"
    PASS_FAIL = "pass_fail"
    SUM = "sum"
    AVERAGE = "average"

    @classmethod
    def parse(cls, value: "str | ScoringMethod") -> "ScoringMethod":
        if isinstance(value, ScoringMethod):
            return value
        name = str(value).lower()
        if name == "percentage":
            return cls.AVERAGE
        try:
            return cls(name)
        except ValueError:
            valid = ", ".join(m.value for m in cls)
            raise ConfigurationError(f"Invalid scoring method: {value!r}. Must be one of: {valid}") from None


@dataclass(frozen=True)
class ScoredItem:
    """One rule or group outcome fed to the scorer."""

    weight: float
    passed: bool


def calculate_score(items: Iterable[ScoredItem], method: ScoringMethod | str = ScoringMethod.WEIGHTED) -> float:
    """Aggregate item outcomes into a score rounded to two decimals.

    - weighted: passed weight over total weight, times 100, capped at 100.
      A zero total weight scores 0.
    - pass_fail: 100 if every item passed, else 0.
    - sum: raw sum of passed weights, not normalised.
    - average: passed count over item count, times 100.
    """
    method = ScoringMethod.parse(method)
    items = list(items)

    if method == ScoringMethod.WEIGHTED:
        total = sum(i.weight for i in items)
        if total <= 0:
            return 0.0
        earned = sum(i.weight for i in items if i.passed)
        return round(min(earned / total * 100, 100.0), 2)

    if method == ScoringMethod.PASS_FAIL:
        return 100.0 if all(i.passed for i in items) else 0.0

    if method == ScoringMethod.SUM:
        return round(float(sum(i.weight for i in items if i.passed)), 2)

    # Average
    if not items:
        return 0.0
    passed = sum(1 for i in items if i.passed)
    return round(passed / len(items) * 100, 2)


def is_passing(score: float, threshold: float) -> bool:
    """Return True when ``score`` meets ``threshold``."""
    return score >= threshold
