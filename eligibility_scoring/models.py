"""Data models for eligibility-scoring results."""

from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass(frozen=True)
class RuleResult:
    """Trace entry for a single rule evaluation."""

    rule_id: str
    field: str
    operator: str
    expected: Any
    actual: Any
    passed: bool
    weight: float
    contribution: float
    elapsed_ms: float = field(default=0.0, compare=False)
    error: str | None = None
    group: str | None = None  # owning group name, None for top-level rules

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class GroupResult:
    """Outcome of combining a group's rule results."""

    name: str
    logic: str
    passed: bool
    passed_count: int
    rule_count: int
    weight: float
    contribution: float
    rule_results: tuple[RuleResult, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["rule_results"] = [r.to_dict() for r in self.rule_results]
        return data


@dataclass(frozen=True)
class EvaluationResult:
    """Complete outcome of evaluating one criteria against one snapshot."""

    passed: bool
    score: float
    rule_results: tuple[RuleResult, ...]
    group_results: tuple[GroupResult, ...] = ()
    failed_rules: tuple[str, ...] = ()
    decision: str = field(default="", compare=False)
    evaluated_at: str = field(default="", compare=False)
    criteria: str | None = None
    scoring_method: str = "weighted"
    threshold: float = 65.0
    version: int | None = None

    @property
    def failed_rule_count(self) -> int:
        return len(self.failed_rules)

    @property
    def errors(self) -> list[RuleResult]:
        """Rule results whose evaluation raised."""
        return [r for r in self.all_rule_results() if r.error is not None]

    def all_rule_results(self) -> list[RuleResult]:
        """Top-level rule results followed by every group's rule results."""
        results = list(self.rule_results)
        for group in self.group_results:
            results.extend(group.rule_results)
        return results

    def to_dict(self) -> dict[str, Any]:
        return {
            "passed": self.passed,
            "score": self.score,
            "decision": self.decision,
            "criteria": self.criteria,
            "scoring_method": self.scoring_method,
            "threshold": self.threshold,
            "version": self.version,
            "evaluated_at": self.evaluated_at,
            "failed_rules": list(self.failed_rules),
            "rule_results": [r.to_dict() for r in self.rule_results],
            "group_results": [g.to_dict() for g in self.group_results],
        }


@dataclass
class BatchResult:
    """Results of evaluating many subjects, with per-item errors captured."""

    results: list[EvaluationResult] = field(default_factory=list)
    errors: dict[int, str] = field(default_factory=dict)  # input index -> message

    @property
    def total(self) -> int:
        return len(self.results) + len(self.errors)

    @property
    def passed(self) -> int:
        return sum(1 for r in self.results if r.passed)

    @property
    def failed(self) -> int:
        return len(self.results) - self.passed


@dataclass
class SummaryStats:
    """Aggregate statistics over a collection of evaluation results."""

    total: int
    passed: int
    failed: int
    pass_rate: float
    mean_score: float
    median_score: float
    min_score: float
    max_score: float
    score_histogram: dict[str, int] = field(default_factory=dict)
