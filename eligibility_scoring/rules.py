"""Evaluation of single rules and rule groups against a snapshot."""

import logging
import time

from .criteria import GroupLogic, Rule, RuleGroup
from .expression import BooleanExpression
from .models import GroupResult, RuleResult
from .operators import evaluate_operator
from .snapshot import Snapshot

logger = logging.getLogger(__name__)


def evaluate_rule(rule: Rule, snapshot: Snapshot, group: str | None = None) -> RuleResult:
    """Evaluate one rule. Never raises: failures are recorded on the result."""
    start = time.perf_counter()
    actual = None
    error = None
    try:
        actual = snapshot.get(rule.field)
        passed = evaluate_operator(rule.operator, actual, rule.value)
    except Exception as exc:
        passed = False
        error = f"{type(exc).__name__}: {exc}"
        logger.warning("Rule %r on field %r raised: %s", rule.rule_id, rule.field, error)
    elapsed_ms = (time.perf_counter() - start) * 1000

    return RuleResult(
        rule_id=rule.rule_id,
        field=rule.field,
        operator=rule.operator.value,
        expected=rule.value,
        actual=actual,
        passed=passed,
        weight=rule.weight,
        contribution=rule.weight if passed else 0.0,
        elapsed_ms=round(elapsed_ms, 4),
        error=error,
        group=group,
    )


def evaluate_group(group: RuleGroup, snapshot: Snapshot) -> GroupResult:
    """Evaluate every active rule in ``group`` and combine them under its logic."""
    results = tuple(evaluate_rule(rule, snapshot, group=group.name) for rule in group.active_rules())
    passed_count = sum(1 for r in results if r.passed)
    passed = combine(group, results)

    return GroupResult(
        name=group.name,
        logic=group.logic.value,
        passed=passed,
        passed_count=passed_count,
        rule_count=len(results),
        weight=group.weight,
        contribution=group.weight if passed else 0.0,
        rule_results=results,
    )


def combine(group: RuleGroup, results: tuple[RuleResult, ...]) -> bool:
    """Apply the group's logic to its rule results. No rules means satisfied."""
    if not results:
        return True

    passed_count = sum(1 for r in results if r.passed)

    if group.logic == GroupLogic.ALL:
        return passed_count == len(results)
    if group.logic == GroupLogic.ANY:
        return passed_count > 0
    if group.logic == GroupLogic.MIN:
        return passed_count >= (group.min_required or 0)
    if group.logic == GroupLogic.MAJORITY:
        return passed_count > len(results) // 2
    # Boolean
    outcomes = {r.rule_id: r.passed for r in results}
    return BooleanExpression(group.expression or "").evaluate(outcomes)
