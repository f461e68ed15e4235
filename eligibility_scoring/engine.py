"""Core evaluation orchestration."""

import logging
import random
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Self

from .config import EngineSettings, load_default_settings, load_settings
from .criteria import Criteria, CriteriaVersion, GroupLogic
from .exceptions import ConfigurationError
from .expression import BooleanExpression
from .extractor import Extractor
from .models import EvaluationResult, GroupResult
from .plugin import Derivation, load_plugin
from .rules import evaluate_group, evaluate_rule
from .scorer import ScoredItem, calculate_score, is_passing
from .snapshot import Snapshot

logger = logging.getLogger(__name__)

NO_RULES_DECISION = "No rules to evaluate"


class EligibilityEngine:
    """Evaluates criteria against subject data.

    The engine keeps no state between calls, so one instance may serve
    concurrent evaluations. Decision labels are picked at random from the
    configured synonyms; pass ``rng`` to make the pick reproducible.
    """

    def __init__(
        self,
        settings: EngineSettings | None = None,
        *,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._settings = settings or load_default_settings()
        self._rng = rng or random.Random()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._derivations: dict[str, Derivation] = {}
        for name, path in self._settings.derivations.items():
            try:
                self._derivations[name] = load_plugin(path)
            except (ImportError, AttributeError, TypeError, ValueError) as exc:
                raise ConfigurationError(f"Cannot load derivation {name!r} from {path!r}: {exc}") from exc
            logger.info("Loaded derivation %s from %s", name, path)

    @classmethod
    def from_config(cls, path: str | Path, **kwargs: Any) -> Self:
        """Create an engine from a YAML settings file."""
        return cls(settings=load_settings(path), **kwargs)

    @property
    def settings(self) -> EngineSettings:
        return self._settings

    @property
    def derivations(self) -> dict[str, Derivation]:
        """Derived fields loaded from the settings' plugin paths."""
        return dict(self._derivations)

    def extractor(self) -> Extractor:
        """A fresh Extractor carrying the configured derivations."""
        extractor = Extractor(self._settings.extraction, clock=self._clock)
        for name, func in self._derivations.items():
            extractor.add_derivation(name, func)
        return extractor

    def snapshot(self, data: Any) -> Snapshot:
        """Return ``data`` as a Snapshot, extracting it if needed."""
        if isinstance(data, Snapshot):
            return data
        return self.extractor().extract(data)

    def evaluate(self, criteria: Criteria | CriteriaVersion, data: Any) -> EvaluationResult:
        """Evaluate ``criteria`` against ``data`` (a Snapshot or any extractable object).

        Raises ConfigurationError if the criteria is invalid. Rule-level
        failures never raise; they are recorded in the trace.
        """
        version = None
        if isinstance(criteria, CriteriaVersion):
            version = criteria.version
            criteria = criteria.to_criteria()

        criteria.validate()
        snapshot = self.snapshot(data)
        method = criteria.scoring_method or self._settings.scoring_method
        threshold = (
            float(criteria.pass_threshold)
            if criteria.pass_threshold is not None
            else self._settings.pass_threshold
        )
        evaluated_at = self._clock().isoformat()

        rules = criteria.active_rules()
        groups = criteria.active_groups()

        if not rules and not groups:
            return EvaluationResult(
                passed=True,
                score=100.0,
                rule_results=(),
                decision=NO_RULES_DECISION,
                evaluated_at=evaluated_at,
                criteria=criteria.slug,
                scoring_method=method.value,
                threshold=threshold,
                version=version,
            )

        rule_results = tuple(evaluate_rule(rule, snapshot) for rule in rules)
        group_results = tuple(evaluate_group(group, snapshot) for group in groups)

        items = [ScoredItem(r.weight, r.passed) for r in rule_results]
        items.extend(ScoredItem(g.weight, g.passed) for g in group_results)
        score = calculate_score(items, method)

        passed = is_passing(score, threshold) and self._groups_satisfied(criteria, group_results)
        failed = [r.rule_id for r in rule_results if not r.passed]
        for group in group_results:
            failed.extend(f"{group.name}.{r.rule_id}" for r in group.rule_results if not r.passed)

        result = EvaluationResult(
            passed=passed,
            score=score,
            rule_results=rule_results,
            group_results=group_results,
            failed_rules=tuple(failed),
            decision=self.decide(criteria, passed, score),
            evaluated_at=evaluated_at,
            criteria=criteria.slug,
            scoring_method=method.value,
            threshold=threshold,
            version=version,
        )
        logger.debug(
            "Evaluated %s: passed=%s score=%s failed=%d",
            criteria.slug, passed, score, len(failed),
        )
        return result

    def evaluate_many(self, criteria: Criteria | CriteriaVersion, items: Iterable[Any]) -> list[EvaluationResult]:
        """Evaluate a sequence of subjects against the same criteria."""
        return [self.evaluate(criteria, item) for item in items]

    def decide(self, criteria: Criteria, passed: bool, score: float) -> str:
        """Pick the decision label for an outcome.

        The label of the highest decision threshold not above ``score`` wins
        when the criteria defines thresholds. Otherwise a synonym is chosen
        from the configured pass or fail labels.
        """
        for threshold in sorted(criteria.decision_thresholds, reverse=True):
            if score >= threshold:
                return criteria.decision_thresholds[threshold]
        labels = self._settings.decisions["pass" if passed else "fail"]
        return self._rng.choice(labels)

    @staticmethod
    def _groups_satisfied(criteria: Criteria, group_results: tuple[GroupResult, ...]) -> bool:
        if criteria.group_logic is None or not group_results:
            return True
        outcomes = {g.name: g.passed for g in group_results}
        if criteria.group_logic == GroupLogic.ALL:
            return all(outcomes.values())
        if criteria.group_logic == GroupLogic.ANY:
            return any(outcomes.values())
        return BooleanExpression(criteria.group_expression or "").evaluate(outcomes)

