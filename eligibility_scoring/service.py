"""High-level facade tying the engine to its in-process collaborators."""

import logging
import random
from collections import deque
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Self

from .audit import AuditLogger
from .cache import EvaluationCache
from .config import EngineSettings, criteria_from_dict, load_default_settings, load_settings
from .criteria import Criteria, CriteriaBuilder, CriteriaVersion, Rule
from .engine import EligibilityEngine
from .exceptions import CriteriaNotFoundError, VersionNotFoundError
from .mapping import MappingRegistry
from .models import BatchResult, EvaluationResult, SummaryStats
from .snapshot import Snapshot
from .stats import summarize

logger = logging.getLogger(__name__)


class Eligify:
    """In-memory criteria registry with evaluation, caching, audit and versioning.

    Example::

        eligify = Eligify()
        eligify.register(
            eligify.criteria("Loan Approval")
            .add_rule("income", ">=", 3000, weight=40)
            .add_rule("credit_score", ">=", 650, weight=60)
            .build()
        )
        result = eligify.evaluate("loan_approval", {"income": 5000, "credit_score": 700})
    """

    def __init__(
        self,
        settings: EngineSettings | None = None,
        *,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] | None = None,
        history_limit: int = 1000,
    ) -> None:
        self.settings = settings or load_default_settings()
        self._clock = clock
        self.engine = EligibilityEngine(self.settings, rng=rng, clock=clock)
        self.cache = (
            EvaluationCache(self.settings.cache.ttl_seconds, self.settings.cache.max_entries)
            if self.settings.cache.enabled
            else None
        )
        self.audit = AuditLogger(
            self.settings.audit.events,
            enabled=self.settings.audit.enabled,
            include_sensitive_data=self.settings.audit.include_sensitive_data,
            sensitive_fields=self.settings.extraction.sensitive_fields,
            clock=clock,
            retention_days=self.settings.audit.retention_days,
        )
        self.mappings = MappingRegistry(self.settings.extraction, derivations=self.engine.derivations)
        self._criteria: dict[str, Criteria] = {}
        self._versions: dict[str, list[CriteriaVersion]] = {}
        self._history_limit = history_limit
        self._history: dict[str, deque[EvaluationResult]] = {}

    @classmethod
    def from_config(cls, path: str | Path, **kwargs: Any) -> Self:
        return cls(load_settings(path), **kwargs)

    # -- Registry --

    def criteria(self, name: str) -> CriteriaBuilder:
        """Start building a criteria that uses the configured rule weights."""
        return CriteriaBuilder(name, rule_weights=self.settings.rule_weights)

    def register(self, criteria: Criteria) -> Criteria:
        """Validate and store ``criteria`` under its slug, replacing any previous one."""
        criteria.validate()
        if criteria.workflow is not None:
            criteria.workflow.fail_on_callback_error = self.settings.workflow.fail_on_callback_error
            criteria.workflow.excellent_threshold = self.settings.workflow.excellent_threshold
            criteria.workflow.good_threshold = self.settings.workflow.good_threshold

        previous = self._criteria.get(criteria.slug)
        if previous is not None:
            self._invalidate(previous)
            self.audit.record(
                "criteria_updated", criteria.slug, before=previous.to_dict(), after=criteria.to_dict()
            )
        else:
            self.audit.record("criteria_created", criteria.slug, after=criteria.to_dict())
        self._criteria[criteria.slug] = criteria
        return criteria

    def create_from_preset(self, preset: str, slug: str | None = None) -> Criteria:
        """Register a criteria built from a named preset in the settings."""
        if preset not in self.settings.presets:
            raise CriteriaNotFoundError(f"Preset {preset!r} not found")
        data = dict(self.settings.presets[preset])
        data["slug"] = slug or data.get("slug") or preset
        return self.register(criteria_from_dict(data))

    def get_criteria(self, slug: str) -> Criteria:
        try:
            return self._criteria[slug]
        except KeyError:
            raise CriteriaNotFoundError(f"Criteria {slug!r} not found") from None

    def has_criteria(self, slug: str) -> bool:
        return slug in self._criteria

    def all_criteria(self) -> list[Criteria]:
        return list(self._criteria.values())

    def delete_criteria(self, slug: str) -> Criteria:
        criteria = self.get_criteria(slug)
        self._invalidate(criteria)
        del self._criteria[slug]
        self._versions.pop(slug, None)
        self._history.pop(slug, None)
        self.audit.record("criteria_deleted", slug, before=criteria.to_dict())
        return criteria

    def _resolve(self, criteria: str | Criteria) -> Criteria:
        return self.get_criteria(criteria) if isinstance(criteria, str) else criteria

    # -- Rule management --

    def add_rule(self, criteria: str | Criteria, rule: Rule | Mapping[str, Any]) -> Rule:
        target = self._resolve(criteria)
        if not isinstance(rule, Rule):
            rule = Rule.from_dict(rule)
        self._invalidate(target)
        target.add_rule(rule)
        self.audit.record("rule_created", target.slug, after=rule.to_dict())
        return rule

    def update_rule(self, criteria: str | Criteria, rule_id: str, **changes: Any) -> Rule:
        target = self._resolve(criteria)
        current = target.find_rule(rule_id)
        if current is None:
            raise KeyError(rule_id)
        updated = replace(current, **changes)
        self._invalidate(target)
        target.rules[target.rules.index(current)] = updated
        self.audit.record("rule_updated", target.slug, before=current.to_dict(), after=updated.to_dict())
        return updated

    def remove_rule(self, criteria: str | Criteria, rule_id: str) -> Rule:
        target = self._resolve(criteria)
        self._invalidate(target)
        removed = target.remove_rule(rule_id)
        self.audit.record("rule_deleted", target.slug, before=removed.to_dict())
        return removed

    # -- Extraction --

    def extract(self, source: Any) -> Snapshot:
        """Extract ``source`` with the mapping registered for its type."""
        if isinstance(source, Snapshot):
            return source
        return self.mappings.extractor_for(source, clock=self._clock).extract(source)

    # -- Evaluation --

    def evaluate(self, criteria: str | Criteria, data: Any, *, use_cache: bool = True) -> EvaluationResult:
        """Evaluate a registered (or given) criteria, firing its workflow callbacks."""
        target = self._resolve(criteria)
        snapshot = self.extract(data)
        workflow = target.workflow if self.settings.workflow.enabled else None

        if workflow is not None:
            workflow.before(target, snapshot)

        if self.cache is not None and use_cache:
            result = self.cache.remember(target, snapshot, lambda: self.engine.evaluate(target, snapshot))
        else:
            result = self.engine.evaluate(target, snapshot)

        self._history.setdefault(target.slug, deque(maxlen=self._history_limit)).append(result)
        self.audit.record(
            "evaluation_completed",
            target.slug,
            after={"passed": result.passed, "score": result.score, "decision": result.decision},
            context={"data": snapshot.all()},
        )

        if workflow is not None:
            workflow.after(result, snapshot)
        return result

    def evaluate_batch(self, criteria: str | Criteria, items: Iterable[Any]) -> BatchResult:
        """Evaluate many subjects; a failing item is recorded and the rest continue."""
        target = self._resolve(criteria)
        target.validate()
        batch = BatchResult()
        for index, item in enumerate(items):
            try:
                batch.results.append(self.evaluate(target, item))
            except Exception as exc:
                logger.warning("Batch item %d for %s failed: %s", index, target.slug, exc)
                batch.errors[index] = str(exc)
        return batch

    def evaluation_stats(self, criteria: str | Criteria) -> SummaryStats:
        """Summary of the most recent evaluations (up to ``history_limit``) of ``criteria``."""
        target = self._resolve(criteria)
        return summarize(list(self._history.get(target.slug, ())))

    def cleanup_audit(self) -> int:
        """Apply the configured audit retention; returns how many entries were dropped."""
        return self.audit.cleanup()

    # -- Versioning --

    def create_version(self, criteria: str | Criteria, description: str = "") -> CriteriaVersion:
        target = self._resolve(criteria)
        versions = self._versions.setdefault(target.slug, [])
        version = target.create_version(len(versions) + 1, description)
        versions.append(version)
        self.audit.record(
            "version_created", target.slug, after={"version": version.version, "description": description}
        )
        return version

    def get_version(self, criteria: str | Criteria, version: int) -> CriteriaVersion:
        target = self._resolve(criteria)
        for candidate in self._versions.get(target.slug, []):
            if candidate.version == version:
                return candidate
        raise VersionNotFoundError(f"Criteria {target.slug!r} has no version {version}")

    def evaluate_version(self, criteria: str | Criteria, version: int, data: Any) -> EvaluationResult:
        """Evaluate ``data`` against a stored version of the criteria."""
        return self.engine.evaluate(self.get_version(criteria, version), self.extract(data))

    def version_history(self, criteria: str | Criteria) -> list[dict[str, Any]]:
        target = self._resolve(criteria)
        return [
            {
                "version": v.version,
                "description": v.description,
                "created_at": v.created_at,
                "rules_count": v.rule_count(),
            }
            for v in self._versions.get(target.slug, [])
        ]

    def compare_versions(self, criteria: str | Criteria, first: int, second: int) -> dict[str, list[str]]:
        """Rule ids added, removed and modified between two versions."""
        old = _rules_by_id(self.get_version(criteria, first))
        new = _rules_by_id(self.get_version(criteria, second))
        return {
            "added": sorted(set(new) - set(old)),
            "removed": sorted(set(old) - set(new)),
            "modified": sorted(k for k in set(old) & set(new) if old[k] != new[k]),
        }

    # -- Cache --

    def _invalidate(self, criteria: Criteria) -> None:
        if self.cache is not None:
            self.cache.invalidate(criteria)

    def invalidate_cache(self, criteria: str | Criteria) -> int:
        if self.cache is None:
            return 0
        return self.cache.invalidate(self._resolve(criteria))

    def flush_cache(self) -> None:
        if self.cache is not None:
            self.cache.flush()

    def cache_stats(self) -> dict[str, float]:
        if self.cache is None:
            return {"hits": 0, "misses": 0, "size": 0, "hit_rate": 0.0}
        return self.cache.stats()


def _rules_by_id(version: CriteriaVersion) -> dict[str, dict[str, Any]]:
    return {r.get("id") or r["field"]: r for r in version.rules_snapshot}
