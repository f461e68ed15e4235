"""YAML settings and criteria loading and validation."""

import importlib.resources
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from .criteria import DEFAULT_RULE_WEIGHTS, Criteria, RulePriority
from .exceptions import ConfigurationError
from .extractor import ExtractionSettings
from .scorer import ScoringMethod


@dataclass
class CacheSettings:
    """In-memory evaluation cache options."""

    enabled: bool = True
    ttl_seconds: float = 3600.0
    max_entries: int = 1000


@dataclass
class AuditSettings:
    """Audit trail options."""

    enabled: bool = True
    events: list[str] = field(default_factory=lambda: [
        "evaluation_completed",
        "rule_created",
        "rule_updated",
        "rule_deleted",
        "criteria_created",
        "criteria_updated",
        "criteria_deleted",
        "version_created",
    ])
    include_sensitive_data: bool = False
    retention_days: int = 365


@dataclass
class WorkflowSettings:
    """Callback dispatch options."""

    enabled: bool = True
    fail_on_callback_error: bool = False
    excellent_threshold: float = 90.0
    good_threshold: float = 80.0


@dataclass
class EngineSettings:
    """Complete engine settings loaded from YAML."""

    pass_threshold: float = 65.0
    scoring_method: ScoringMethod = ScoringMethod.WEIGHTED
    rule_weights: dict[str, float] = field(default_factory=lambda: dict(DEFAULT_RULE_WEIGHTS))
    decisions: dict[str, list[str]] = field(default_factory=lambda: {
        "pass": ["Approved", "Accepted", "Qualified", "Eligible"],
        "fail": ["Rejected", "Declined", "Not Qualified", "Ineligible"],
    })
    extraction: ExtractionSettings = field(default_factory=ExtractionSettings)
    cache: CacheSettings = field(default_factory=CacheSettings)
    audit: AuditSettings = field(default_factory=AuditSettings)
    workflow: WorkflowSettings = field(default_factory=WorkflowSettings)
    presets: dict[str, dict[str, Any]] = field(default_factory=dict)
    derivations: dict[str, str] = field(default_factory=dict)  # field name -> "module:callable"


def load_settings(path: str | Path) -> EngineSettings:
    """Load engine settings from a YAML file."""
    path = Path(path)
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    return build_settings(data or {})


def load_default_settings() -> EngineSettings:
    """Load the bundled default settings."""
    pkg = importlib.resources.files("eligibility_scoring") / "profiles" / "default.yaml"
    text = pkg.read_text(encoding="utf-8")
    data = yaml.safe_load(text)
    return build_settings(data or {})


def build_settings(data: dict) -> EngineSettings:
    """Build EngineSettings from parsed YAML data."""
    if not isinstance(data, dict):
        raise ConfigurationError("Settings must be a mapping")
    scoring = data.get("scoring", {})

    settings = EngineSettings(
        pass_threshold=float(scoring.get("pass_threshold", 65)),
        scoring_method=ScoringMethod.parse(scoring.get("method", "weighted")),
        rule_weights=_parse_rule_weights(data.get("rule_weights", {})),
        decisions=_parse_decisions(data.get("decisions")),
        extraction=_parse_section(ExtractionSettings, data.get("extraction", {}), "extraction"),
        cache=_parse_section(CacheSettings, data.get("cache", {}), "cache"),
        audit=_parse_section(AuditSettings, data.get("audit", {}), "audit"),
        workflow=_parse_section(WorkflowSettings, data.get("workflow", {}), "workflow"),
        presets=dict(data.get("presets") or {}),
        derivations=_parse_derivations(data.get("derivations")),
    )
    _validate_settings(settings)
    return settings


def _parse_rule_weights(data: dict) -> dict[str, float]:
    weights = dict(DEFAULT_RULE_WEIGHTS)
    for priority, weight in (data or {}).items():
        try:
            RulePriority(priority)
        except ValueError:
            raise ConfigurationError(f"Unknown rule priority in rule_weights: {priority!r}") from None
        weights[priority] = float(weight)
    return weights


def _parse_decisions(data: dict | None) -> dict[str, list[str]]:
    decisions = EngineSettings().decisions
    if not data:
        return decisions
    for outcome in ("pass", "fail"):
        if outcome in data:
            labels = data[outcome]
            if isinstance(labels, str):
                labels = [labels]
            decisions[outcome] = [str(label) for label in labels]
    return decisions


def _parse_derivations(data: dict | None) -> dict[str, str]:
    if not data:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError("derivations must map field names to plugin paths")
    for name, path in data.items():
        if not isinstance(path, str) or not path:
            raise ConfigurationError(f"Derivation {name!r} must be a plugin path string")
    return {str(name): path for name, path in data.items()}


def _parse_section(cls: type, data: dict | None, name: str):
    """Build a settings dataclass from a YAML block, rejecting unknown keys."""
    data = data or {}
    known = {f.name for f in fields(cls)}
    unknown = set(data) - known
    if unknown:
        raise ConfigurationError(f"Unknown {name} settings: {sorted(unknown)}")
    return cls(**data)


def _validate_settings(settings: EngineSettings) -> None:
    """Validate engine settings for correctness."""
    if not 0 <= settings.pass_threshold <= 100:
        raise ConfigurationError(
            f"pass_threshold must be between 0 and 100, got {settings.pass_threshold}"
        )
    for weight_priority, weight in settings.rule_weights.items():
        if weight < 0:
            raise ConfigurationError(f"Rule weight for {weight_priority!r} must not be negative")
    for outcome in ("pass", "fail"):
        if not settings.decisions.get(outcome):
            raise ConfigurationError(f"At least one {outcome!r} decision label is required")
    if settings.cache.max_entries < 1:
        raise ConfigurationError("cache.max_entries must be at least 1")
    if settings.cache.ttl_seconds <= 0:
        raise ConfigurationError("cache.ttl_seconds must be positive")
    for preset_name, preset in settings.presets.items():
        try:
            criteria_from_dict(preset, default_slug=preset_name)
        except ConfigurationError as exc:
            raise ConfigurationError(f"Preset {preset_name!r}: {exc}") from None


# -- Criteria definitions --

def load_criteria(path: str | Path) -> list[Criteria]:
    """Load criteria definitions from a YAML file.

    The file holds either a single criteria mapping or a ``criteria`` list.
    """
    path = Path(path)
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if not data:
        raise ConfigurationError(f"No criteria defined in {path}")
    if isinstance(data, dict) and "criteria" in data:
        entries = data["criteria"]
    elif isinstance(data, list):
        entries = data
    else:
        entries = [data]

    criteria = [criteria_from_dict(entry) for entry in entries]
    seen = set()
    for c in criteria:
        if c.slug in seen:
            raise ConfigurationError(f"Duplicate criteria slug: {c.slug!r}")
        seen.add(c.slug)
    return criteria


def criteria_from_dict(data: dict, default_slug: str | None = None) -> Criteria:
    """Build and validate a Criteria from a parsed YAML or JSON mapping."""
    if not isinstance(data, dict):
        raise ConfigurationError(f"Criteria definition must be a mapping, got {type(data).__name__}")
    if default_slug and not data.get("slug"):
        data = {**data, "slug": default_slug}
    try:
        return Criteria.from_dict(data)
    except ConfigurationError as exc:
        ident = data.get("slug") or data.get("name", "<unnamed>")
        if repr(ident) in str(exc):
            raise
        raise ConfigurationError(f"Criteria {ident!r}: {exc}") from None
