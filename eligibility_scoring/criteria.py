"""Criteria, rules and rule groups, plus fluent builders for them."""

import copy
import hashlib
import json
import re
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Iterable, Mapping

from .exceptions import ConfigurationError
from .expression import BooleanExpression
from .operators import Operator, validate_expected
from .scorer import ScoringMethod
from .workflow import Workflow


class RulePriority(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"


DEFAULT_RULE_WEIGHTS: dict[str, float] = {
    "critical": 100,
    "high": 75,
    "medium": 50,
    "low": 25,
    "info": 0,
}


class GroupLogic(str, Enum):
    """How a group's rule outcomes combine into the group outcome."""

    ALL = "all"
    ANY = "any"
    MIN = "min"
    MAJORITY = "majority"
    BOOLEAN = "boolean"

    @classmethod
    def parse(cls, value: "str | GroupLogic") -> "GroupLogic":
        if isinstance(value, GroupLogic):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            valid = ", ".join(g.value for g in cls)
            raise ConfigurationError(f"Invalid group logic: {value!r}. Must be one of: {valid}") from None


def _freeze(value: Any) -> Any:
    """Turn lists into tuples so a rule value cannot change after construction."""
    if isinstance(value, list):
        return tuple(_freeze(v) for v in value)
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, tuple):
        return [_thaw(v) for v in value]
    return value


@dataclass(frozen=True)
class Rule:
    """A single predicate: ``field`` compared to ``value`` with ``operator``."""

    field: str
    operator: Operator
    value: Any = None
    weight: float = 1.0
    order: int = 0
    is_active: bool = True
    id: str | None = None
    priority: RulePriority | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.field, str) or not self.field:
            raise ConfigurationError("Rule field must be a non-empty string")
        operator = Operator.parse(self.operator)
        value = _freeze(self.value)
        validate_expected(operator, value)
        try:
            weight = float(self.weight)
        except (TypeError, ValueError):
            raise ConfigurationError(f"Rule {self.field!r}: weight must be a number, got {self.weight!r}") from None
        if weight < 0:
            raise ConfigurationError(f"Rule {self.field!r}: weight must not be negative")
        object.__setattr__(self, "operator", operator)
        object.__setattr__(self, "value", value)
        object.__setattr__(self, "weight", weight)
        if self.priority is not None:
            object.__setattr__(self, "priority", RulePriority(self.priority))

    @property
    def rule_id(self) -> str:
        """Identifier used in traces and boolean expressions."""
        return self.id or self.field

    def to_dict(self) -> dict[str, Any]:
        data = {
            "field": self.field,
            "operator": self.operator.value,
            "value": _thaw(self.value),
            "weight": self.weight,
            "order": self.order,
            "is_active": self.is_active,
        }
        if self.id is not None:
            data["id"] = self.id
        if self.priority is not None:
            data["priority"] = self.priority.value
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Rule":
        missing = {"field", "operator"} - set(data)
        if missing:
            raise ConfigurationError(f"Rule missing required fields: {sorted(missing)}")
        return cls(
            field=data["field"],
            operator=data["operator"],
            value=data.get("value"),
            weight=data.get("weight", 1.0),
            order=int(data.get("order", 0)),
            is_active=bool(data.get("is_active", True)),
            id=data.get("id"),
            priority=data.get("priority"),
        )


def position_label(index: int) -> str:
    """Spreadsheet-style letters: 0 -> a, 25 -> z, 26 -> aa."""
    label = ""
    index += 1
    while index:
        index, rem = divmod(index - 1, 26)
        label = chr(ord("a") + rem) + label
    return label


@dataclass
class RuleGroup:
    """Rules combined under one logic, contributing ``weight`` when satisfied.

    Rules added without an ``id`` are named by position: a, b, c...
    """

    name: str
    logic: GroupLogic = GroupLogic.ALL
    rules: list[Rule] = field(default_factory=list)
    min_required: int | None = None
    expression: str | None = None
    weight: float = 1.0
    order: int = 0
    is_active: bool = True
    description: str = ""
    meta: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.logic = GroupLogic.parse(self.logic)
        rules = [r if isinstance(r, Rule) else Rule.from_dict(r) for r in self.rules]
        self.rules = []
        for rule in rules:
            self.add_rule(rule)
        self.weight = float(self.weight)
        if self.weight < 0:
            raise ConfigurationError(f"Group {self.name!r}: weight must not be negative")

    def add_rule(self, rule: Rule) -> "RuleGroup":
        if rule.id is None:
            rule = replace(rule, id=position_label(len(self.rules)))
        self.rules.append(rule)
        return self

    def active_rules(self) -> list[Rule]:
        return sorted((r for r in self.rules if r.is_active), key=lambda r: r.order)

    def rule_ids(self) -> list[str]:
        return [r.rule_id for r in self.rules]

    def validate(self) -> None:
        """Check the logic parameters; raises ConfigurationError."""
        ids = self.rule_ids()
        if len(set(ids)) != len(ids):
            raise ConfigurationError(f"Group {self.name!r}: rule ids must be unique, got {ids}")
        count = len(self.active_rules())
        if self.logic == GroupLogic.MIN:
            if self.min_required is None:
                raise ConfigurationError(f"Group {self.name!r}: 'min' logic requires min_required")
            if not 0 < self.min_required <= count:
                raise ConfigurationError(
                    f"Group {self.name!r}: min_required must be between 1 and {count}, got {self.min_required}"
                )
        elif self.logic == GroupLogic.BOOLEAN:
            if not self.expression or not self.expression.strip():
                raise ConfigurationError(f"Group {self.name!r}: 'boolean' logic requires an expression")
            parsed = BooleanExpression(self.expression)
            unknown = parsed.identifiers - set(self.rule_ids())
            if unknown:
                raise ConfigurationError(
                    f"Group {self.name!r}: expression references unknown rules: {sorted(unknown)}"
                )

    def to_dict(self) -> dict[str, Any]:
        data = {
            "name": self.name,
            "logic": self.logic.value,
            "weight": self.weight,
            "order": self.order,
            "is_active": self.is_active,
            "rules": [r.to_dict() for r in self.rules],
        }
        if self.min_required is not None:
            data["min_required"] = self.min_required
        if self.expression is not None:
            data["expression"] = self.expression
        if self.description:
            data["description"] = self.description
        if self.meta:
            data["meta"] = copy.deepcopy(self.meta)
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RuleGroup":
        if "name" not in data:
            raise ConfigurationError("Rule group missing required field 'name'")
        min_required = data.get("min_required")
        return cls(
            name=data["name"],
            logic=data.get("logic", GroupLogic.ALL),
            rules=[Rule.from_dict(r) for r in data.get("rules", [])],
            min_required=int(min_required) if min_required is not None else None,
            expression=data.get("expression"),
            weight=data.get("weight", 1.0),
            order=int(data.get("order", 0)),
            is_active=bool(data.get("is_active", True)),
            description=data.get("description", ""),
            meta=dict(data.get("meta", {})),
        )


def slugify(text: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "_", text.lower()).strip("_")
    return slug or "criteria"


@dataclass
class Criteria:
    """A named set of rules and groups evaluated together.

    ``pass_threshold`` and ``scoring_method`` override engine settings when
    set. ``group_logic`` (all, any or boolean over group names) adds a
    requirement on group outcomes on top of the score threshold.
    """

    name: str
    slug: str = ""
    description: str = ""
    is_active: bool = True
    pass_threshold: float | None = None
    scoring_method: ScoringMethod | None = None
    type: str | None = None
    group: str | None = None
    category: str | None = None
    tags: list[str] = field(default_factory=list)
    rules: list[Rule] = field(default_factory=list)
    groups: list[RuleGroup] = field(default_factory=list)
    group_logic: GroupLogic | None = None
    group_expression: str | None = None
    decision_thresholds: dict[float, str] = field(default_factory=dict)
    meta: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    workflow: Workflow | None = field(default=None, compare=False, repr=False)

    def __post_init__(self) -> None:
        if not self.slug:
            self.slug = slugify(self.name)
        if self.scoring_method is not None:
            self.scoring_method = ScoringMethod.parse(self.scoring_method)
        if self.group_logic is not None:
            self.group_logic = GroupLogic.parse(self.group_logic)
        self.decision_thresholds = {float(k): str(v) for k, v in self.decision_thresholds.items()}

    # -- Mutation --

    def add_rule(self, rule: Rule) -> "Criteria":
        if self.find_rule(rule.rule_id) is not None:
            raise ConfigurationError(f"Criteria {self.slug!r} already has a rule with id {rule.rule_id!r}")
        self.rules.append(rule)
        return self

    def remove_rule(self, rule_id: str) -> Rule:
        """Remove and return the top-level rule with the given id (or field)."""
        for index, rule in enumerate(self.rules):
            if rule.rule_id == rule_id:
                return self.rules.pop(index)
        raise KeyError(rule_id)

    def add_group(self, group: RuleGroup) -> "Criteria":
        group.validate()
        if any(g.name == group.name for g in self.groups):
            raise ConfigurationError(f"Criteria {self.slug!r} already has a group named {group.name!r}")
        self.groups.append(group)
        return self

    def remove_group(self, name: str) -> RuleGroup:
        for index, group in enumerate(self.groups):
            if group.name == name:
                return self.groups.pop(index)
        raise KeyError(name)

    # -- Queries --

    def active_rules(self) -> list[Rule]:
        return sorted((r for r in self.rules if r.is_active), key=lambda r: r.order)

    def active_groups(self) -> list[RuleGroup]:
        return sorted((g for g in self.groups if g.is_active), key=lambda g: g.order)

    def find_rule(self, rule_id: str) -> Rule | None:
        return next((r for r in self.rules if r.rule_id == rule_id), None)

    def validate(self) -> None:
        """Check every group and the criteria-level settings; raises ConfigurationError."""
        if self.pass_threshold is not None:
            try:
                threshold = float(self.pass_threshold)
            except (TypeError, ValueError):
                raise ConfigurationError(
                    f"Criteria {self.slug!r}: pass_threshold must be a number, got {self.pass_threshold!r}"
                ) from None
            if threshold < 0:
                raise ConfigurationError(f"Criteria {self.slug!r}: pass_threshold must not be negative")
        seen = set()
        for rule in self.rules:
            if rule.rule_id in seen:
                raise ConfigurationError(
                    f"Criteria {self.slug!r}: duplicate rule id {rule.rule_id!r}, give the rules distinct ids"
                )
            seen.add(rule.rule_id)
        names = set()
        for group in self.groups:
            if group.name in names:
                raise ConfigurationError(f"Criteria {self.slug!r}: duplicate group name {group.name!r}")
            names.add(group.name)
            group.validate()
        if self.group_logic in (GroupLogic.MIN, GroupLogic.MAJORITY):
            raise ConfigurationError(
                f"Criteria {self.slug!r}: group_logic must be one of all, any, boolean"
            )
        if self.group_logic == GroupLogic.BOOLEAN:
            if not self.group_expression:
                raise ConfigurationError(f"Criteria {self.slug!r}: 'boolean' group_logic requires group_expression")
            unknown = BooleanExpression(self.group_expression).identifiers - names
            if unknown:
                raise ConfigurationError(
                    f"Criteria {self.slug!r}: group_expression references unknown groups: {sorted(unknown)}"
                )

    def fingerprint(self) -> str:
        """Hash of everything that affects an evaluation outcome."""
        data = self.to_dict()
        for key in ("id", "name", "description", "meta"):
            data.pop(key, None)
        payload = json.dumps(data, sort_keys=True, default=str)
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    # -- Versioning --

    def create_version(self, version: int, description: str = "") -> "CriteriaVersion":
        return CriteriaVersion(
            criteria_id=self.id,
            slug=self.slug,
            name=self.name,
            version=version,
            description=description,
            rules_snapshot=tuple(r.to_dict() for r in self.rules),
            groups_snapshot=tuple(g.to_dict() for g in self.groups),
            settings_snapshot=self._settings_dict(),
        )

    # -- Serialization --

    def _settings_dict(self) -> dict[str, Any]:
        return {
            "pass_threshold": self.pass_threshold,
            "scoring_method": self.scoring_method.value if self.scoring_method else None,
            "group_logic": self.group_logic.value if self.group_logic else None,
            "group_expression": self.group_expression,
            "decision_thresholds": dict(self.decision_thresholds),
        }

    def to_dict(self) -> dict[str, Any]:
        data = {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "description": self.description,
            "is_active": self.is_active,
            "type": self.type,
            "group": self.group,
            "category": self.category,
            "tags": list(self.tags),
            "rules": [r.to_dict() for r in self.rules],
            "groups": [g.to_dict() for g in self.groups],
            "meta": copy.deepcopy(self.meta),
        }
        data.update(self._settings_dict())
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Criteria":
        if "name" not in data:
            raise ConfigurationError("Criteria missing required field 'name'")
        criteria = cls(
            name=data["name"],
            slug=data.get("slug", ""),
            description=data.get("description", ""),
            is_active=bool(data.get("is_active", True)),
            pass_threshold=data.get("pass_threshold"),
            scoring_method=data.get("scoring_method"),
            type=data.get("type"),
            group=data.get("group"),
            category=data.get("category"),
            tags=list(data.get("tags", [])),
            rules=[Rule.from_dict(r) for r in data.get("rules", [])],
            groups=[RuleGroup.from_dict(g) for g in data.get("groups", [])],
            group_logic=data.get("group_logic"),
            group_expression=data.get("group_expression"),
            decision_thresholds=dict(data.get("decision_thresholds") or {}),
            meta=dict(data.get("meta", {})),
        )
        if data.get("id"):
            criteria.id = data["id"]
        criteria.validate()
        return criteria


@dataclass(frozen=True)
class CriteriaVersion:
    """Immutable copy of a criteria's rule set at one point in time."""

    criteria_id: str
    slug: str
    name: str
    version: int
    description: str
    rules_snapshot: tuple[dict[str, Any], ...]
    groups_snapshot: tuple[dict[str, Any], ...] = ()
    settings_snapshot: dict[str, Any] = field(default_factory=dict)
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def rule_count(self) -> int:
        return len(self.rules_snapshot)

    def to_criteria(self) -> Criteria:
        """Rebuild an evaluable Criteria from this version."""
        data = copy.deepcopy(self.settings_snapshot)
        data.update({
            "id": self.criteria_id,
            "name": self.name,
            "slug": self.slug,
            "rules": copy.deepcopy(list(self.rules_snapshot)),
            "groups": copy.deepcopy(list(self.groups_snapshot)),
        })
        return Criteria.from_dict(data)


# -- Builders --

class GroupBuilder:
    """Fluent construction of a RuleGroup inside a CriteriaBuilder."""

    def __init__(self, parent: "CriteriaBuilder", name: str) -> None:
        self._parent = parent
        self._group = RuleGroup(name=name)

    def add_rule(
        self,
        field: str,
        operator: str | Operator,
        value: Any = None,
        weight: float | None = None,
        priority: RulePriority | str = RulePriority.MEDIUM,
        id: str | None = None,
    ) -> "GroupBuilder":
        self._group.add_rule(self._parent._make_rule(field, operator, value, weight, priority, id, 0))
        return self

    def require_all(self) -> "GroupBuilder":
        self._group.logic = GroupLogic.ALL
        return self

    def require_any(self) -> "GroupBuilder":
        self._group.logic = GroupLogic.ANY
        return self

    def require_min(self, count: int) -> "GroupBuilder":
        self._group.logic = GroupLogic.MIN
        self._group.min_required = count
        return self

    def require_majority(self) -> "GroupBuilder":
        self._group.logic = GroupLogic.MAJORITY
        return self

    def require_logic(self, expression: str) -> "GroupBuilder":
        self._group.logic = GroupLogic.BOOLEAN
        self._group.expression = expression
        return self

    def weight(self, weight: float) -> "GroupBuilder":
        if weight < 0:
            raise ConfigurationError(f"Group {self._group.name!r}: weight must not be negative")
        self._group.weight = float(weight)
        return self

    def description(self, text: str) -> "GroupBuilder":
        self._group.description = text
        return self

    def end(self) -> "CriteriaBuilder":
        """Validate the group, attach it, and return to the criteria builder."""
        self._group.order = len(self._parent._criteria.groups)
        self._parent._criteria.add_group(self._group)
        return self._parent


class CriteriaBuilder:
    """Fluent construction of a Criteria.

    Example::

        criteria = (
            CriteriaBuilder("Loan Approval")
            .add_rule("income", ">=", 3000, weight=40)
            .add_rule("credit_score", ">=", 650, weight=60)
            .pass_threshold(65)
            .build()
        )
    """

    def __init__(self, name: str, rule_weights: Mapping[str, float] | None = None) -> None:
        self._criteria = Criteria(name=name)
        self._rule_weights = dict(rule_weights or DEFAULT_RULE_WEIGHTS)
        self._workflow: Workflow | None = None

    def _make_rule(self, field, operator, value, weight, priority, id, order) -> Rule:
        priority = RulePriority(priority) if priority is not None else None
        if weight is None:
            key = priority.value if priority is not None else RulePriority.MEDIUM.value
            weight = self._rule_weights.get(key, DEFAULT_RULE_WEIGHTS[key])
        return Rule(field=field, operator=operator, value=value, weight=weight, order=order, id=id, priority=priority)

    def add_rule(
        self,
        field: str,
        operator: str | Operator,
        value: Any = None,
        weight: float | None = None,
        priority: RulePriority | str = RulePriority.MEDIUM,
        id: str | None = None,
    ) -> "CriteriaBuilder":
        """Add a top-level rule. Without ``weight`` it comes from the priority."""
        order = len(self._criteria.rules)
        self._criteria.add_rule(self._make_rule(field, operator, value, weight, priority, id, order))
        return self

    def add_rules(self, rules: Iterable[Mapping[str, Any]]) -> "CriteriaBuilder":
        for data in rules:
            self.add_rule(
                data["field"],
                data["operator"],
                data.get("value"),
                weight=data.get("weight"),
                priority=data.get("priority", RulePriority.MEDIUM),
                id=data.get("id"),
            )
        return self

    def group(self, name: str) -> GroupBuilder:
        return GroupBuilder(self, name)

    def group_logic(self, logic: GroupLogic | str, expression: str | None = None) -> "CriteriaBuilder":
        self._criteria.group_logic = GroupLogic.parse(logic)
        self._criteria.group_expression = expression
        return self

    def pass_threshold(self, threshold: float) -> "CriteriaBuilder":
        if threshold < 0:
            raise ConfigurationError("Pass threshold must not be negative")
        self._criteria.pass_threshold = float(threshold)
        return self

    def scoring_method(self, method: ScoringMethod | str) -> "CriteriaBuilder":
        self._criteria.scoring_method = ScoringMethod.parse(method)
        return self

    def description(self, text: str) -> "CriteriaBuilder":
        self._criteria.description = text
        return self

    def active(self, is_active: bool = True) -> "CriteriaBuilder":
        self._criteria.is_active = is_active
        return self

    def classify(
        self,
        type: str | None = None,
        group: str | None = None,
        category: str | None = None,
        tags: Iterable[str] | None = None,
    ) -> "CriteriaBuilder":
        if type is not None:
            self._criteria.type = type
        if group is not None:
            self._criteria.group = group
        if category is not None:
            self._criteria.category = category
        if tags is not None:
            self._criteria.tags = list(tags)
        return self

    def decision_thresholds(self, thresholds: Mapping[float, str]) -> "CriteriaBuilder":
        self._criteria.decision_thresholds = {float(k): str(v) for k, v in thresholds.items()}
        return self

    def meta(self, **values: Any) -> "CriteriaBuilder":
        self._criteria.meta.update(values)
        return self

    # -- Workflow callbacks --

    @property
    def workflow(self) -> Workflow:
        if self._workflow is None:
            self._workflow = Workflow()
        return self._workflow

    def on_pass(self, callback: Callable) -> "CriteriaBuilder":
        self.workflow.on("on_pass", callback)
        return self

    def on_fail(self, callback: Callable) -> "CriteriaBuilder":
        self.workflow.on("on_fail", callback)
        return self

    def on_excellent(self, callback: Callable) -> "CriteriaBuilder":
        self.workflow.on("on_excellent", callback)
        return self

    def on_good(self, callback: Callable) -> "CriteriaBuilder":
        self.workflow.on("on_good", callback)
        return self

    def on_score_range(self, low: float, high: float, callback: Callable) -> "CriteriaBuilder":
        self.workflow.on_score_range(low, high, callback)
        return self

    def before_evaluation(self, callback: Callable) -> "CriteriaBuilder":
        self.workflow.on("before_evaluation", callback)
        return self

    def after_evaluation(self, callback: Callable) -> "CriteriaBuilder":
        self.workflow.on("after_evaluation", callback)
        return self

    def build(self) -> Criteria:
        """Validate and return the criteria."""
        self._criteria.validate()
        if self._workflow is not None:
            self._criteria.workflow = self._workflow
        return self._criteria
