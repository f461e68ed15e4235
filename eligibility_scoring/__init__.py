"""eligibility-scoring: Evaluate subject data against configurable eligibility criteria."""

from .criteria import Criteria, CriteriaBuilder, CriteriaVersion, GroupLogic, Rule, RuleGroup, RulePriority
from .engine import EligibilityEngine
from .exceptions import (
    ConfigurationError,
    CriteriaNotFoundError,
    EligibilityError,
    ImmutableSnapshotError,
    VersionNotFoundError,
)
from .extractor import ExtractionSettings, Extractor
from .mapping import MappingRegistry, ModelMapping
from .models import BatchResult, EvaluationResult, GroupResult, RuleResult, SummaryStats
from .operators import FieldType, Operator
from .scorer import ScoringMethod
from .service import Eligify
from .snapshot import Snapshot
from .stats import summarize

__all__ = [
    "EligibilityEngine",
    "Eligify",
    "Criteria",
    "CriteriaBuilder",
    "CriteriaVersion",
    "Rule",
    "RuleGroup",
    "GroupLogic",
    "RulePriority",
    "Operator",
    "FieldType",
    "ScoringMethod",
    "Snapshot",
    "Extractor",
    "ExtractionSettings",
    "ModelMapping",
    "MappingRegistry",
    "RuleResult",
    "GroupResult",
    "EvaluationResult",
    "BatchResult",
    "SummaryStats",
    "summarize",
    "EligibilityError",
    "ConfigurationError",
    "ImmutableSnapshotError",
    "CriteriaNotFoundError",
    "VersionNotFoundError",
]
