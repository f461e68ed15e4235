"""Turn arbitrary source objects into Snapshots."""

import dataclasses
import statistics
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Callable

from .plugin import BUILTIN_DERIVATIONS, Derivation, coerce_datetime, days_between
from .snapshot import Snapshot

# A stage takes the source and the data accumulated so far and returns the new data.
Stage = Callable[[Any, dict[str, Any]], dict[str, Any]]
ComputedField = Callable[[Any, dict[str, Any]], Any]

SCALAR_TYPES = (str, int, float, bool, Decimal, datetime, date)
COMMON_DATE_FIELDS = frozenset({"created_at", "updated_at", "deleted_at", "published_at", "expires_at"})
TIMESTAMP_DERIVATIONS = frozenset({
    "created_days_ago", "created_months_ago", "created_years_ago",
    "account_age_days", "updated_days_ago", "last_activity_days",
})


@dataclass
class ExtractionSettings:
    """Options controlling what an Extractor includes."""

    include_timestamps: bool = True
    include_relationships: bool = True
    include_computed_fields: bool = True
    exclude_sensitive_fields: bool = True
    sensitive_fields: list[str] = field(default_factory=lambda: ["password", "remember_token", "api_token"])
    date_format: str = "%Y-%m-%d %H:%M:%S"
    max_relationship_depth: int = 2
    to_one: list[str] = field(default_factory=list)  # relations expected even when absent
    to_many: list[str] = field(default_factory=list)


def source_fields(source: Any) -> dict[str, Any]:
    """Shallow attribute dict of a mapping, dataclass instance or plain object."""
    if isinstance(source, Snapshot):
        return source.all()
    if isinstance(source, Mapping):
        return dict(source)
    if dataclasses.is_dataclass(source) and not isinstance(source, type):
        return {f.name: getattr(source, f.name) for f in dataclasses.fields(source)}
    if hasattr(source, "__dict__"):
        return {k: v for k, v in vars(source).items() if not k.startswith("_")}
    raise TypeError(f"Cannot extract data from {type(source).__name__!r}")


def _is_record(value: Any) -> bool:
    """True for values treated as a related record rather than a scalar."""
    if isinstance(value, SCALAR_TYPES) or value is None:
        return False
    if isinstance(value, (list, tuple, set)):
        return False
    return isinstance(value, Mapping) or dataclasses.is_dataclass(value) or hasattr(value, "__dict__")


def _is_record_list(value: Any) -> bool:
    return isinstance(value, (list, tuple)) and bool(value) and all(_is_record(v) for v in value)


class Extractor:
    """Builds a Snapshot from a source object through an ordered list of stages.

    Stages, in order:

    1. base attributes (scalars and scalar lists, sensitive fields removed)
    2. built-in and registered derived fields
    3. relationships (nested dicts for single records, aggregates for lists)
    4. field renames
    5. relationship flattening
    6. custom computed fields, which see everything produced before them

    Missing fields and relations never raise. A computed field that raises
    propagates out of ``extract``.
    """

    def __init__(
        self,
        settings: ExtractionSettings | None = None,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.settings = settings or ExtractionSettings()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._field_mappings: dict[str, str] = {}
        self._relationship_mappings: dict[str, dict[str, str]] = {}
        self._computed_fields: dict[str, ComputedField] = {}
        self._derivations: dict[str, Derivation] = dict(BUILTIN_DERIVATIONS)
        self._stages: list[Stage] = [
            self._extract_attributes,
            self._extract_derived,
            self._extract_relationships,
            self._apply_field_mappings,
            self._apply_relationship_mappings,
            self._apply_computed_fields,
        ]

    # -- Configuration --

    def set_field_mappings(self, mappings: Mapping[str, str]) -> "Extractor":
        """Rename fields: ``{"annual_income": "income"}``."""
        self._field_mappings = dict(mappings)
        return self

    def set_relationship_mappings(self, mappings: Mapping[str, Mapping[str, str]]) -> "Extractor":
        """Promote nested relation fields: ``{"profile": {"employment_status": "is_employed"}}``."""
        self._relationship_mappings = {rel: dict(m) for rel, m in mappings.items()}
        return self

    def add_relationship_mapping(self, relation: str, mapping: Mapping[str, str]) -> "Extractor":
        self._relationship_mappings.setdefault(relation, {}).update(mapping)
        return self

    def set_computed_fields(self, fields: Mapping[str, ComputedField]) -> "Extractor":
        self._computed_fields = dict(fields)
        return self

    def add_computed_field(self, name: str, func: ComputedField) -> "Extractor":
        self._computed_fields[name] = func
        return self

    def add_derivation(self, name: str, func: Derivation) -> "Extractor":
        """Register a derived field computed from the source's attributes and the clock."""
        self._derivations[name] = func
        return self

    def add_stage(self, stage: Stage, position: int | None = None) -> "Extractor":
        if position is None:
            self._stages.append(stage)
        else:
            self._stages.insert(position, stage)
        return self

    @property
    def field_mappings(self) -> dict[str, str]:
        return dict(self._field_mappings)

    @property
    def relationship_mappings(self) -> dict[str, dict[str, str]]:
        return {rel: dict(m) for rel, m in self._relationship_mappings.items()}

    @property
    def computed_fields(self) -> dict[str, ComputedField]:
        return dict(self._computed_fields)

    # -- Extraction --

    def extract(self, source: Any, metadata: Mapping[str, Any] | None = None) -> Snapshot:
        data: dict[str, Any] = {}
        for stage in self._stages:
            data = stage(source, data)

        meta = {"source": type(source).__name__}
        key = _source_key(source)
        if key is not None:
            meta["source_key"] = key
        meta.update(metadata or {})
        return Snapshot(dict(sorted(data.items())), meta)

    def _now(self) -> datetime:
        now = self._clock()
        return now if now.tzinfo is not None else now.replace(tzinfo=timezone.utc)

    def _strip_sensitive(self, attrs: dict[str, Any]) -> dict[str, Any]:
        if not self.settings.exclude_sensitive_fields:
            return attrs
        return {k: v for k, v in attrs.items() if k not in self.settings.sensitive_fields}

    def _format_value(self, value: Any) -> Any:
        if isinstance(value, datetime):
            return value.strftime(self.settings.date_format)
        if isinstance(value, (list, tuple)):
            return [self._format_value(v) for v in value]
        return value

    def _plain(self, value: Any, depth: int) -> Any:
        """Convert a record to nested plain dicts, down to ``depth`` levels."""
        if _is_record(value):
            if depth <= 0:
                return None
            attrs = self._strip_sensitive(source_fields(value))
            return {k: self._plain(v, depth - 1) for k, v in attrs.items()}
        if _is_record_list(value):
            if depth <= 0:
                return None
            return [self._plain(v, depth) for v in value]
        return self._format_value(value)

    def _extract_attributes(self, source: Any, data: dict[str, Any]) -> dict[str, Any]:
        attrs = self._strip_sensitive(source_fields(source))
        out = dict(data)
        for key, value in attrs.items():
            if _is_record(value) or _is_record_list(value):
                continue
            out[key] = self._format_value(value)
        return out

    def _extract_derived(self, source: Any, data: dict[str, Any]) -> dict[str, Any]:
        if not self.settings.include_computed_fields:
            return data
        attrs = source_fields(source)
        now = self._now()
        out = dict(data)
        for name, derive in self._derivations.items():
            if name in TIMESTAMP_DERIVATIONS and not self.settings.include_timestamps:
                continue
            value = derive(attrs, now)
            if value is not None:
                out[name] = value
        return out

    def _extract_relationships(self, source: Any, data: dict[str, Any]) -> dict[str, Any]:
        if not self.settings.include_relationships:
            return data
        attrs = self._strip_sensitive(source_fields(source))
        out = dict(data)
        for name in self.settings.to_one:
            out.setdefault(f"{name}_exists", False)
        for name in self.settings.to_many:
            out.setdefault(f"{name}_count", 0)
            out.setdefault(f"{name}_exists", False)

        for name, value in attrs.items():
            if _is_record(value):
                out[name] = self._plain(value, self.settings.max_relationship_depth)
                out[f"{name}_exists"] = True
            elif isinstance(value, (list, tuple)):
                if _is_record_list(value) or name in self.settings.to_many:
                    out.pop(name, None)
                out[f"{name}_count"] = len(value)
                out[f"{name}_exists"] = len(value) > 0
                records = [source_fields(v) for v in value if _is_record(v)]
                out.update(self._summarize(name, records))
        return out

    def _summarize(self, relation: str, records: list[dict[str, Any]]) -> dict[str, Any]:
        """Numeric and date aggregates over a to-many relation."""
        summary: dict[str, Any] = {}
        if not records:
            return summary
        now = self._now()
        keys = list(dict.fromkeys(k for record in records for k in record))
        for key in keys:
            values = [record.get(key) for record in records if record.get(key) is not None]
            if not values:
                continue
            if _is_date_field(key):
                dates = [d for d in (coerce_datetime(v) for v in values) if d is not None]
                if dates:
                    latest, earliest = max(dates), min(dates)
                    summary[f"{relation}_{key}_latest"] = latest.strftime(self.settings.date_format)
                    summary[f"{relation}_{key}_earliest"] = earliest.strftime(self.settings.date_format)
                    summary[f"{relation}_{key}_latest_days_ago"] = days_between(latest, now)
            elif all(isinstance(v, (int, float, Decimal)) and not isinstance(v, bool) for v in values):
                if any(isinstance(v, float) for v in values) and any(isinstance(v, Decimal) for v in values):
                    values = [float(v) for v in values]
                summary[f"{relation}_{key}_sum"] = sum(values)
                summary[f"{relation}_{key}_avg"] = statistics.fmean(values)
                summary[f"{relation}_{key}_min"] = min(values)
                summary[f"{relation}_{key}_max"] = max(values)
        return summary

    def _apply_field_mappings(self, source: Any, data: dict[str, Any]) -> dict[str, Any]:
        out = dict(data)
        for original, renamed in self._field_mappings.items():
            if original in out:
                out[renamed] = out.pop(original)
        return out

    def _apply_relationship_mappings(self, source: Any, data: dict[str, Any]) -> dict[str, Any]:
        out = dict(data)
        for relation, mapping in self._relationship_mappings.items():
            nested = out.get(relation)
            for original, renamed in mapping.items():
                out[renamed] = nested.get(original) if isinstance(nested, Mapping) else None
        return out

    def _apply_computed_fields(self, source: Any, data: dict[str, Any]) -> dict[str, Any]:
        out = dict(data)
        for name, func in self._computed_fields.items():
            out[name] = func(source, out)
        return out


def _is_date_field(key: str) -> bool:
    return key in COMMON_DATE_FIELDS or key.endswith("_at") or key.endswith("_date")


def _source_key(source: Any) -> Any:
    fields = source if isinstance(source, Mapping) else getattr(source, "__dict__", {})
    for key in ("id", "pk", "key"):
        value = fields.get(key) if isinstance(fields, Mapping) else None
        if isinstance(value, (str, int)) and not isinstance(value, bool):
            return value
    return None
