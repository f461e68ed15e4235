"""Reusable extraction mappings for source types."""

from collections.abc import Mapping
from types import MappingProxyType
from typing import Any, Callable

from .extractor import ComputedField, ExtractionSettings, Extractor
from .plugin import Derivation


class ModelMapping:
    """Declares how one kind of source object is extracted.

    Subclasses override the class attributes. ``related_mappings`` maps a
    relation name to another mapping whose ``field_mappings`` are reused to
    flatten that relation, so one mapping composes another.

    Example::

        class ProfileMapping(ModelMapping):
            field_mappings = {"employment_status": "employed"}

        class UserMapping(ModelMapping):
            prefix = "user"
            field_mappings = {"annual_income": "income"}
            related_mappings = {"profile": ProfileMapping()}
    """

    name: str = ""
    description: str = ""
    prefix: str | None = None
    # read-only defaults; subclasses assign their own dicts
    field_mappings: Mapping[str, str] = MappingProxyType({})
    relationship_mappings: Mapping[str, Mapping[str, str]] = MappingProxyType({})
    related_mappings: Mapping[str, "ModelMapping"] = MappingProxyType({})
    field_types: Mapping[str, str] = MappingProxyType({})
    field_descriptions: Mapping[str, str] = MappingProxyType({})

    def computed_fields(self) -> dict[str, ComputedField]:
        """Custom computed fields, as ``{name: func(source, data)}``."""
        return {}

    def get_name(self) -> str:
        return self.name or type(self).__name__

    def get_prefix(self) -> str:
        if self.prefix is not None:
            return self.prefix
        base = type(self).__name__.removesuffix("Mapping")
        return "".join(f"_{c.lower()}" if c.isupper() else c for c in base).lstrip("_")

    def combined_relationship_mappings(self) -> dict[str, dict[str, str]]:
        combined: dict[str, dict[str, str]] = {}
        for relation, mapping in self.related_mappings.items():
            combined.setdefault(relation, {}).update(mapping.field_mappings)
        for relation, mapping in self.relationship_mappings.items():
            combined.setdefault(relation, {}).update(mapping)
        return combined

    def configure(self, extractor: Extractor) -> Extractor:
        if self.field_mappings:
            extractor.set_field_mappings(self.field_mappings)
        relationships = self.combined_relationship_mappings()
        if relationships:
            extractor.set_relationship_mappings(relationships)
        computed = self.computed_fields()
        if computed:
            extractor.set_computed_fields(computed)
        return extractor

    def available_fields(self) -> dict[str, dict[str, Any]]:
        """Describe the fields this mapping produces, attributes first."""
        fields: dict[str, dict[str, Any]] = {}
        for original, mapped in self.field_mappings.items():
            fields[mapped] = {
                "original": original,
                "type": self.field_types.get(mapped, self.field_types.get(original, "string")),
                "description": self.field_descriptions.get(mapped, f"Field: {mapped}"),
                "category": "attribute",
            }
        for name in self.computed_fields():
            fields.setdefault(name, {
                "type": self.field_types.get(name, "mixed"),
                "description": self.field_descriptions.get(name, f"Computed: {name}"),
                "category": "computed",
            })
        for relation, mapping in self.combined_relationship_mappings().items():
            for original, mapped in mapping.items():
                fields.setdefault(mapped, {
                    "original": f"{relation}.{original}",
                    "type": self.field_types.get(mapped, "mixed"),
                    "description": self.field_descriptions.get(mapped, f"Relationship: {relation}.{original}"),
                    "category": "relationship",
                })
        return fields


class MappingRegistry:
    """Maps source types to the ModelMapping used to extract them."""

    def __init__(
        self,
        settings: ExtractionSettings | None = None,
        default: ModelMapping | None = None,
        derivations: dict[str, Derivation] | None = None,
    ) -> None:
        self._settings = settings
        self._derivations = dict(derivations or {})
        self._default = default
        self._mappings: dict[type, ModelMapping] = {}

    def register(self, source_type: type, mapping: ModelMapping) -> None:
        self._mappings[source_type] = mapping

    def unregister(self, source_type: type) -> None:
        self._mappings.pop(source_type, None)

    def get(self, source_type: type) -> ModelMapping | None:
        """Find the mapping for ``source_type`` or its nearest registered base class."""
        for klass in getattr(source_type, "__mro__", (source_type,)):
            if klass in self._mappings:
                return self._mappings[klass]
        return self._default

    def registered(self) -> dict[type, ModelMapping]:
        return dict(self._mappings)

    def extractor_for(self, source: Any, clock: Callable | None = None) -> Extractor:
        """Build an extractor configured for ``source``'s type."""
        extractor = Extractor(self._settings, clock=clock)
        for name, func in self._derivations.items():
            extractor.add_derivation(name, func)
        mapping = self.get(type(source))
        if mapping is not None:
            mapping.configure(extractor)
        return extractor
