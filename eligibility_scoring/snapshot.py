"""Immutable, dot-addressable view of extracted subject data."""

import copy
import hashlib
import json
import re
from collections.abc import Iterator, Mapping
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable

from .exceptions import ImmutableSnapshotError

_MISSING = object()


class Snapshot(Mapping):
    """Point-in-time key/value data used as evaluation input.

    Keys are strings. Values are scalars, lists, None, or nested dicts (for
    one-to-one relations), and every nested value is reachable with a dotted
    path such as ``"profile.employment_status"`` or ``"loans.0.amount"``.

    A Snapshot is never modified. Every transformation (``only``, ``except_``,
    ``filter``, ``transform``, ``merge``, ...) returns a new instance and
    leaves the original untouched.
    """

    __slots__ = ("_data", "_metadata")

    def __init__(self, data: Mapping[str, Any] | None = None, metadata: Mapping[str, Any] | None = None) -> None:
        frozen = copy.deepcopy(dict(data or {}))
        meta = {"captured_at": datetime.now(timezone.utc).isoformat()}
        meta.update(metadata or {})
        meta["field_count"] = len(frozen)
        object.__setattr__(self, "_data", frozen)
        object.__setattr__(self, "_metadata", meta)

    # -- Lookup --

    def get(self, key: str, default: Any = None) -> Any:
        """Return the value at ``key`` (a plain key or a dotted path)."""
        value = self._lookup(key)
        return default if value is _MISSING else _detached(value)

    def has(self, key: str) -> bool:
        """Check whether ``key`` (a plain key or a dotted path) is present."""
        return self._lookup(key) is not _MISSING

    def _lookup(self, key: str) -> Any:
        if key in self._data:
            return self._data[key]
        if "." not in key:
            return _MISSING
        return _traverse(self._data, key)

    # -- Mapping protocol --

    def __getitem__(self, key: str) -> Any:
        value = self._lookup(key)
        if value is _MISSING:
            raise KeyError(key)
        return _detached(value)

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.has(key)

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        return self.get(name)

    # -- Immutability --

    def __setitem__(self, key: str, value: Any) -> None:
        raise ImmutableSnapshotError(
            "Snapshot is immutable. Use merge() or transform() to create a new snapshot with changes."
        )

    def __delitem__(self, key: str) -> None:
        raise ImmutableSnapshotError(
            "Snapshot is immutable. Use except_() to create a new snapshot without specific keys."
        )

    def __setattr__(self, name: str, value: Any) -> None:
        raise ImmutableSnapshotError(
            "Snapshot is immutable. Use merge() or transform() to create a new snapshot with changes."
        )

    def __delattr__(self, name: str) -> None:
        raise ImmutableSnapshotError(
            "Snapshot is immutable. Use except_() to create a new snapshot without specific keys."
        )

    # -- Transformations --

    def only(self, keys: list[str]) -> "Snapshot":
        """Return a snapshot restricted to the given top-level keys."""
        return self._derive({k: v for k, v in self._data.items() if k in keys})

    def except_(self, keys: list[str]) -> "Snapshot":
        """Return a snapshot without the given top-level keys."""
        return self._derive({k: v for k, v in self._data.items() if k not in keys})

    def filter(self, callback: Callable[[Any, str], bool]) -> "Snapshot":
        """Keep entries for which ``callback(value, key)`` is truthy."""
        return self._derive({k: v for k, v in self.all().items() if callback(v, k)})

    def transform(self, callback: Callable[[Any, str], Any]) -> "Snapshot":
        """Replace every value with ``callback(value, key)``."""
        return self._derive({k: callback(v, k) for k, v in self.all().items()})

    def merge(self, data: Mapping[str, Any]) -> "Snapshot":
        """Return a snapshot with ``data`` laid over the current entries."""
        merged = dict(self._data)
        merged.update(data)
        return self._derive(merged)

    def where_key_matches(self, pattern: str) -> "Snapshot":
        """Keep entries whose key matches the regular expression ``pattern``."""
        compiled = re.compile(pattern)
        return self._derive({k: v for k, v in self._data.items() if compiled.search(k)})

    def numeric_fields(self) -> "Snapshot":
        return self.filter(lambda v, _k: isinstance(v, (int, float, Decimal)) and not isinstance(v, bool))

    def string_fields(self) -> "Snapshot":
        return self.filter(lambda v, _k: isinstance(v, str))

    def boolean_fields(self) -> "Snapshot":
        return self.filter(lambda v, _k: isinstance(v, bool))

    def _derive(self, data: dict[str, Any]) -> "Snapshot":
        return Snapshot(data, self._metadata)

    # -- Export --

    @property
    def metadata(self) -> dict[str, Any]:
        return dict(self._metadata)

    def all(self) -> dict[str, Any]:
        """Return a deep copy of the data."""
        return copy.deepcopy(self._data)

    to_dict = all

    def to_json(self, indent: int | None = None) -> str:
        return json.dumps({"data": self._data, "metadata": self._metadata}, indent=indent, default=str)

    def fingerprint(self) -> str:
        """Stable hash of the data, independent of capture metadata."""
        payload = json.dumps(self._data, sort_keys=True, default=str)
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Snapshot):
            return self._data == other._data
        if isinstance(other, Mapping):
            return self._data == dict(other)
        return NotImplemented

    __hash__ = None

    def __repr__(self) -> str:
        return f"Snapshot({self._data!r}, field_count={len(self._data)})"

    def __copy__(self) -> "Snapshot":
        return self

    def __deepcopy__(self, memo: dict) -> "Snapshot":
        return self

    def __reduce__(self):
        return (Snapshot, (self._data, self._metadata))


def _traverse(obj: Any, path: str) -> Any:
    """Walk a dotted path through nested dicts and lists."""
    for segment in path.split("."):
        if isinstance(obj, Mapping):
            if segment not in obj:
                return _MISSING
            obj = obj[segment]
        elif isinstance(obj, (list, tuple)) and segment.isdigit():
            index = int(segment)
            if index >= len(obj):
                return _MISSING
            obj = obj[index]
        else:
            return _MISSING
    return obj


def _detached(value: Any) -> Any:
    """Nested containers are handed out as copies so callers cannot alter the snapshot."""
    if isinstance(value, (dict, list)):
        return copy.deepcopy(value)
    return value
