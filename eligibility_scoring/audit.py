"""Audit trail of criteria changes and evaluations."""

import copy
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable, Mapping

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuditEntry:
    """One recorded event with explicit before and after state."""

    event: str
    criteria: str | None
    before: dict[str, Any] | None = None
    after: dict[str, Any] | None = None
    context: dict[str, Any] = field(default_factory=dict)
    recorded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class AuditLogger:
    """Records AuditEntry objects for the configured events.

    Callers pass both the previous and the new state; the logger keeps no
    memory of object attributes between calls.
    """

    def __init__(
        self,
        events: Iterable[str] | None = None,
        *,
        enabled: bool = True,
        include_sensitive_data: bool = False,
        sensitive_fields: Iterable[str] = ("password", "remember_token", "api_token"),
        clock: Callable[[], datetime] | None = None,
        retention_days: int | None = None,
    ) -> None:
        self.events = set(events) if events is not None else None
        self.enabled = enabled
        self.include_sensitive_data = include_sensitive_data
        self.sensitive_fields = frozenset(sensitive_fields)
        self.retention_days = retention_days
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._entries: list[AuditEntry] = []

    def should_record(self, event: str) -> bool:
        return self.enabled and (self.events is None or event in self.events)

    def record(
        self,
        event: str,
        criteria: str | None = None,
        *,
        before: Mapping[str, Any] | None = None,
        after: Mapping[str, Any] | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> AuditEntry | None:
        """Record ``event`` if it is enabled; returns the entry or None."""
        if not self.should_record(event):
            return None
        entry = AuditEntry(
            event=event,
            criteria=criteria,
            before=self._clean(before),
            after=self._clean(after),
            context=self._clean(context) or {},
            recorded_at=self._clock(),
        )
        self._entries.append(entry)
        logger.info("audit %s criteria=%s", event, criteria)
        if self.retention_days is not None:
            self.cleanup()
        return entry

    def _clean(self, data: Mapping[str, Any] | None) -> dict[str, Any] | None:
        if data is None:
            return None
        data = copy.deepcopy(dict(data))
        if self.include_sensitive_data:
            return data
        return _strip(data, self.sensitive_fields)

    def entries(self, event: str | None = None, criteria: str | None = None) -> list[AuditEntry]:
        return [
            e for e in self._entries
            if (event is None or e.event == event) and (criteria is None or e.criteria == criteria)
        ]

    def cleanup(self, retention_days: int | None = None) -> int:
        """Drop entries older than ``retention_days`` (or the configured retention); returns the count."""
        if retention_days is None:
            retention_days = self.retention_days
        if retention_days is None:
            return 0
        cutoff = self._clock() - timedelta(days=retention_days)
        kept = [e for e in self._entries if e.recorded_at >= cutoff]
        removed = len(self._entries) - len(kept)
        self._entries = kept
        if removed:
            logger.info("audit cleanup removed %d entries", removed)
        return removed

    def __len__(self) -> int:
        return len(self._entries)


def _strip(value: Any, sensitive: frozenset[str]) -> Any:
    if isinstance(value, dict):
        return {k: _strip(v, sensitive) for k, v in value.items() if k not in sensitive}
    if isinstance(value, list):
        return [_strip(v, sensitive) for v in value]
    return value
