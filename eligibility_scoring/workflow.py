"""Synchronous callbacks fired around an evaluation."""

import logging
from typing import Any, Callable

from .models import EvaluationResult

logger = logging.getLogger(__name__)

EVENTS = ("before_evaluation", "after_evaluation", "on_pass", "on_fail", "on_excellent", "on_good")

Callback = Callable[..., Any]


class Workflow:
    """Holds callbacks for one criteria and dispatches them in registration order.

    ``before_evaluation`` callbacks receive ``(criteria, snapshot)``. Every other
    callback receives ``(result, snapshot)``. A callback that raises is logged
    and skipped unless ``fail_on_callback_error`` is set.
    """

    def __init__(
        self,
        *,
        fail_on_callback_error: bool = False,
        excellent_threshold: float = 90.0,
        good_threshold: float = 80.0,
    ) -> None:
        self.fail_on_callback_error = fail_on_callback_error
        self.excellent_threshold = excellent_threshold
        self.good_threshold = good_threshold
        self._callbacks: dict[str, list[Callback]] = {event: [] for event in EVENTS}
        self._conditions: list[tuple[Callable[[EvaluationResult], bool], Callback]] = []

    def on(self, event: str, callback: Callback) -> "Workflow":
        if event not in self._callbacks:
            raise ValueError(f"Unknown workflow event {event!r}. Must be one of: {', '.join(EVENTS)}")
        self._callbacks[event].append(callback)
        return self

    def on_condition(self, predicate: Callable[[EvaluationResult], bool], callback: Callback) -> "Workflow":
        """Fire ``callback`` after evaluation whenever ``predicate(result)`` holds."""
        self._conditions.append((predicate, callback))
        return self

    def on_score_range(self, low: float, high: float, callback: Callback) -> "Workflow":
        """Fire ``callback`` when ``low <= score <= high``."""
        return self.on_condition(lambda result: low <= result.score <= high, callback)

    def has_callbacks(self) -> bool:
        return bool(self._conditions) or any(self._callbacks.values())

    def callback_count(self, event: str | None = None) -> int:
        if event is not None:
            return len(self._callbacks.get(event, []))
        return sum(len(c) for c in self._callbacks.values()) + len(self._conditions)

    # -- Dispatch --

    def before(self, criteria: Any, snapshot: Any) -> None:
        self._fire("before_evaluation", self._callbacks["before_evaluation"], criteria, snapshot)

    def after(self, result: EvaluationResult, snapshot: Any) -> None:
        """Fire post-evaluation callbacks for ``result``."""
        self._fire("after_evaluation", self._callbacks["after_evaluation"], result, snapshot)

        outcome = "on_pass" if result.passed else "on_fail"
        self._fire(outcome, self._callbacks[outcome], result, snapshot)

        if result.passed and result.score >= self.excellent_threshold:
            self._fire("on_excellent", self._callbacks["on_excellent"], result, snapshot)
        elif result.passed and result.score >= self.good_threshold:
            self._fire("on_good", self._callbacks["on_good"], result, snapshot)

        matching = [callback for predicate, callback in self._conditions if predicate(result)]
        self._fire("on_condition", matching, result, snapshot)

    def _fire(self, event: str, callbacks: list[Callback], *args: Any) -> None:
        for callback in callbacks:
            try:
                callback(*args)
            except Exception:
                if self.fail_on_callback_error:
                    raise
                logger.error("Workflow callback for %s failed", event, exc_info=True)
