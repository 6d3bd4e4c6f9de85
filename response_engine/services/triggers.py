"""
Weighted trigger evaluation: decides which workflows respond to an incident.

Scoring
-------
For every workflow, each trigger condition is a predicate over the
incident carrying a weight in [0, 1]::

    score     = sum(weight for matching conditions)
    max_score = sum(weight for all conditions)
    triggered = score >= threshold * max_score     (threshold defaults to 0.5)

With conditions ``category == malware (1.0)`` and ``severity > medium (0.7)``
a *critical* malware incident scores 1.7/1.7 and a *low* malware incident
still scores 1.0/1.7 ≈ 59 %, so both trigger.

Ranking
-------
Triggered workflows are ordered by priority (critical first), then by the
shorter estimated duration, then by workflow id.  The ordering is total, so
identical inputs always produce identical output.

Extending
---------
Predicates are looked up by condition type in a ``PredicateRegistry``.
A new condition type is a function ``(condition, incident) -> bool``
registered under its name; the evaluator itself does not change.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional

from response_engine.models.incident import Incident, severity_rank
from response_engine.models.workflow import (
    ConditionOperator,
    ConditionType,
    TriggerCondition,
    Workflow,
)
from response_engine.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_TRIGGER_THRESHOLD: float = 0.5

Predicate = Callable[[TriggerCondition, Incident], bool]


# ---------------------------------------------------------------------------
# Predicate building blocks
# ---------------------------------------------------------------------------


def _regex_search(pattern: str, text: str) -> bool:
    try:
        return re.search(pattern, text, re.IGNORECASE) is not None
    except re.error as exc:
        logger.warning("trigger_regex_invalid", pattern=pattern, error=str(exc))
        return False


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def compare_text(operator: ConditionOperator, actual: Any, expected: Any) -> bool:
    """Shared string semantics for category-like attributes.

    equals is exact, contains is a case-insensitive substring test,
    matches_regex is a case-insensitive search, and the ordering operators
    apply only when both sides are numeric.
    """
    if actual is None:
        return False
    if operator == ConditionOperator.EQUALS:
        if isinstance(actual, str) and isinstance(expected, str):
            return actual == expected
        left, right = _as_number(actual), _as_number(expected)
        if left is not None and right is not None:
            return left == right
        return str(actual) == str(expected)
    if operator == ConditionOperator.CONTAINS:
        return str(expected).lower() in str(actual).lower()
    if operator == ConditionOperator.MATCHES_REGEX:
        return _regex_search(str(expected), str(actual))
    left, right = _as_number(actual), _as_number(expected)
    if left is None or right is None:
        return False
    if operator == ConditionOperator.GREATER_THAN:
        return left > right
    if operator == ConditionOperator.LESS_THAN:
        return left < right
    return False


def severity_predicate(condition: TriggerCondition, incident: Incident) -> bool:
    actual = severity_rank(incident.severity)
    expected = severity_rank(condition.value)
    if actual is None or expected is None:
        return False
    if condition.operator == ConditionOperator.EQUALS:
        return actual == expected
    if condition.operator == ConditionOperator.GREATER_THAN:
        return actual > expected
    if condition.operator == ConditionOperator.LESS_THAN:
        return actual < expected
    return False


def keyword_predicate(condition: TriggerCondition, incident: Incident) -> bool:
    text = incident.search_text()
    if condition.operator == ConditionOperator.CONTAINS:
        return str(condition.value).lower() in text
    if condition.operator == ConditionOperator.MATCHES_REGEX:
        return _regex_search(str(condition.value), text)
    return False


def attribute_predicate(getter: Callable[[Incident], Any]) -> Predicate:
    """Build a predicate applying ``compare_text`` to one incident attribute."""

    def predicate(condition: TriggerCondition, incident: Incident) -> bool:
        return compare_text(condition.operator, getter(incident), condition.value)

    return predicate


def _metadata_field(key: str) -> Callable[[Incident], Any]:
    def getter(incident: Incident) -> Any:
        value = incident.metadata.get(key)
        if isinstance(value, (dict, list)):
            return json.dumps(value, sort_keys=True, default=str)
        return value

    return getter


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class PredicateRegistry:
    """Maps condition type → predicate."""

    def __init__(self, predicates: Optional[Dict[str, Predicate]] = None) -> None:
        self._predicates: Dict[str, Predicate] = dict(predicates or {})

    @classmethod
    def default(cls) -> "PredicateRegistry":
        return cls(
            {
                ConditionType.SEVERITY.value: severity_predicate,
                ConditionType.CATEGORY.value: attribute_predicate(lambda i: i.category),
                ConditionType.KEYWORD.value: keyword_predicate,
                ConditionType.SOURCE.value: attribute_predicate(lambda i: i.source),
                ConditionType.CORRELATION.value: attribute_predicate(
                    _metadata_field("correlation_id")
                ),
                ConditionType.TIME_BASED.value: attribute_predicate(_metadata_field("time_window")),
            }
        )

    def register(self, condition_type: str, predicate: Predicate) -> None:
        self._predicates[condition_type] = predicate

    def get(self, condition_type: str) -> Optional[Predicate]:
        return self._predicates.get(condition_type)

    def __contains__(self, condition_type: str) -> bool:
        return condition_type in self._predicates


# ---------------------------------------------------------------------------
# Evaluator
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TriggerScore:
    workflow_id: str
    score: float
    max_score: float
    matched: bool
    matched_conditions: tuple

    @property
    def ratio(self) -> float:
        return self.score / self.max_score if self.max_score > 0 else 0.0


def rank_key(workflow: Workflow) -> tuple:
    return (-workflow.priority.rank, workflow.estimated_duration, workflow.id)


class TriggerEvaluator:
    """Scores incidents against workflow trigger conditions."""

    def __init__(
        self,
        predicates: Optional[PredicateRegistry] = None,
        threshold: float = DEFAULT_TRIGGER_THRESHOLD,
    ) -> None:
        if not 0.0 < threshold <= 1.0:
            raise ValueError(f"threshold must be in (0, 1], got {threshold}")
        self.predicates = predicates or PredicateRegistry.default()
        self.threshold = threshold

    def condition_matches(self, condition: TriggerCondition, incident: Incident) -> bool:
        predicate = self.predicates.get(condition.type)
        if predicate is None:
            return False
        return predicate(condition, incident)

    def score(self, incident: Incident, workflow: Workflow) -> TriggerScore:
        score = 0.0
        max_score = 0.0
        matched_conditions = []
        for index, condition in enumerate(workflow.trigger_conditions):
            max_score += condition.weight
            if self.condition_matches(condition, incident):
                score += condition.weight
                matched_conditions.append(index)
        matched = max_score > 0 and score >= self.threshold * max_score
        return TriggerScore(
            workflow_id=workflow.id,
            score=score,
            max_score=max_score,
            matched=matched,
            matched_conditions=tuple(matched_conditions),
        )

    def evaluate(self, incident: Incident, workflows: Iterable[Workflow]) -> List[Workflow]:
        """Triggered workflows, best first. An empty list is a normal outcome."""
        return [wf for wf, _ in self.evaluate_scored(incident, workflows)]

    def evaluate_scored(self, incident: Incident, workflows: Iterable[Workflow]) -> list:
        triggered = []
        for workflow in workflows:
            if not workflow.active:
                continue
            result = self.score(incident, workflow)
            if result.matched:
                triggered.append((workflow, result))
        triggered.sort(key=lambda pair: rank_key(pair[0]))
        logger.info(
            "triggers_evaluated",
            incident_id=incident.id,
            triggered=[wf.id for wf, _ in triggered],
        )
        return triggered
