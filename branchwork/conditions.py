"""Condition evaluation.

A condition tree is a list of nodes joined with AND. Each node is either a
leaf `{type, operator, key, value}` or a group `{logic, conditions}`:

    [{"type": "stat", "operator": "gte", "key": "gold", "value": 10},
     {"logic": "OR", "conditions": [
         {"type": "flag", "operator": "eq", "key": "metGuard", "value": true},
         {"type": "has_item", "operator": "eq", "key": "pass", "value": true}]}]

Anything the evaluator cannot make sense of (an unknown type, operator or
logic, incomparable operands, a bad regex) evaluates to False. Nothing here
raises during play.

Results are memoised per condition. The memo is only valid for one state of
the world, so every lookup first compares four counters (stat version,
inventory version, visited count, history length) against the ones the cache
was filled under and drops the whole cache when any differs. Scene revisits
don't move any counter, so the engine calls `clear_cache()` on navigation.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from branchwork.inventory import InventoryStore
from branchwork.models import (
    LEAF_CONDITION_TYPES,
    LOGIC_OPERATORS,
    ChoiceRecord,
    ConditionGroup,
    LeafCondition,
    UnknownCondition,
)
from branchwork.stats import StatStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_CACHE_SIZE = 1000

OPERATORS: dict[str, str] = {
    "eq": "eq", "==": "eq",
    "ne": "ne", "!=": "ne",
    "gt": "gt", ">": "gt",
    "gte": "gte", ">=": "gte",
    "lt": "lt", "<": "lt",
    "lte": "lte", "<=": "lte",
    "contains": "contains",
    "not_contains": "not_contains",
    "starts_with": "starts_with",
    "ends_with": "ends_with",
    "matches": "matches",
    "in": "in",
    "not_in": "not_in",
    "between": "between",
    "not_between": "not_between",
}

# Leaf types that do not need a key.
KEYLESS_TYPES = {
    "total_choices", "unique_scenes_visited",
    "inventory_total", "inventory_weight", "inventory_value",
}

# Leaf types that resolve to a bool; a missing value means "is true".
BOOLEAN_TYPES = {"flag", "scene_visited", "has_item", "choice_made"}


@dataclass
class PlayHistory:
    """The parts of a playthrough that conditions can read besides the stores."""

    visited_scenes: list[str] = field(default_factory=list)
    choice_history: list[ChoiceRecord] = field(default_factory=list)
    scene_visit_counts: dict[str, int] = field(default_factory=dict)


class ConditionEvaluator:
    def __init__(
        self,
        stats: StatStore,
        inventory: InventoryStore,
        history: PlayHistory,
        *,
        max_cache_size: int = DEFAULT_MAX_CACHE_SIZE,
    ) -> None:
        self.stats = stats
        self.inventory = inventory
        self.history = history
        self.max_cache_size = max_cache_size
        self._cache: dict[tuple, bool] = {}
        self._stamp: tuple[int, int, int, int] | None = None
        self._hits = 0
        self._misses = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def evaluate(self, condition: Any) -> bool:
        if condition is None:
            return True

        stamp = self._current_stamp()
        if stamp != self._stamp:
            self._cache.clear()
            self._stamp = stamp

        key = (_serialize(condition), *stamp)
        cached = self._cache.get(key)
        if cached is not None:
            self._hits += 1
            return cached

        self._misses += 1
        result = self._evaluate(condition)
        self._cache[key] = result
        if len(self._cache) > self.max_cache_size:
            self._trim()
        return result

    def evaluate_all(self, conditions: Iterable[Any] | None) -> bool:
        """AND over a condition list. An empty list holds."""
        return all(self.evaluate(c) for c in conditions or ())

    def clear_cache(self) -> None:
        self._cache.clear()
        self._stamp = None

    def cache_stats(self) -> dict[str, Any]:
        total = self._hits + self._misses
        return {
            "hits": self._hits,
            "misses": self._misses,
            "total": total,
            "hit_rate": round(self._hits / total * 100, 2) if total else 0.0,
            "size": len(self._cache),
            "max_size": self.max_cache_size,
        }

    def reset_stats(self) -> None:
        self._hits = 0
        self._misses = 0

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def _evaluate(self, condition: Any) -> bool:
        if isinstance(condition, ConditionGroup):
            return self._evaluate_group(condition)
        if isinstance(condition, UnknownCondition):
            logger.warning("Unknown condition type %r", condition.type)
            return False
        if not isinstance(condition, LeafCondition):
            logger.warning("Not a condition: %r", condition)
            return False

        resolved = self._resolve(condition)
        if resolved is None:
            return False
        current, target = resolved
        return compare(current, condition.operator, target)

    def _evaluate_group(self, group: ConditionGroup) -> bool:
        if not group.conditions:
            return True

        logic = (group.logic or "AND").upper()
        if logic not in LOGIC_OPERATORS:
            logger.warning("Unknown logic operator %r", group.logic)
            return False

        results = [self._evaluate(c) for c in group.conditions]
        if logic == "AND":
            return all(results)
        if logic == "OR":
            return any(results)
        if logic in ("NOT", "NOR"):
            return not any(results)
        if logic == "XOR":
            return results.count(True) == 1
        return not all(results)  # NAND

    def _resolve(self, condition: LeafCondition) -> tuple[Any, Any] | None:
        """Return (current, target) for a leaf, or None when it can't be resolved."""
        kind = condition.type
        key = condition.key
        target = condition.value
        if target is None and kind in BOOLEAN_TYPES:
            target = True

        history = self.history
        if kind == "stat":
            current = self.stats.get_stat(key)
        elif kind == "flag":
            current = self.stats.has_flag(key)
        elif kind == "scene_visited":
            current = key in history.visited_scenes
        elif kind == "has_item":
            current = self.inventory.has_item(key)
        elif kind == "item_count":
            current = self.inventory.get_item_count(key)
        elif kind == "inventory_category":
            current = self.inventory.category_count(key)
        elif kind == "inventory_total":
            current = self.inventory.total_count()
        elif kind == "inventory_weight":
            current = self.inventory.total_weight()
        elif kind == "inventory_value":
            current = self.inventory.total_value()
        elif kind == "choice_made":
            if isinstance(condition.value, str):
                # {key: scene, value: choice}: was that choice made in that scene?
                current = any(
                    r.scene_id == key and r.choice_id == condition.value
                    for r in history.choice_history
                )
                target = True
            else:
                current = any(r.choice_id == key for r in history.choice_history)
        elif kind == "choice_made_count":
            current = sum(
                1 for r in history.choice_history
                if r.scene_id == key
                and (condition.choice_id is None or r.choice_id == condition.choice_id)
            )
        elif kind == "scene_visit_count":
            current = history.scene_visit_counts.get(key, 0)
        elif kind == "total_choices":
            current = len(history.choice_history)
        elif kind == "unique_scenes_visited":
            current = len(history.visited_scenes)
        else:
            logger.warning("Unknown condition type %r", kind)
            return None
        return current, target

    # ------------------------------------------------------------------
    # Cache internals
    # ------------------------------------------------------------------

    def _current_stamp(self) -> tuple[int, int, int, int]:
        return (
            self.stats.version,
            self.inventory.version,
            len(self.history.visited_scenes),
            len(self.history.choice_history),
        )

    def _trim(self) -> None:
        """Keep the most recently inserted half."""
        excess = len(self._cache) - self.max_cache_size // 2
        for key in list(self._cache)[:excess]:
            del self._cache[key]
        logger.debug("Condition cache trimmed to %d entries", len(self._cache))


def _serialize(condition: Any) -> str:
    if hasattr(condition, "model_dump"):
        return json.dumps(condition.model_dump(mode="json"), sort_keys=True, default=str)
    return json.dumps(condition, sort_keys=True, default=str)


# ── Comparison ───────────────────────────────────────────


def compare(current: Any, operator: str | None, target: Any) -> bool:
    """Apply a condition operator. Unknown operators and type errors give False."""
    op = OPERATORS.get(operator) if operator is not None else None
    if op is None:
        logger.warning("Unknown condition operator %r", operator)
        return False

    try:
        if op == "eq":
            return current == target
        if op == "ne":
            return current != target
        if op == "gt":
            return current > target
        if op == "gte":
            return current >= target
        if op == "lt":
            return current < target
        if op == "lte":
            return current <= target
        if op == "between":
            if isinstance(target, list) and len(target) == 2:
                return target[0] <= current <= target[1]
            return False
        if op == "not_between":
            if isinstance(target, list) and len(target) == 2:
                return current < target[0] or current > target[1]
            return True
    except TypeError:
        logger.debug("Cannot compare %r %s %r", current, operator, target)
        return False

    if op in ("contains", "not_contains"):
        if isinstance(current, str) and isinstance(target, str):
            found = target.lower() in current.lower()
        elif isinstance(current, (list, tuple, set)):
            found = target in current
        else:
            return op == "not_contains"
        return found if op == "contains" else not found
    if op == "starts_with":
        return (
            isinstance(current, str) and isinstance(target, str)
            and current.lower().startswith(target.lower())
        )
    if op == "ends_with":
        return (
            isinstance(current, str) and isinstance(target, str)
            and current.lower().endswith(target.lower())
        )
    if op == "matches":
        if not (isinstance(current, str) and isinstance(target, str)):
            return False
        try:
            return re.search(target, current, re.IGNORECASE) is not None
        except re.error:
            logger.warning("Invalid regex pattern %r", target)
            return False
    if op == "in":
        return isinstance(target, list) and current in target
    # not_in
    return not isinstance(target, list) or current not in target


# ── Static helpers (used by validation and lock reasons) ─


_TYPE_DESCRIPTIONS = {
    "stat": 'Stat "{key}"',
    "flag": 'Flag "{key}"',
    "scene_visited": 'Visited scene "{key}"',
    "has_item": 'Has item "{key}"',
    "item_count": 'Count of "{key}"',
    "inventory_category": 'Items in category "{key}"',
    "choice_made": 'Made choice "{key}"',
    "choice_made_count": 'Choices made in "{key}"',
    "scene_visit_count": 'Times visited "{key}"',
    "total_choices": "Total choices made",
    "unique_scenes_visited": "Unique scenes visited",
    "inventory_total": "Total inventory items",
    "inventory_weight": "Total inventory weight",
    "inventory_value": "Total inventory value",
}

_OPERATOR_DESCRIPTIONS = {
    "eq": "equals",
    "ne": "not equals",
    "gt": "greater than",
    "gte": "greater than or equal",
    "lt": "less than",
    "lte": "less than or equal",
    "contains": "contains",
    "not_contains": "does not contain",
    "starts_with": "starts with",
    "ends_with": "ends with",
    "matches": "matches pattern",
    "in": "is one of",
    "not_in": "is not one of",
    "between": "is between",
    "not_between": "is not between",
}


def describe(condition: Any) -> str:
    """Human-readable description, e.g. 'Stat "gold" greater than or equal 10'."""
    if isinstance(condition, ConditionGroup):
        parts = [describe(c) for c in condition.conditions]
        logic = (condition.logic or "AND").upper()
        if logic == "NOT":
            return f"NOT ({' OR '.join(parts)})"
        if logic == "XOR":
            return f"ONLY ONE OF ({', '.join(parts)})"
        return f" {logic} ".join(parts)

    kind = getattr(condition, "type", None)
    key = getattr(condition, "key", None)
    operator = getattr(condition, "operator", None)
    value = getattr(condition, "value", None)

    subject = _TYPE_DESCRIPTIONS.get(kind, str(kind)).format(key=key)
    verb = _OPERATOR_DESCRIPTIONS.get(OPERATORS.get(operator, ""), str(operator))
    if value is None:
        return f"{subject} {verb}"
    if isinstance(value, list):
        return f"{subject} {verb} [{', '.join(str(v) for v in value)}]"
    return f"{subject} {verb} {value}"


def check_condition(condition: Any) -> str | None:
    """Return a description of what's wrong with a condition, or None if it's well-formed."""
    if isinstance(condition, ConditionGroup):
        if (condition.logic or "").upper() not in LOGIC_OPERATORS:
            return f"Invalid logic operator: {condition.logic}"
        for child in condition.conditions:
            problem = check_condition(child)
            if problem:
                return problem
        return None

    kind = getattr(condition, "type", None)
    if not kind:
        return "Condition must have a type"
    if kind not in LEAF_CONDITION_TYPES:
        return f"Invalid condition type: {kind}"
    if not condition.operator:
        return "Condition must have an operator"
    if not condition.key and kind not in KEYLESS_TYPES:
        return "Condition must have a key"
    if condition.operator not in OPERATORS:
        return f"Invalid operator: {condition.operator}"
    return None
