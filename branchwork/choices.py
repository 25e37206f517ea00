"""Choice classification.

Every choice in the current scene is sorted into one of three states:

    VISIBLE  shown and selectable
    HIDDEN   not shown at all
    LOCKED   shown, but can't be picked (with a reason for the player)

`kind` carries the finer distinction the UI may want (a LOCKED choice whose
requirements are met becomes UNLOCKED, a secret moves from SECRET_HIDDEN to
SECRET_DISCOVERED to SECRET_AVAILABLE).

The rules, first match wins:

  1. secret   undiscovered: visible only when its `conditions` hold, and then
              flagged for discovery. Once discovered it stays visible for
              the rest of the playthrough; `requirements` gate selection.
  2. locked   `is_locked` or any `requirements`: always visible, selectable
              when the requirements hold. A locked choice with only
              `conditions` uses them as requirements.
  3. hidden   `is_hidden` or any `conditions`: visible when they hold.
  4. default  visible and selectable.

`selectable_if` is applied afterwards and can only take selectability away.

The classifier reads state through the evaluator and never writes it; the
engine decides what to do with `should_record_discovery` and applies usage
limits on top.
"""

from __future__ import annotations

import math
from collections.abc import Collection, Iterable, Sequence
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from branchwork.conditions import ConditionEvaluator, describe
from branchwork.models import Choice, ChoiceRecord, InputConfig

SELECTABLE_IF_REASON = "Selectable conditions not met"

_OPERATOR_SYMBOLS = {
    "eq": "=", "==": "=",
    "ne": "≠", "!=": "≠",
    "gt": ">",
    "gte": "≥", ">=": "≥",
    "lt": "<",
    "lte": "≤", "<=": "≤",
}


class ChoiceState(str, Enum):
    VISIBLE = "VISIBLE"
    HIDDEN = "HIDDEN"
    LOCKED = "LOCKED"


class ChoiceKind(str, Enum):
    VISIBLE = "VISIBLE"
    HIDDEN = "HIDDEN"
    LOCKED = "LOCKED"
    UNLOCKED = "UNLOCKED"
    SECRET_HIDDEN = "SECRET_HIDDEN"
    SECRET_DISCOVERED = "SECRET_DISCOVERED"
    SECRET_AVAILABLE = "SECRET_AVAILABLE"


class ChoiceEvaluation(BaseModel):
    state: ChoiceState
    kind: ChoiceKind
    is_visible: bool
    is_selectable: bool
    reason: str | None = None
    lock_reasons: list[str] = Field(default_factory=list)
    should_record_discovery: bool = False
    selectable_if_met: bool = True
    is_fake: bool = False
    input_type: str = "static"
    cooldown_remaining_ms: float | None = None

    def lock(self, reason: str) -> None:
        """Make the choice unselectable, keeping it visible."""
        self.is_selectable = False
        self.state = ChoiceState.LOCKED
        if self.kind not in (ChoiceKind.SECRET_AVAILABLE, ChoiceKind.SECRET_DISCOVERED):
            self.kind = ChoiceKind.LOCKED
        if reason not in self.lock_reasons:
            self.lock_reasons.append(reason)
        if self.reason is None:
            self.reason = reason


class ChoiceView(BaseModel):
    """What the player sees of one visible choice."""

    id: str
    text: str
    state: ChoiceState
    kind: ChoiceKind
    is_selectable: bool
    reason: str | None = None
    lock_reasons: list[str] = Field(default_factory=list)
    newly_discovered: bool = False
    is_fake: bool = False
    input_type: str = "static"
    input_config: InputConfig = Field(default_factory=InputConfig)
    cooldown_remaining_ms: float | None = None


def _visible(kind: ChoiceKind = ChoiceKind.VISIBLE) -> ChoiceEvaluation:
    return ChoiceEvaluation(
        state=ChoiceState.VISIBLE, kind=kind, is_visible=True, is_selectable=True,
    )


def _hidden(kind: ChoiceKind, reason: str) -> ChoiceEvaluation:
    return ChoiceEvaluation(
        state=ChoiceState.HIDDEN, kind=kind, is_visible=False, is_selectable=False,
        reason=reason,
    )


class ChoiceClassifier:
    def __init__(self, evaluator: ConditionEvaluator) -> None:
        self.evaluator = evaluator

    def classify(self, choice: Choice, discovered: Collection[str] = ()) -> ChoiceEvaluation:
        result = self._classify(choice, discovered)
        result.is_fake = choice.is_fake
        result.input_type = choice.input_type

        if choice.selectable_if:
            met = self.evaluator.evaluate_all(choice.selectable_if)
            result.selectable_if_met = met
            if not met and result.is_visible:
                result.lock(SELECTABLE_IF_REASON)
        return result

    def classify_all(
        self, choices: Iterable[Choice], discovered: Collection[str] = (),
    ) -> list[tuple[Choice, ChoiceEvaluation]]:
        return [(choice, self.classify(choice, discovered)) for choice in choices]

    def visible_choices(
        self, choices: Iterable[Choice], discovered: Collection[str] = (),
    ) -> list[tuple[Choice, ChoiceEvaluation]]:
        return [(c, e) for c, e in self.classify_all(choices, discovered) if e.is_visible]

    def newly_discovered(
        self, choices: Iterable[Choice], discovered: Collection[str] = (),
    ) -> list[str]:
        return [
            c.id for c, e in self.classify_all(choices, discovered) if e.should_record_discovery
        ]

    # ------------------------------------------------------------------

    def _classify(self, choice: Choice, discovered: Collection[str]) -> ChoiceEvaluation:
        if choice.is_secret:
            return self._classify_secret(choice, discovered)
        if choice.is_locked or choice.requirements:
            requirements = choice.requirements or choice.conditions
            return self._gate(requirements, ChoiceKind.UNLOCKED)
        if choice.is_hidden or choice.conditions:
            if not self.evaluator.evaluate_all(choice.conditions):
                return _hidden(ChoiceKind.HIDDEN, "Conditions not met")
            return self._gate(choice.requirements, ChoiceKind.VISIBLE)
        return _visible()

    def _classify_secret(self, choice: Choice, discovered: Collection[str]) -> ChoiceEvaluation:
        if choice.id not in discovered:
            if self.evaluator.evaluate_all(choice.conditions):
                result = _visible(ChoiceKind.SECRET_DISCOVERED)
                result.reason = "Secret choice discovered!"
                result.should_record_discovery = True
                return result
            return _hidden(ChoiceKind.SECRET_HIDDEN, "Secret choice not yet discovered")
        return self._gate(choice.requirements, ChoiceKind.SECRET_AVAILABLE)

    def _gate(self, requirements: Sequence[Any], met_kind: ChoiceKind) -> ChoiceEvaluation:
        """Visible choice, selectable iff every requirement holds."""
        if self.evaluator.evaluate_all(requirements):
            return _visible(met_kind)
        reason = self.failure_reason(requirements)
        kind = ChoiceKind.SECRET_AVAILABLE if met_kind is ChoiceKind.SECRET_AVAILABLE else ChoiceKind.LOCKED
        return ChoiceEvaluation(
            state=ChoiceState.LOCKED, kind=kind, is_visible=True, is_selectable=False,
            reason=reason, lock_reasons=[reason],
        )

    def failure_reason(self, requirements: Sequence[Any]) -> str:
        """Message for the first requirement that doesn't hold."""
        for requirement in requirements:
            if not self.evaluator.evaluate(requirement):
                return self._format_requirement(requirement)
        return "Requirements not met"

    def _format_requirement(self, requirement: Any) -> str:
        kind = getattr(requirement, "type", None)
        key = getattr(requirement, "key", None)
        value = getattr(requirement, "value", None)
        operator = getattr(requirement, "operator", None)
        if kind == "stat":
            current = self.evaluator.stats.get_stat(key)
            symbol = _OPERATOR_SYMBOLS.get(operator, operator)
            return f"Requires {key} {symbol} {value} (currently {current})"
        if kind == "flag":
            wanted = True if value is None else value
            return f"Requires {key} to be {wanted}"
        if kind == "has_item":
            return f"Requires item: {key}"
        if kind == "scene_visited":
            return f"Must visit scene: {key}"
        return f"Requirements not met: {describe(requirement)}"


def usage_lock(
    choice: Choice, history: Sequence[ChoiceRecord], now: float,
) -> tuple[str, float | None] | None:
    """Return (reason, cooldown_remaining_ms) when usage limits block the choice.

    `now` and record timestamps are epoch seconds; `choice.cooldown` is in
    milliseconds.
    """
    records = [r for r in history if r.choice_id == choice.id]
    used = len(records)

    if choice.one_time and used >= 1:
        return "This choice can only be used once", None
    if choice.max_uses > 0 and used >= choice.max_uses:
        return "No uses remaining for this choice", None

    if choice.cooldown > 0 and records:
        elapsed_ms = (now - records[-1].timestamp) * 1000
        remaining_ms = choice.cooldown - elapsed_ms
        if remaining_ms > 0:
            seconds = math.ceil(remaining_ms / 1000)
            return f"On cooldown ({seconds}s remaining)", remaining_ms
    return None
