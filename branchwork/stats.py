"""Stat and flag store.

Stats are typed, bounded values; flags are plain booleans. Each stat's
definition comes from the adventure document and is never modified at play
time. Values go through the stat's type on every write:

  number      numeric coercion ("12" → 12), then min/max clamp
  string      str() of the value
  boolean     flag-style coercion (0/1, "true"/"false")
  percentage  numeric, clamped to 0–100 and to the definition's bounds
  currency    numeric, rounded to 2 decimals
  time        numeric seconds, never negative, displayed as H:MM:SS

Custom types are registered on a StatTypeRegistry with validate / normalize /
display callables. A failing validator rejects the write and leaves the old
value in place.

Every successful mutation bumps `version` (read by the condition cache) and
appends a StatChange to a bounded audit history. The history is for
analytics and export only; gameplay never reads it.
"""

from __future__ import annotations

import logging
import math
import time
from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel

from branchwork.models import FlagDefinition, StatChange, StatDefinition

logger = logging.getLogger(__name__)

_TRUE_STRINGS = {"true", "yes", "on", "1"}
_FALSE_STRINGS = {"false", "no", "off", "0", ""}


class StatResult(BaseModel):
    success: bool
    message: str = ""
    value: Any = None


# ── Coercion helpers ─────────────────────────────────────


def to_number(value: Any) -> int | float | None:
    """Coerce to int/float, or None when the value is not numeric.

    Booleans are rejected so a flag can't silently become 0/1 in a numeric stat.
    """
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            return None
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            pass
        try:
            number = float(text)
        except ValueError:
            return None
        return number if math.isfinite(number) else None
    return None


def coerce_flag(value: Any) -> tuple[bool, bool]:
    """Return (flag_value, was_coerced)."""
    if isinstance(value, bool):
        return value, False
    if value is None:
        return False, True
    if isinstance(value, (int, float)):
        return value != 0, True
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE_STRINGS:
            return True, True
        if text in _FALSE_STRINGS:
            return False, True
    return bool(value), True


def _clamp(value: int | float, definition: StatDefinition) -> int | float:
    if definition.min is not None and value < definition.min:
        value = definition.min
    if definition.max is not None and value > definition.max:
        value = definition.max
    if isinstance(value, float) and value.is_integer() and definition.type == "number":
        return int(value)
    return value


def _format_number(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


# ── Stat types ───────────────────────────────────────────


@dataclass(frozen=True)
class StatType:
    name: str
    validate: Callable[[Any, StatDefinition], bool]
    normalize: Callable[[Any, StatDefinition], Any]
    display: Callable[[Any, StatDefinition], str]
    numeric: bool = False


def _is_number(value: Any, definition: StatDefinition) -> bool:
    return to_number(value) is not None


def _is_real_number(value: Any) -> bool:
    # digit strings coerce through to_number but can't be subtracted
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _always(value: Any, definition: StatDefinition) -> bool:
    return True


def _display_number(value: Any, definition: StatDefinition) -> str:
    text = _format_number(value)
    return f"{text} {definition.unit}" if definition.unit else text


def _normalize_percentage(value: Any, definition: StatDefinition) -> float | int:
    return min(100, max(0, to_number(value)))


def _display_percentage(value: Any, definition: StatDefinition) -> str:
    return f"{_format_number(value)}%"


def _display_currency(value: Any, definition: StatDefinition) -> str:
    text = f"{value:,.2f}"
    return f"{text} {definition.unit}" if definition.unit else text


def _display_time(value: Any, definition: StatDefinition) -> str:
    total = int(value)
    hours, rest = divmod(total, 3600)
    minutes, seconds = divmod(rest, 60)
    return f"{hours}:{minutes:02d}:{seconds:02d}"


BUILTIN_TYPES: tuple[StatType, ...] = (
    StatType(
        "number", _is_number, lambda v, d: to_number(v), _display_number, numeric=True,
    ),
    StatType(
        "string", _always, lambda v, d: "" if v is None else str(v), lambda v, d: str(v),
    ),
    StatType(
        "boolean", _always, lambda v, d: coerce_flag(v)[0], lambda v, d: "Yes" if v else "No",
    ),
    StatType(
        "percentage", _is_number, _normalize_percentage, _display_percentage, numeric=True,
    ),
    StatType(
        "currency", _is_number, lambda v, d: round(float(to_number(v)), 2), _display_currency,
        numeric=True,
    ),
    StatType(
        "time", _is_number, lambda v, d: max(0, to_number(v)), _display_time, numeric=True,
    ),
)


class StatTypeRegistry:
    """Name → StatType lookup. Starts with the built-in types."""

    def __init__(self) -> None:
        self._types: dict[str, StatType] = {t.name: t for t in BUILTIN_TYPES}

    def register(
        self,
        name: str,
        *,
        validate: Callable[[Any, StatDefinition], bool],
        normalize: Callable[[Any, StatDefinition], Any] | None = None,
        display: Callable[[Any, StatDefinition], str] | None = None,
        numeric: bool = False,
    ) -> StatType:
        """Register (or replace) a custom stat type."""
        stat_type = StatType(
            name=name,
            validate=validate,
            normalize=normalize or (lambda v, d: v),
            display=display or (lambda v, d: str(v)),
            numeric=numeric,
        )
        self._types[name] = stat_type
        return stat_type

    def get(self, name: str) -> StatType | None:
        return self._types.get(name)

    def names(self) -> list[str]:
        return sorted(self._types)


# ── Store ────────────────────────────────────────────────


class StatStore:
    def __init__(
        self,
        definitions: Iterable[StatDefinition] = (),
        flag_definitions: Iterable[FlagDefinition] = (),
        *,
        registry: StatTypeRegistry | None = None,
        history_limit: int = 500,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._registry = registry or StatTypeRegistry()
        self._clock = clock
        self._definitions: dict[str, StatDefinition] = {}
        self._flag_definitions: dict[str, FlagDefinition] = {}
        self._stats: dict[str, Any] = {}
        self._flags: dict[str, bool] = {}
        self._history: deque[StatChange] = deque(maxlen=history_limit)
        self._version = 0

        for definition in definitions:
            self._definitions[definition.id] = definition
            if self._registry.get(definition.type) is None:
                logger.warning(
                    "Stat %r uses unregistered type %r; values are stored unvalidated",
                    definition.id, definition.type,
                )
            self._stats[definition.id] = self._initial_value(definition)
        for flag in flag_definitions:
            self._flag_definitions[flag.id] = flag
            self._flags[flag.id] = flag.default

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def version(self) -> int:
        return self._version

    @property
    def registry(self) -> StatTypeRegistry:
        return self._registry

    def has_definition(self, stat_id: str) -> bool:
        return stat_id in self._definitions

    def definition(self, stat_id: str) -> StatDefinition | None:
        return self._definitions.get(stat_id)

    def history(self) -> list[StatChange]:
        return list(self._history)

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def get_stat(self, stat_id: str, default: Any = None) -> Any:
        return self._stats.get(stat_id, default)

    def set_stat(self, stat_id: str, value: Any) -> StatResult:
        """Validate, normalize and store a stat value."""
        old = self._stats.get(stat_id)
        ok, new, message = self._normalize(stat_id, value)
        if not ok:
            logger.warning("Rejected stat write %s=%r: %s", stat_id, value, message)
            return StatResult(success=False, message=message, value=old)
        self._write_stat(stat_id, old, new)
        return StatResult(success=True, message=f"{stat_id} set to {new!r}", value=new)

    def add_stat(self, stat_id: str, amount: Any) -> StatResult:
        current = self._stats.get(stat_id)
        number = to_number(amount)
        if to_number(current) is None or number is None:
            message = f"Cannot add {amount!r} to non-numeric stat {stat_id} ({current!r})"
            logger.warning(message)
            return StatResult(success=False, message=message, value=current)
        return self.set_stat(stat_id, to_number(current) + number)

    def multiply_stat(self, stat_id: str, factor: Any) -> StatResult:
        current = self._stats.get(stat_id)
        number = to_number(factor)
        if to_number(current) is None or number is None:
            message = f"Cannot multiply non-numeric stat {stat_id} ({current!r}) by {factor!r}"
            logger.warning(message)
            return StatResult(success=False, message=message, value=current)
        return self.set_stat(stat_id, to_number(current) * number)

    def all_stats(self) -> dict[str, Any]:
        return dict(self._stats)

    def display(self, stat_id: str) -> str:
        """Human-readable value, formatted by the stat's type."""
        value = self._stats.get(stat_id)
        definition = self._definitions.get(stat_id)
        if value is None:
            return ""
        if definition is None:
            return _format_number(value)
        stat_type = self._registry.get(definition.type)
        if stat_type is None:
            return str(value)
        return stat_type.display(value, definition)

    def get_visible_stats(self) -> list[dict[str, Any]]:
        return [
            {
                "id": stat_id,
                "name": definition.name or stat_id,
                "type": definition.type,
                "category": definition.category,
                "value": self._stats.get(stat_id),
                "display": self.display(stat_id),
            }
            for stat_id, definition in self._definitions.items()
            if not definition.hidden
        ]

    def get_exportable_stats(self) -> dict[str, Any]:
        return {
            stat_id: self._stats.get(stat_id)
            for stat_id, definition in self._definitions.items()
            if definition.exportable
        }

    # ------------------------------------------------------------------
    # Flags
    # ------------------------------------------------------------------

    def has_flag(self, flag_id: str) -> bool:
        return bool(self._flags.get(flag_id, False))

    def get_flag(self, flag_id: str) -> bool | None:
        """The flag's value, or None when it was never defined or set."""
        return self._flags.get(flag_id)

    def set_flag(self, flag_id: str, value: Any = True) -> StatResult:
        flag, coerced = coerce_flag(value)
        if coerced:
            logger.warning("Flag %s given non-boolean %r; coerced to %s", flag_id, value, flag)
        old = self._flags.get(flag_id)
        if old is not flag or flag_id not in self._flags:
            self._flags[flag_id] = flag
            self._record(StatChange(
                flag_id=flag_id, old_value=old, new_value=flag, timestamp=self._clock(),
            ))
        return StatResult(success=True, message=f"{flag_id} set to {flag}", value=flag)

    def toggle_flag(self, flag_id: str) -> StatResult:
        return self.set_flag(flag_id, not self.has_flag(flag_id))

    def all_flags(self) -> dict[str, bool]:
        return dict(self._flags)

    def get_exportable_flags(self) -> dict[str, bool]:
        return {
            flag_id: value
            for flag_id, value in self._flags.items()
            if self._flag_definitions.get(flag_id) is None
            or self._flag_definitions[flag_id].exportable
        }

    # ------------------------------------------------------------------
    # Save / load
    # ------------------------------------------------------------------

    def load_from_save(self, stats: dict[str, Any], flags: dict[str, Any]) -> None:
        """Replace current values. Defined stats are re-normalized; invalid ones keep their default."""
        self._stats = {d.id: self._initial_value(d) for d in self._definitions.values()}
        for stat_id, value in stats.items():
            ok, new, message = self._normalize(stat_id, value)
            if ok:
                self._stats[stat_id] = new
            else:
                logger.warning("Saved stat %s=%r ignored: %s", stat_id, value, message)
        self._flags = {f.id: f.default for f in self._flag_definitions.values()}
        for flag_id, value in flags.items():
            self._flags[flag_id] = coerce_flag(value)[0]
        self._version += 1

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _initial_value(self, definition: StatDefinition) -> Any:
        value = definition.default_value
        if value is None:
            if definition.type == "string":
                value = ""
            elif definition.type == "boolean":
                value = False
            elif definition.min is not None:
                value = definition.min
            else:
                value = 0
        ok, normalized, message = self._normalize(definition.id, value)
        if not ok:
            logger.warning("Default for stat %s is invalid: %s", definition.id, message)
            return value
        return normalized

    def _normalize(self, stat_id: str, value: Any) -> tuple[bool, Any, str]:
        definition = self._definitions.get(stat_id)
        if definition is None:
            return True, value, ""
        stat_type = self._registry.get(definition.type)
        if stat_type is None:
            return True, value, ""
        try:
            valid = stat_type.validate(value, definition)
        except (TypeError, ValueError) as e:
            return False, None, f"{definition.type} validator failed: {e}"
        if not valid:
            return False, None, f"{value!r} is not a valid {definition.type}"
        normalized = stat_type.normalize(value, definition)
        if stat_type.numeric and to_number(normalized) is not None:
            normalized = _clamp(normalized, definition)
        return True, normalized, ""

    def _write_stat(self, stat_id: str, old: Any, new: Any) -> None:
        if stat_id in self._stats and old == new and type(old) is type(new):
            return
        self._stats[stat_id] = new
        delta = None
        if _is_real_number(old) and _is_real_number(new):
            delta = new - old
        self._record(StatChange(
            stat_id=stat_id, old_value=old, new_value=new, delta=delta, timestamp=self._clock(),
        ))

    def _record(self, change: StatChange) -> None:
        self._version += 1
        self._history.append(change)
