"""Inventory store — a sparse item ledger with stack limits.

Only items the player actually holds have an entry; setting a count to zero
removes it. Every quantity stays within [1, max_stack] of its definition.

Aggregates (total count, weight, value, per-category quantities) are cached
and dropped on each mutation. When the adventure defines a `total_items`
stat, every mutation writes the ledger total into it through the StatStore,
so the two stores never disagree.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from typing import Any

from pydantic import BaseModel

from branchwork.models import InventoryEntry, InventoryItemDefinition
from branchwork.stats import StatStore, coerce_flag, to_number

logger = logging.getLogger(__name__)

TOTAL_ITEMS_STAT = "total_items"


def _whole_number(value: Any) -> int | None:
    """Return `value` as an int when it is a whole number, else None."""
    number = to_number(value)
    if number is None or not float(number).is_integer():
        return None
    return int(number)


class InventoryResult(BaseModel):
    success: bool
    message: str
    new_quantity: int = 0


class InventoryStore:
    def __init__(
        self,
        definitions: Iterable[InventoryItemDefinition] = (),
        stats: StatStore | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._definitions: dict[str, InventoryItemDefinition] = {d.id: d for d in definitions}
        self._stats = stats
        self._clock = clock
        self._entries: dict[str, InventoryEntry] = {}
        self._aggregates: dict[str, Any] | None = None
        self._version = 0

    # ── Introspection ────────────────────────────────────

    @property
    def version(self) -> int:
        return self._version

    def definition(self, item_id: str) -> InventoryItemDefinition | None:
        return self._definitions.get(item_id)

    def get_item_count(self, item_id: str) -> int:
        entry = self._entries.get(item_id)
        return entry.quantity if entry else 0

    def has_item(self, item_id: str, min_quantity: int = 1) -> bool:
        return self.get_item_count(item_id) >= min_quantity

    def all_items(self) -> dict[str, int]:
        return {item_id: entry.quantity for item_id, entry in self._entries.items()}

    def get_items_by_category(self, category: str) -> dict[str, int]:
        return {
            item_id: entry.quantity
            for item_id, entry in self._entries.items()
            if self._definitions[item_id].category == category
        }

    # ── Mutations ────────────────────────────────────────

    def add_item(self, item_id: str, quantity: int = 1) -> InventoryResult:
        definition = self._definitions.get(item_id)
        if definition is None:
            return self._fail(f"Unknown item: {item_id}")
        count = _whole_number(quantity)
        if count is None or count <= 0:
            return self._fail(f"Invalid quantity: {quantity!r}", item_id)
        quantity = count

        current = self.get_item_count(item_id)
        room = definition.max_stack - current
        if room <= 0:
            return self._fail(
                f"Cannot carry more {definition.name} (max: {definition.max_stack})", item_id,
            )

        added = min(quantity, room)
        self._write(item_id, current + added)
        if added < quantity:
            message = f"Added {added} {definition.name} ({quantity - added} couldn't fit)"
        else:
            message = f"Added {added} {definition.name}"
        logger.info(message)
        return InventoryResult(success=True, message=message, new_quantity=current + added)

    def remove_item(self, item_id: str, quantity: int = 1) -> InventoryResult:
        definition = self._definitions.get(item_id)
        current = self.get_item_count(item_id)
        if current == 0:
            return self._fail(f"Don't have item: {item_id}")
        count = _whole_number(quantity)
        if count is None or count <= 0:
            return self._fail(f"Invalid quantity: {quantity!r}", item_id)
        quantity = count
        if quantity > current:
            name = definition.name if definition else item_id
            return self._fail(
                f"Don't have enough {name} (have: {current}, need: {quantity})", item_id,
            )

        self._write(item_id, current - quantity)
        name = definition.name if definition else item_id
        message = f"Removed {quantity} {name}"
        logger.info(message)
        return InventoryResult(success=True, message=message, new_quantity=current - quantity)

    def set_item_count(self, item_id: str, quantity: int) -> InventoryResult:
        definition = self._definitions.get(item_id)
        if definition is None:
            return self._fail(f"Unknown item: {item_id}")
        count = _whole_number(quantity)
        if count is None:
            return self._fail(f"Invalid quantity: {quantity!r}", item_id)
        if count < 0:
            return self._fail("Cannot set negative quantity", item_id)
        quantity = count

        clamped = min(quantity, definition.max_stack)
        self._write(item_id, clamped)
        if clamped != quantity:
            message = f"Set {definition.name} count to {clamped} (clamped from {quantity})"
        else:
            message = f"Set {definition.name} count to {clamped}"
        logger.info(message)
        return InventoryResult(success=True, message=message, new_quantity=clamped)

    def use_item(self, item_id: str, quantity: int = 1) -> InventoryResult:
        """Consume a consumable item and apply its effects once per unit."""
        definition = self._definitions.get(item_id)
        if definition is None:
            return self._fail(f"Unknown item: {item_id}")
        if not definition.consumable:
            return self._fail(f"{definition.name} cannot be used", item_id)
        count = _whole_number(quantity)
        if count is None or count <= 0:
            return self._fail(f"Invalid quantity: {quantity!r}", item_id)
        quantity = count

        removed = self.remove_item(item_id, quantity)
        if not removed.success:
            return removed

        if self._stats is not None:
            for effect in definition.effects:
                self._apply_effect(effect.type, effect.target, effect.value, quantity)
        message = f"Used {quantity} {definition.name}"
        return InventoryResult(success=True, message=message, new_quantity=removed.new_quantity)

    # ── Aggregates ───────────────────────────────────────

    def total_count(self) -> int:
        return self._compute()["count"]

    def total_weight(self) -> float:
        return self._compute()["weight"]

    def total_value(self) -> float:
        return self._compute()["value"]

    def category_count(self, category: str) -> int:
        return self._compute()["categories"].get(category, 0)

    # ── Save / export ────────────────────────────────────

    def to_save(self) -> dict[str, InventoryEntry]:
        return {item_id: entry.model_copy() for item_id, entry in self._entries.items()}

    def load_from_save(self, entries: dict[str, InventoryEntry | dict]) -> None:
        """Replace the ledger. Unknown items are dropped, quantities clamped."""
        self._entries = {}
        for item_id, raw in entries.items():
            entry = raw if isinstance(raw, InventoryEntry) else InventoryEntry.model_validate(raw)
            definition = self._definitions.get(item_id)
            if definition is None:
                logger.warning("Dropping unknown item %r from save", item_id)
                continue
            quantity = max(0, min(entry.quantity, definition.max_stack))
            if quantity:
                self._entries[item_id] = InventoryEntry(
                    quantity=quantity, acquired_at=entry.acquired_at,
                )
        self._changed()

    def get_exportable_inventory(self) -> dict[str, int]:
        return {
            item_id: entry.quantity
            for item_id, entry in self._entries.items()
            if self._definitions[item_id].exportable
        }

    def get_visible_items(self) -> list[dict[str, Any]]:
        items = []
        for item_id, entry in self._entries.items():
            definition = self._definitions[item_id]
            if definition.hidden:
                continue
            items.append({
                "id": item_id,
                "name": definition.name,
                "category": definition.category,
                "quantity": entry.quantity,
                "consumable": definition.consumable,
            })
        return items

    # ── Internals ────────────────────────────────────────

    def _fail(self, message: str, item_id: str | None = None) -> InventoryResult:
        logger.warning(message)
        quantity = self.get_item_count(item_id) if item_id else 0
        return InventoryResult(success=False, message=message, new_quantity=quantity)

    def _write(self, item_id: str, quantity: int) -> None:
        if quantity <= 0:
            self._entries.pop(item_id, None)
        else:
            existing = self._entries.get(item_id)
            acquired = existing.acquired_at if existing else self._clock()
            self._entries[item_id] = InventoryEntry(quantity=quantity, acquired_at=acquired)
        self._changed()

    def _changed(self) -> None:
        self._aggregates = None
        self._version += 1
        self.sync_total_items()

    def sync_total_items(self) -> None:
        """Mirror the ledger total into the `total_items` stat when it is defined."""
        if self._stats is not None and self._stats.has_definition(TOTAL_ITEMS_STAT):
            total = self.total_count()
            self._stats.set_stat(TOTAL_ITEMS_STAT, total)
            mirrored = self._stats.get_stat(TOTAL_ITEMS_STAT)
            if to_number(mirrored) != total:
                logger.warning(
                    "%s stat is %r but the inventory holds %d items",
                    TOTAL_ITEMS_STAT, mirrored, total,
                )

    def _compute(self) -> dict[str, Any]:
        if self._aggregates is None:
            count = 0
            weight = 0.0
            value = 0.0
            categories: dict[str, int] = {}
            for item_id, entry in self._entries.items():
                definition = self._definitions[item_id]
                count += entry.quantity
                weight += definition.weight * entry.quantity
                value += definition.value * entry.quantity
                categories[definition.category] = (
                    categories.get(definition.category, 0) + entry.quantity
                )
            self._aggregates = {
                "count": count, "weight": weight, "value": value, "categories": categories,
            }
        return self._aggregates

    def _apply_effect(self, kind: str, target: str, value: Any, quantity: int) -> None:
        if kind == "stat_add":
            amount = to_number(value)
            if amount is None:
                logger.warning("Item effect stat_add on %s has non-numeric value %r", target, value)
                return
            self._stats.add_stat(target, amount * quantity)
        elif kind == "stat_set":
            self._stats.set_stat(target, value)
        elif kind == "flag_set":
            self._stats.set_flag(target, True if value is None else coerce_flag(value)[0])
        else:
            logger.warning("Unknown item effect type %r", kind)
