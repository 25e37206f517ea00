"""Handlebars rendering for scene content and choice text.

Scene text can refer to the player's state:

    You have {{stat "gold"}} gold and {{item_count "potion"}} potions.
    {{#if_flag "metGuard"}}The guard nods.{{else}}The guard frowns.{{/if_flag}}
    {{#has_item "torch"}}Your torch lights the way.{{/has_item}}

Plain paths work too: `{{stats.gold}}`, `{{flags.metGuard}}`,
`{{inventory.potion}}`, `{{scene.title}}`, `{{adventure.title}}`.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pybars

from branchwork.inventory import InventoryStore
from branchwork.stats import StatStore

_compiler = pybars.Compiler()
_cache: dict[str, Callable] = {}


class ContentError(Exception):
    """Raised when scene or choice text fails to compile or render."""


def build_context(
    stats: StatStore,
    inventory: InventoryStore,
    scene: dict[str, Any] | None = None,
    adventure: dict[str, Any] | None = None,
) -> dict[str, Any]:
    return {
        "stats": stats.all_stats(),
        "flags": stats.all_flags(),
        "inventory": inventory.all_items(),
        "scene": scene or {},
        "adventure": adventure or {},
    }


# ── Helpers ──────────────────────────────────────────────


def make_helpers(stats: StatStore, inventory: InventoryStore) -> dict[str, Callable]:
    """Helpers bound to one player's stores."""

    def _stat(this, stat_id):
        """{{stat "gold"}} — the stat's display string."""
        return stats.display(stat_id)

    def _item_count(this, item_id):
        return str(inventory.get_item_count(item_id))

    def _if_flag(this, options, flag_id):
        """{{#if_flag "x"}}...{{else}}...{{/if_flag}}"""
        if stats.has_flag(flag_id):
            return options["fn"](this)
        return options["inverse"](this)

    def _has_item(this, options, item_id, quantity=1):
        if inventory.has_item(item_id, int(quantity)):
            return options["fn"](this)
        return options["inverse"](this)

    return {
        "stat": _stat,
        "item_count": _item_count,
        "if_flag": _if_flag,
        "has_item": _has_item,
    }


def render_text(
    template_str: str,
    context: dict[str, Any],
    helpers: dict[str, Callable] | None = None,
) -> str:
    """Compile and render a Handlebars template.

    Templates are cached by source string to avoid recompilation.
    """
    if "{{" not in template_str:
        return template_str
    try:
        compiled = _cache.get(template_str)
        if compiled is None:
            compiled = _compiler.compile(template_str)
            _cache[template_str] = compiled
        return "".join(compiled(context, helpers=helpers or {}))
    except Exception as e:
        raise ContentError(f"Template error: {e}") from e
