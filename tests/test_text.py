"""Tests for branchwork.text — Handlebars rendering of scene text."""

import pytest

from branchwork.inventory import InventoryStore
from branchwork.models import InventoryItemDefinition, StatDefinition
from branchwork.stats import StatStore
from branchwork.text import ContentError, build_context, make_helpers, render_text


@pytest.fixture
def stores() -> tuple[StatStore, InventoryStore]:
    stats = StatStore([StatDefinition(id="gold", default_value=12, unit="gp")])
    inventory = InventoryStore([InventoryItemDefinition(id="torch", name="Torch")], stats)
    return stats, inventory


def _render(template: str, stats: StatStore, inventory: InventoryStore) -> str:
    context = build_context(stats, inventory, scene={"title": "Gate"}, adventure={"title": "Vault"})
    return render_text(template, context, make_helpers(stats, inventory))


class TestRenderText:
    def test_plain_text_untouched(self) -> None:
        assert render_text("No templates here.", {}) == "No templates here."

    def test_paths(self, stores) -> None:
        assert _render("{{adventure.title}}: {{scene.title}} ({{stats.gold}})", *stores) == \
            "Vault: Gate (12)"

    def test_stat_helper_uses_display(self, stores) -> None:
        assert _render('You have {{stat "gold"}}.', *stores) == "You have 12 gp."

    def test_flag_block(self, stores) -> None:
        stats, inventory = stores
        template = '{{#if_flag "lit"}}Bright.{{else}}Dark.{{/if_flag}}'
        assert _render(template, stats, inventory) == "Dark."
        stats.set_flag("lit")
        assert _render(template, stats, inventory) == "Bright."

    def test_item_helpers(self, stores) -> None:
        stats, inventory = stores
        template = '{{#has_item "torch"}}Torch ({{item_count "torch"}}){{else}}No torch{{/has_item}}'
        assert _render(template, stats, inventory) == "No torch"
        inventory.add_item("torch", 2)
        assert _render(template, stats, inventory) == "Torch (2)"

    def test_broken_template_raises_content_error(self) -> None:
        with pytest.raises(ContentError):
            render_text("{{#if_flag}}unclosed", {})
