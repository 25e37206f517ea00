"""Tests for branchwork.conditions — evaluation, fail-closed behaviour, caching."""

import pytest
from pydantic import TypeAdapter

from branchwork.conditions import (
    ConditionEvaluator,
    PlayHistory,
    check_condition,
    compare,
    describe,
)
from branchwork.inventory import InventoryStore
from branchwork.models import (
    ChoiceRecord,
    ConditionTree,
    FlagDefinition,
    InventoryItemDefinition,
    StatDefinition,
)
from branchwork.stats import StatStore

_tree = TypeAdapter(ConditionTree)


def cond(data):
    """Parse one node (or a list) the way a document would."""
    nodes = _tree.validate_python(data)
    return nodes[0] if isinstance(data, dict) else nodes


@pytest.fixture
def stats() -> StatStore:
    return StatStore(
        [
            StatDefinition(id="gold", default_value=5),
            StatDefinition(id="name", type="string", default_value="Wren Ashby"),
        ],
        [FlagDefinition(id="metGuard")],
    )


@pytest.fixture
def inventory(stats: StatStore) -> InventoryStore:
    return InventoryStore([
        InventoryItemDefinition(id="potion", name="Potion", category="consumable", value=10, weight=1),
        InventoryItemDefinition(id="herb", name="Herb", category="consumable"),
        InventoryItemDefinition(id="rope", name="Rope", category="tool", weight=2),
    ], stats)


@pytest.fixture
def history() -> PlayHistory:
    return PlayHistory()


@pytest.fixture
def ev(stats, inventory, history) -> ConditionEvaluator:
    return ConditionEvaluator(stats, inventory, history)


# ---------------------------------------------------------------------------
# Operators
# ---------------------------------------------------------------------------

class TestCompare:
    @pytest.mark.parametrize("op", ["eq", "=="])
    def test_eq_aliases(self, op) -> None:
        assert compare(5, op, 5)
        assert not compare(5, op, "5")

    def test_ordering(self) -> None:
        assert compare(5, ">=", 5)
        assert compare(5, "gt", 4)
        assert compare(5, "<", 6)
        assert not compare(5, "lte", 4)

    def test_string_operators_case_insensitive(self) -> None:
        assert compare("Wren Ashby", "contains", "ash")
        assert compare("Wren Ashby", "starts_with", "wren")
        assert compare("Wren Ashby", "ends_with", "BY")
        assert compare("Wren Ashby", "matches", r"^w\w+ a")
        assert compare("Wren", "not_contains", "x")

    def test_list_membership(self) -> None:
        assert compare("b", "in", ["a", "b"])
        assert compare("c", "not_in", ["a", "b"])
        assert compare(["a", "b"], "contains", "a")

    def test_between(self) -> None:
        assert compare(5, "between", [1, 5])
        assert not compare(6, "between", [1, 5])
        assert compare(6, "not_between", [1, 5])
        assert not compare(6, "between", [1])

    def test_unknown_operator_is_false(self) -> None:
        assert not compare(5, "approximately", 5)
        assert not compare(5, None, 5)

    def test_incomparable_is_false(self) -> None:
        assert not compare(None, "gt", 3)
        assert not compare("a", "lt", 3)

    def test_invalid_regex_is_false(self) -> None:
        assert not compare("abc", "matches", "([")


# ---------------------------------------------------------------------------
# Leaf resolution
# ---------------------------------------------------------------------------

class TestLeaves:
    def test_stat(self, ev) -> None:
        assert ev.evaluate(cond({"type": "stat", "operator": "gte", "key": "gold", "value": 5}))
        assert not ev.evaluate(cond({"type": "stat", "operator": "gt", "key": "gold", "value": 5}))

    def test_missing_stat_fails_closed(self, ev) -> None:
        assert not ev.evaluate(cond({"type": "stat", "operator": "gt", "key": "mana", "value": 0}))

    def test_flag_value_defaults_to_true(self, ev, stats) -> None:
        node = cond({"type": "flag", "operator": "eq", "key": "metGuard"})
        assert not ev.evaluate(node)
        stats.set_flag("metGuard")
        assert ev.evaluate(node)

    def test_flag_false(self, ev) -> None:
        assert ev.evaluate(cond({"type": "flag", "operator": "eq", "key": "metGuard", "value": False}))

    def test_inventory_leaves(self, ev, inventory) -> None:
        inventory.add_item("potion", 2)
        inventory.add_item("herb", 3)
        inventory.add_item("rope")
        assert ev.evaluate(cond({"type": "has_item", "operator": "eq", "key": "potion"}))
        assert ev.evaluate(cond({"type": "item_count", "operator": "eq", "key": "potion", "value": 2}))
        assert ev.evaluate(cond({"type": "inventory_category", "operator": "eq", "key": "consumable", "value": 5}))
        assert ev.evaluate(cond({"type": "inventory_total", "operator": "eq", "value": 6}))
        assert ev.evaluate(cond({"type": "inventory_weight", "operator": "eq", "value": 4}))
        assert ev.evaluate(cond({"type": "inventory_value", "operator": "gte", "value": 20}))

    def test_history_leaves(self, ev, history) -> None:
        history.visited_scenes.extend(["gate", "hall"])
        history.scene_visit_counts.update({"gate": 3, "hall": 1})
        history.choice_history.extend([
            ChoiceRecord(scene_id="gate", choice_id="knock", timestamp=1),
            ChoiceRecord(scene_id="gate", choice_id="knock", timestamp=2),
            ChoiceRecord(scene_id="hall", choice_id="rest", timestamp=3),
        ])
        assert ev.evaluate(cond({"type": "scene_visited", "operator": "eq", "key": "hall"}))
        assert ev.evaluate(cond({"type": "scene_visited", "operator": "eq", "key": "vault", "value": False}))
        assert ev.evaluate(cond({"type": "choice_made", "operator": "eq", "key": "rest"}))
        assert ev.evaluate(cond({"type": "choice_made", "operator": "eq", "key": "gate", "value": "knock"}))
        assert not ev.evaluate(cond({"type": "choice_made", "operator": "eq", "key": "hall", "value": "knock"}))
        assert ev.evaluate(cond({"type": "choice_made_count", "operator": "eq", "key": "gate", "value": 2}))
        assert ev.evaluate(cond({"type": "choice_made_count", "operator": "eq", "key": "gate",
                                 "choiceId": "knock", "value": 2}))
        assert ev.evaluate(cond({"type": "scene_visit_count", "operator": "eq", "key": "gate", "value": 3}))
        assert ev.evaluate(cond({"type": "total_choices", "operator": "eq", "value": 3}))
        assert ev.evaluate(cond({"type": "unique_scenes_visited", "operator": "eq", "value": 2}))

    def test_unknown_type_is_false(self, ev, caplog) -> None:
        assert not ev.evaluate(cond({"type": "moon_phase", "operator": "eq", "key": "full"}))
        assert "Unknown condition type" in caplog.text


# ---------------------------------------------------------------------------
# Groups
# ---------------------------------------------------------------------------

T = {"type": "stat", "operator": "eq", "key": "gold", "value": 5}
F = {"type": "stat", "operator": "eq", "key": "gold", "value": 6}


class TestGroups:
    @pytest.mark.parametrize("logic, children, expected", [
        ("AND", [T, T], True),
        ("AND", [T, F], False),
        ("OR", [F, T], True),
        ("OR", [F, F], False),
        ("NOT", [F, F], True),
        ("NOT", [T, F], False),
        ("XOR", [T, F], True),
        ("XOR", [T, T], False),
        ("NAND", [T, T], False),
        ("NAND", [T, F], True),
        ("NOR", [F, F], True),
        ("NOR", [T, F], False),
    ])
    def test_logic(self, ev, logic, children, expected) -> None:
        assert ev.evaluate(cond({"logic": logic, "conditions": children})) is expected

    def test_lowercase_logic(self, ev) -> None:
        assert ev.evaluate(cond({"logic": "or", "conditions": [F, T]}))

    def test_empty_group_holds(self, ev) -> None:
        assert ev.evaluate(cond({"logic": "OR", "conditions": []}))

    def test_unknown_logic_is_false(self, ev) -> None:
        assert not ev.evaluate(cond({"logic": "MAYBE", "conditions": [T]}))

    def test_nested(self, ev) -> None:
        node = cond({"logic": "AND", "conditions": [T, {"logic": "NOT", "conditions": [F]}]})
        assert ev.evaluate(node)

    def test_evaluate_all(self, ev) -> None:
        assert ev.evaluate_all([])
        assert ev.evaluate_all(None)
        assert ev.evaluate_all(cond([T, T]))
        assert not ev.evaluate_all(cond([T, F]))


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------

class TestCache:
    def test_hit_on_repeat(self, ev) -> None:
        node = cond(T)
        ev.evaluate(node)
        ev.evaluate(node)
        s = ev.cache_stats()
        assert s["hits"] == 1
        assert s["misses"] == 1
        assert s["total"] == 2
        assert s["hit_rate"] == 50.0

    def test_stat_change_invalidates(self, ev, stats) -> None:
        node = cond({"type": "stat", "operator": "gte", "key": "gold", "value": 10})
        assert not ev.evaluate(node)
        stats.add_stat("gold", 5)
        assert ev.evaluate(node)

    def test_inventory_change_invalidates(self, ev, inventory) -> None:
        node = cond({"type": "has_item", "operator": "eq", "key": "rope"})
        assert not ev.evaluate(node)
        inventory.add_item("rope")
        assert ev.evaluate(node)

    def test_history_change_invalidates(self, ev, history) -> None:
        node = cond({"type": "total_choices", "operator": "eq", "value": 1})
        assert not ev.evaluate(node)
        history.choice_history.append(ChoiceRecord(scene_id="a", choice_id="b", timestamp=0))
        assert ev.evaluate(node)

    def test_trim_keeps_recent_half(self, stats, inventory, history) -> None:
        ev = ConditionEvaluator(stats, inventory, history, max_cache_size=10)
        for i in range(11):
            ev.evaluate(cond({"type": "stat", "operator": "eq", "key": "gold", "value": i}))
        assert ev.cache_stats()["size"] == 5
        # the newest entry survived the trim
        ev.evaluate(cond({"type": "stat", "operator": "eq", "key": "gold", "value": 10}))
        assert ev.cache_stats()["hits"] == 1

    def test_clear_cache(self, ev) -> None:
        ev.evaluate(cond(T))
        ev.clear_cache()
        assert ev.cache_stats()["size"] == 0


# ---------------------------------------------------------------------------
# describe / check_condition
# ---------------------------------------------------------------------------

class TestDescribe:
    def test_leaf(self) -> None:
        text = describe(cond({"type": "stat", "operator": "gte", "key": "gold", "value": 10}))
        assert text == 'Stat "gold" greater than or equal 10'

    def test_group(self) -> None:
        text = describe(cond({"logic": "NOT", "conditions": [
            {"type": "flag", "operator": "eq", "key": "a", "value": True},
        ]}))
        assert text == 'NOT (Flag "a" equals True)'

    def test_list_value(self) -> None:
        text = describe(cond({"type": "stat", "operator": "in", "key": "k", "value": [1, 2]}))
        assert text.endswith("is one of [1, 2]")


class TestCheckCondition:
    def test_valid(self) -> None:
        assert check_condition(cond(T)) is None
        assert check_condition(cond({"type": "total_choices", "operator": "gt", "value": 1})) is None

    def test_problems(self) -> None:
        assert check_condition(cond({"type": "moon", "operator": "eq", "key": "x"})) == \
            "Invalid condition type: moon"
        assert check_condition(cond({"type": "stat", "key": "x"})) == \
            "Condition must have an operator"
        assert check_condition(cond({"type": "stat", "operator": "eq"})) == \
            "Condition must have a key"
        assert check_condition(cond({"type": "stat", "operator": "~", "key": "x"})) == \
            "Invalid operator: ~"
        assert check_condition(cond({"logic": "MAYBE", "conditions": []})) == \
            "Invalid logic operator: MAYBE"

    def test_nested_problem_reported(self) -> None:
        node = cond({"logic": "AND", "conditions": [T, {"type": "stat", "key": "x"}]})
        assert check_condition(node) == "Condition must have an operator"
