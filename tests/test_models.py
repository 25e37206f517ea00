"""Tests for branchwork.models."""

import pytest
from pydantic import ValidationError

from branchwork.models import (
    AddInventoryAction,
    Adventure,
    Choice,
    ConditionGroup,
    FlagCondition,
    InventoryItemDefinition,
    SaveSnapshot,
    StatCondition,
    StatDefinition,
    UnknownAction,
    UnknownCondition,
)


def _adventure(**overrides) -> dict:
    doc = {
        "id": "tiny",
        "startSceneId": "a",
        "scenes": [
            {"id": "a", "choices": [{"id": "go", "text": "Go", "targetSceneId": "b"}]},
            {"id": "b"},
        ],
    }
    doc.update(overrides)
    return doc


# ---------------------------------------------------------------------------
# Adventure
# ---------------------------------------------------------------------------

class TestAdventure:
    def test_camel_case_wire_format(self) -> None:
        adv = Adventure.model_validate(_adventure())
        assert adv.start_scene_id == "a"
        assert adv.scenes[0].choices[0].target_scene_id == "b"

    def test_dump_by_alias_gives_camel_case(self) -> None:
        dumped = Adventure.model_validate(_adventure()).model_dump(by_alias=True)
        assert dumped["startSceneId"] == "a"
        assert "targetSceneId" in dumped["scenes"][0]["choices"][0]

    def test_scene_lookup(self) -> None:
        adv = Adventure.model_validate(_adventure())
        assert adv.scene("b").id == "b"
        assert adv.scene("nope") is None
        assert adv.scene(None) is None
        assert adv.scene_ids() == ["a", "b"]

    def test_first_duplicate_scene_wins(self) -> None:
        doc = _adventure(scenes=[{"id": "a", "title": "first"}, {"id": "a", "title": "second"}])
        adv = Adventure.model_validate(doc)
        assert adv.scene("a").title == "first"

    def test_missing_start_scene_id_rejected(self) -> None:
        doc = _adventure()
        del doc["startSceneId"]
        with pytest.raises(ValidationError):
            Adventure.model_validate(doc)

    def test_choice_lookup_on_scene(self) -> None:
        adv = Adventure.model_validate(_adventure())
        assert adv.scene("a").choice("go").text == "Go"
        assert adv.scene("a").choice("stay") is None


# ---------------------------------------------------------------------------
# Conditions
# ---------------------------------------------------------------------------

class TestConditions:
    def test_leaf_dispatched_on_type(self) -> None:
        choice = Choice.model_validate({
            "id": "c",
            "conditions": [
                {"type": "stat", "operator": "gte", "key": "gold", "value": 10},
                {"type": "flag", "operator": "eq", "key": "x", "value": True},
            ],
        })
        assert isinstance(choice.conditions[0], StatCondition)
        assert isinstance(choice.conditions[1], FlagCondition)

    def test_single_node_wrapped_in_list(self) -> None:
        choice = Choice.model_validate({
            "id": "c", "requirements": {"type": "flag", "operator": "eq", "key": "x"},
        })
        assert len(choice.requirements) == 1
        assert isinstance(choice.requirements[0], FlagCondition)

    def test_nested_group(self) -> None:
        choice = Choice.model_validate({
            "id": "c",
            "conditions": [{
                "logic": "OR",
                "conditions": [
                    {"type": "flag", "operator": "eq", "key": "a"},
                    {"logic": "NOT", "conditions": [{"type": "flag", "operator": "eq", "key": "b"}]},
                ],
            }],
        })
        group = choice.conditions[0]
        assert isinstance(group, ConditionGroup)
        assert group.logic == "OR"
        assert isinstance(group.conditions[1], ConditionGroup)

    def test_unknown_type_captured_not_rejected(self) -> None:
        choice = Choice.model_validate({
            "id": "c", "conditions": [{"type": "moon_phase", "operator": "eq", "key": "full"}],
        })
        assert isinstance(choice.conditions[0], UnknownCondition)
        assert choice.conditions[0].type == "moon_phase"

    def test_choice_made_count_choice_id(self) -> None:
        choice = Choice.model_validate({
            "id": "c",
            "conditions": [{"type": "choice_made_count", "operator": "gte", "key": "hall",
                            "choiceId": "rest", "value": 2}],
        })
        assert choice.conditions[0].choice_id == "rest"


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------

class TestActions:
    def test_action_dispatched_on_type(self) -> None:
        choice = Choice.model_validate({
            "id": "c", "actions": [{"type": "add_inventory", "key": "potion", "value": 2}],
        })
        assert isinstance(choice.actions[0], AddInventoryAction)

    def test_unknown_action_captured(self) -> None:
        choice = Choice.model_validate({
            "id": "c", "actions": [{"type": "summon_dragon", "key": "x"}],
        })
        assert isinstance(choice.actions[0], UnknownAction)
        assert choice.actions[0].type == "summon_dragon"

    def test_one_time_and_id(self) -> None:
        choice = Choice.model_validate({
            "id": "c",
            "actions": [{"type": "set_flag", "key": "x", "oneTime": True, "id": "once"}],
        })
        assert choice.actions[0].one_time is True
        assert choice.actions[0].id == "once"

    def test_action_conditions(self) -> None:
        choice = Choice.model_validate({
            "id": "c",
            "actions": [{"type": "add_stat", "key": "gold", "value": 1,
                         "conditions": {"type": "flag", "operator": "eq", "key": "rich"}}],
        })
        assert isinstance(choice.actions[0].conditions[0], FlagCondition)


# ---------------------------------------------------------------------------
# Definitions
# ---------------------------------------------------------------------------

class TestDefinitions:
    def test_max_stack_defaults(self) -> None:
        assert InventoryItemDefinition(id="a", name="A").max_stack == 99
        assert InventoryItemDefinition(id="b", name="B", unique=True).max_stack == 1

    def test_max_stack_below_one_rejected(self) -> None:
        with pytest.raises(ValidationError):
            InventoryItemDefinition(id="a", name="A", max_stack=0)

    def test_legacy_no_export(self) -> None:
        stat = StatDefinition.model_validate({"id": "secret", "noExport": True})
        assert stat.exportable is False

    def test_input_defaults(self) -> None:
        choice = Choice(id="c")
        assert choice.input_type == "static"
        assert choice.input_config.options == []
        assert choice.max_uses == 0

    def test_invalid_input_type_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Choice.model_validate({"id": "c", "inputType": "telepathy"})


class TestSaveSnapshot:
    def test_supplement_fields_default_empty(self) -> None:
        snap = SaveSnapshot.model_validate({"currentSceneId": "a", "visitedScenes": ["a"]})
        assert snap.fired_actions == []
        assert snap.achievements == []
        assert snap.scene_visit_counts == {}

    def test_inventory_entries(self) -> None:
        snap = SaveSnapshot.model_validate({
            "inventory": {"potion": {"quantity": 2, "acquiredAt": 1.5}},
        })
        assert snap.inventory["potion"].quantity == 2
        assert snap.inventory["potion"].acquired_at == 1.5
