"""Adventure document and runtime models.

The engine, the validator and the HTTP layer all operate on these types.
Pydantic is used for validation and serialisation at every data boundary.

Documents arrive as camelCase JSON (``startSceneId``, ``onEnter``,
``isSecret``) and are exposed to Python as snake_case attributes;
``model_dump(by_alias=True)`` gives the wire shape back.

Conditions and actions are closed tagged unions keyed on ``type``. Entries
the engine does not recognise are captured by ``UnknownCondition`` and
``UnknownAction`` so a malformed entry still loads and resolves to the safe
default when it is evaluated, instead of aborting the whole document.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Discriminator,
    Field,
    PrivateAttr,
    Tag,
    model_validator,
)
from pydantic.alias_generators import to_camel


class DocumentModel(BaseModel):
    """Base for every wire-facing model: camelCase aliases, snake_case attributes."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Conditions
# ---------------------------------------------------------------------------

LOGIC_OPERATORS = ("AND", "OR", "NOT", "XOR", "NAND", "NOR")


class LeafCondition(DocumentModel):
    operator: str | None = None
    key: str | None = None
    value: Any = None


class StatCondition(LeafCondition):
    type: Literal["stat"] = "stat"


class FlagCondition(LeafCondition):
    type: Literal["flag"] = "flag"


class SceneVisitedCondition(LeafCondition):
    type: Literal["scene_visited"] = "scene_visited"


class HasItemCondition(LeafCondition):
    type: Literal["has_item"] = "has_item"


class ItemCountCondition(LeafCondition):
    type: Literal["item_count"] = "item_count"


class InventoryCategoryCondition(LeafCondition):
    type: Literal["inventory_category"] = "inventory_category"


class InventoryTotalCondition(LeafCondition):
    type: Literal["inventory_total"] = "inventory_total"


class InventoryWeightCondition(LeafCondition):
    type: Literal["inventory_weight"] = "inventory_weight"


class InventoryValueCondition(LeafCondition):
    type: Literal["inventory_value"] = "inventory_value"


class ChoiceMadeCondition(LeafCondition):
    type: Literal["choice_made"] = "choice_made"


class ChoiceMadeCountCondition(LeafCondition):
    type: Literal["choice_made_count"] = "choice_made_count"
    choice_id: str | None = None  # restricts the count to one choice in scene `key`


class SceneVisitCountCondition(LeafCondition):
    type: Literal["scene_visit_count"] = "scene_visit_count"


class TotalChoicesCondition(LeafCondition):
    type: Literal["total_choices"] = "total_choices"


class UniqueScenesVisitedCondition(LeafCondition):
    type: Literal["unique_scenes_visited"] = "unique_scenes_visited"


class UnknownCondition(DocumentModel):
    """Any leaf whose ``type`` is not recognised. Always evaluates to False."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    type: str | None = None
    operator: str | None = None
    key: str | None = None
    value: Any = None


class ConditionGroup(DocumentModel):
    """Logical combinator over nested conditions."""

    logic: str = "AND"
    conditions: list[Condition] = Field(default_factory=list)


LEAF_CONDITION_TYPES: dict[str, type[LeafCondition]] = {
    "stat": StatCondition,
    "flag": FlagCondition,
    "scene_visited": SceneVisitedCondition,
    "has_item": HasItemCondition,
    "item_count": ItemCountCondition,
    "inventory_category": InventoryCategoryCondition,
    "inventory_total": InventoryTotalCondition,
    "inventory_weight": InventoryWeightCondition,
    "inventory_value": InventoryValueCondition,
    "choice_made": ChoiceMadeCondition,
    "choice_made_count": ChoiceMadeCountCondition,
    "scene_visit_count": SceneVisitCountCondition,
    "total_choices": TotalChoicesCondition,
    "unique_scenes_visited": UniqueScenesVisitedCondition,
}


def _condition_tag(data: Any) -> str:
    if isinstance(data, dict):
        if isinstance(data.get("conditions"), list):
            return "group"
        tag = data.get("type")
    elif isinstance(data, ConditionGroup):
        return "group"
    else:
        tag = getattr(data, "type", None)
    return tag if tag in LEAF_CONDITION_TYPES else "unknown"


Condition = Annotated[
    Union[
        Annotated[StatCondition, Tag("stat")],
        Annotated[FlagCondition, Tag("flag")],
        Annotated[SceneVisitedCondition, Tag("scene_visited")],
        Annotated[HasItemCondition, Tag("has_item")],
        Annotated[ItemCountCondition, Tag("item_count")],
        Annotated[InventoryCategoryCondition, Tag("inventory_category")],
        Annotated[InventoryTotalCondition, Tag("inventory_total")],
        Annotated[InventoryWeightCondition, Tag("inventory_weight")],
        Annotated[InventoryValueCondition, Tag("inventory_value")],
        Annotated[ChoiceMadeCondition, Tag("choice_made")],
        Annotated[ChoiceMadeCountCondition, Tag("choice_made_count")],
        Annotated[SceneVisitCountCondition, Tag("scene_visit_count")],
        Annotated[TotalChoicesCondition, Tag("total_choices")],
        Annotated[UniqueScenesVisitedCondition, Tag("unique_scenes_visited")],
        Annotated[ConditionGroup, Tag("group")],
        Annotated[UnknownCondition, Tag("unknown")],
    ],
    Discriminator(_condition_tag),
]

ConditionGroup.model_rebuild()


def _as_list(value: Any) -> Any:
    """Accept a single node where a list of nodes is expected."""
    if value is None:
        return []
    if isinstance(value, (dict, BaseModel)):
        return [value]
    return value


# A condition tree on a choice is a list of nodes joined with AND.
ConditionTree = Annotated[list[Condition], BeforeValidator(_as_list)]


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------

class ActionBase(DocumentModel):
    key: str | None = None
    value: Any = None
    id: str | None = None
    one_time: bool = False
    conditions: ConditionTree = Field(default_factory=list)


class SetStatAction(ActionBase):
    type: Literal["set_stat"] = "set_stat"


class AddStatAction(ActionBase):
    type: Literal["add_stat"] = "add_stat"


class MultiplyStatAction(ActionBase):
    type: Literal["multiply_stat"] = "multiply_stat"


class SetFlagAction(ActionBase):
    type: Literal["set_flag"] = "set_flag"


class ToggleFlagAction(ActionBase):
    type: Literal["toggle_flag"] = "toggle_flag"


class AddInventoryAction(ActionBase):
    type: Literal["add_inventory"] = "add_inventory"


class RemoveInventoryAction(ActionBase):
    type: Literal["remove_inventory"] = "remove_inventory"


class SetInventoryAction(ActionBase):
    type: Literal["set_inventory"] = "set_inventory"


class AddAchievementAction(ActionBase):
    type: Literal["add_achievement"] = "add_achievement"


class UnlockSecretAction(ActionBase):
    type: Literal["unlock_secret"] = "unlock_secret"


class UnknownAction(ActionBase):
    """Any action whose ``type`` is not recognised. Executes as a no-op."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    type: str | None = None


ACTION_TYPES: dict[str, type[ActionBase]] = {
    "set_stat": SetStatAction,
    "add_stat": AddStatAction,
    "multiply_stat": MultiplyStatAction,
    "set_flag": SetFlagAction,
    "toggle_flag": ToggleFlagAction,
    "add_inventory": AddInventoryAction,
    "remove_inventory": RemoveInventoryAction,
    "set_inventory": SetInventoryAction,
    "add_achievement": AddAchievementAction,
    "unlock_secret": UnlockSecretAction,
}


def _action_tag(data: Any) -> str:
    tag = data.get("type") if isinstance(data, dict) else getattr(data, "type", None)
    return tag if tag in ACTION_TYPES else "unknown"


Action = Annotated[
    Union[
        Annotated[SetStatAction, Tag("set_stat")],
        Annotated[AddStatAction, Tag("add_stat")],
        Annotated[MultiplyStatAction, Tag("multiply_stat")],
        Annotated[SetFlagAction, Tag("set_flag")],
        Annotated[ToggleFlagAction, Tag("toggle_flag")],
        Annotated[AddInventoryAction, Tag("add_inventory")],
        Annotated[RemoveInventoryAction, Tag("remove_inventory")],
        Annotated[SetInventoryAction, Tag("set_inventory")],
        Annotated[AddAchievementAction, Tag("add_achievement")],
        Annotated[UnlockSecretAction, Tag("unlock_secret")],
        Annotated[UnknownAction, Tag("unknown")],
    ],
    Discriminator(_action_tag),
]


# ---------------------------------------------------------------------------
# Document
# ---------------------------------------------------------------------------

InputType = Literal["static", "input_text", "input_number", "input_choice"]


class InputOption(DocumentModel):
    id: str | None = None
    label: str = ""
    value: Any = None


class InputConfig(DocumentModel):
    variable: str | None = None
    min: float | None = None
    max: float | None = None
    options: list[InputOption] = Field(default_factory=list)
    default: Any = None
    max_length: int | None = None


class Choice(DocumentModel):
    """An edge in the scene graph (or a self-loop when ``is_fake``)."""

    id: str
    text: str = ""
    target_scene_id: str | None = None
    is_hidden: bool = False
    is_locked: bool = False
    is_secret: bool = False
    is_fake: bool = False
    conditions: ConditionTree = Field(default_factory=list)  # visibility / discovery
    requirements: ConditionTree = Field(default_factory=list)  # selectability gate
    selectable_if: ConditionTree = Field(default_factory=list)
    actions: list[Action] = Field(default_factory=list)
    input_type: InputType = "static"
    input_config: InputConfig = Field(default_factory=InputConfig)
    one_time: bool = False
    max_uses: int = 0  # 0 = unlimited
    cooldown: float = 0  # milliseconds


class Scene(DocumentModel):
    id: str
    title: str = ""
    content: str = ""
    choices: list[Choice] = Field(default_factory=list)
    on_enter: list[Action] = Field(default_factory=list)
    on_exit: list[Action] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)

    def choice(self, choice_id: str) -> Choice | None:
        for choice in self.choices:
            if choice.id == choice_id:
                return choice
        return None


class StatDefinition(DocumentModel):
    id: str
    name: str = ""
    type: str = "number"
    default_value: Any = None
    min: float | None = None
    max: float | None = None
    category: str = "general"
    description: str = ""
    unit: str = ""
    hidden: bool = False
    exportable: bool = True

    @model_validator(mode="before")
    @classmethod
    def _legacy_no_export(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("noExport") and "exportable" not in data:
            data = {**data, "exportable": False}
        return data


class FlagDefinition(DocumentModel):
    id: str
    name: str = ""
    default: bool = False
    exportable: bool = True


class ItemEffect(DocumentModel):
    type: str  # stat_add | stat_set | flag_set
    target: str
    value: Any = None


class InventoryItemDefinition(DocumentModel):
    id: str
    name: str
    description: str = ""
    category: str = "misc"
    max_stack: int | None = Field(default=None, ge=1)
    value: float = 0
    weight: float = 0
    consumable: bool = False
    hidden: bool = False
    unique: bool = False
    exportable: bool = True
    effects: list[ItemEffect] = Field(default_factory=list)

    @model_validator(mode="after")
    def _default_max_stack(self) -> InventoryItemDefinition:
        if self.max_stack is None:
            self.max_stack = 1 if self.unique else 99
        return self


class AchievementDefinition(DocumentModel):
    id: str
    name: str = ""
    description: str = ""
    category: str = ""
    rewards: list[Action] = Field(default_factory=list)


class Adventure(DocumentModel):
    """The static document. Treated as read-only once loaded."""

    id: str = ""
    title: str = ""
    author: str = ""
    version: str = ""
    description: str = ""
    start_scene_id: str
    scenes: list[Scene]
    stats: list[StatDefinition] = Field(default_factory=list)
    flags: list[FlagDefinition] = Field(default_factory=list)
    inventory: list[InventoryItemDefinition] = Field(default_factory=list)
    achievements: list[AchievementDefinition] = Field(default_factory=list)

    _scene_index: dict[str, Scene] = PrivateAttr(default_factory=dict)

    def model_post_init(self, __context: Any) -> None:
        # First definition wins on duplicate ids; the validator reports them.
        for scene in self.scenes:
            self._scene_index.setdefault(scene.id, scene)

    def scene(self, scene_id: str | None) -> Scene | None:
        if scene_id is None:
            return None
        return self._scene_index.get(scene_id)

    def scene_ids(self) -> list[str]:
        return [s.id for s in self.scenes]

    def achievement(self, achievement_id: str) -> AchievementDefinition | None:
        for achievement in self.achievements:
            if achievement.id == achievement_id:
                return achievement
        return None


# ---------------------------------------------------------------------------
# Runtime records
# ---------------------------------------------------------------------------

class ChoiceRecord(DocumentModel):
    scene_id: str
    choice_id: str
    input_value: Any = None
    timestamp: float


class SecretDiscovery(DocumentModel):
    choice_id: str
    scene_id: str
    choice_text: str = ""
    timestamp: float


class AchievementRecord(DocumentModel):
    id: str
    timestamp: float


class StatChange(DocumentModel):
    """One audit-history entry. Exactly one of stat_id / flag_id is set."""

    stat_id: str | None = None
    flag_id: str | None = None
    old_value: Any = None
    new_value: Any = None
    delta: float | None = None
    timestamp: float


class InventoryEntry(DocumentModel):
    quantity: int
    acquired_at: float


class SaveSnapshot(DocumentModel):
    """The full serializable runtime state of one playthrough."""

    current_scene_id: str | None = None
    visited_scenes: list[str] = Field(default_factory=list)
    choice_history: list[ChoiceRecord] = Field(default_factory=list)
    secrets_discovered: list[SecretDiscovery] = Field(default_factory=list)
    secret_choices_available: list[str] = Field(default_factory=list)
    stats: dict[str, Any] = Field(default_factory=dict)
    flags: dict[str, Any] = Field(default_factory=dict)
    inventory: dict[str, InventoryEntry] = Field(default_factory=dict)
    fired_actions: list[str] = Field(default_factory=list)
    achievements: list[AchievementRecord] = Field(default_factory=list)
    scene_visit_counts: dict[str, int] = Field(default_factory=dict)
