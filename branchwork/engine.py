"""Story engine — runs one playthrough of an adventure.

The engine owns every piece of runtime state: the stat and inventory stores,
the visited-scene list, the choice history, discovered secrets, fired
one-time actions and unlocked achievements. The condition evaluator and the
choice classifier are handed references to that state; nothing is shared
between engines.

Typical use:

    engine = StoryEngine()
    await engine.load_adventure(document)
    for view in engine.get_current_choices():
        ...
    engine.make_choice("open-door")

Entering a scene runs, in order: the old scene's onExit actions, the pointer
swap, the visited bookkeeping, the new scene's onEnter actions (on every
visit, not just the first), a secret-discovery scan of the new scene and a
cache flush.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from enum import Enum
from typing import Any

from pydantic import BaseModel, ValidationError

from branchwork.choices import ChoiceClassifier, ChoiceEvaluation, ChoiceView, usage_lock
from branchwork.conditions import DEFAULT_MAX_CACHE_SIZE, ConditionEvaluator, PlayHistory
from branchwork.inventory import InventoryResult, InventoryStore
from branchwork.models import (
    AchievementRecord,
    ActionBase,
    Adventure,
    Choice,
    ChoiceRecord,
    SaveSnapshot,
    Scene,
    SecretDiscovery,
    SetStatAction,
    UnknownAction,
)
from branchwork.stats import StatStore, StatTypeRegistry, to_number
from branchwork.text import ContentError, build_context, make_helpers, render_text
from branchwork.validation import DocumentValidator, ValidationReport, Validator

logger = logging.getLogger(__name__)

DEFAULT_NUMBER_MIN = 0
DEFAULT_NUMBER_MAX = 100


class AdventureLoadError(ValueError):
    """Raised when a document can't be played: bad structure or critical validation."""


class EngineStatus(str, Enum):
    UNLOADED = "unloaded"
    LOADED = "loaded"
    TRANSITIONING = "transitioning"


class ActionResult(BaseModel):
    type: str | None
    key: str | None = None
    success: bool
    skipped: bool = False
    message: str = ""


class StoryEngine:
    def __init__(
        self,
        *,
        validator: Validator | None = None,
        stat_types: StatTypeRegistry | None = None,
        max_cache_size: int = DEFAULT_MAX_CACHE_SIZE,
        history_limit: int = 500,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.validator = validator or DocumentValidator()
        self.stat_types = stat_types or StatTypeRegistry()
        self.max_cache_size = max_cache_size
        self.history_limit = history_limit
        self._clock = clock

        self.status = EngineStatus.UNLOADED
        self.adventure: Adventure | None = None
        self.last_validation: ValidationReport | None = None
        self._reset(None)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def load_adventure(self, document: Adventure | dict[str, Any]) -> Adventure:
        """Validate a document and start a fresh playthrough at its start scene."""
        if isinstance(document, Adventure):
            adventure = document
        else:
            try:
                adventure = Adventure.model_validate(document)
            except ValidationError as e:
                raise AdventureLoadError(f"Invalid adventure document: {e}") from e

        if adventure.scene(adventure.start_scene_id) is None:
            raise AdventureLoadError(
                f"Start scene '{adventure.start_scene_id}' does not exist"
            )

        report = await self.validator.validate(adventure, scope="runtime", enable_fixes=False)
        self.last_validation = report
        if report.severity == "critical":
            summary = "; ".join(issue.message for issue in report.errors[:3])
            raise AdventureLoadError(
                f"Adventure '{adventure.id}' failed validation with "
                f"{len(report.errors)} errors: {summary}"
            )
        for issue in report.errors:
            logger.warning("Validation error in %s: %s", adventure.id, issue.message)
        for issue in report.warnings:
            logger.info("Validation warning in %s: %s", adventure.id, issue.message)

        self._reset(adventure)
        self.status = EngineStatus.LOADED
        logger.info("Loaded adventure %s (%d scenes)", adventure.id, len(adventure.scenes))
        self.navigate_to_scene(adventure.start_scene_id)
        return adventure

    def _reset(self, adventure: Adventure | None) -> None:
        self.adventure = adventure
        self.current_scene: Scene | None = None
        self.stats = StatStore(
            adventure.stats if adventure else (),
            adventure.flags if adventure else (),
            registry=self.stat_types,
            history_limit=self.history_limit,
            clock=self._clock,
        )
        self.inventory = InventoryStore(
            adventure.inventory if adventure else (), self.stats, clock=self._clock,
        )
        self.inventory.sync_total_items()
        self.history = PlayHistory()
        self.evaluator = ConditionEvaluator(
            self.stats, self.inventory, self.history, max_cache_size=self.max_cache_size,
        )
        self.classifier = ChoiceClassifier(self.evaluator)
        self.secrets_discovered: list[SecretDiscovery] = []
        self.secret_choices_available: set[str] = set()
        self.fired_actions: set[str] = set()
        self.achievements: list[AchievementRecord] = []
        self._unannounced: set[str] = set()
        self.start_time = self._clock()

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    def navigate_to_scene(self, scene_id: str) -> Scene | None:
        scene = self.adventure.scene(scene_id) if self.adventure else None
        if scene is None:
            logger.error("Scene %r not found", scene_id)
            return None

        self.status = EngineStatus.TRANSITIONING
        try:
            if self.current_scene is not None:
                self.execute_actions(self.current_scene.on_exit)

            self.current_scene = scene
            if scene.id not in self.history.visited_scenes:
                self.history.visited_scenes.append(scene.id)
            counts = self.history.scene_visit_counts
            counts[scene.id] = counts.get(scene.id, 0) + 1
            logger.info("Entered scene %s (visit %d)", scene.id, counts[scene.id])

            self.execute_actions(scene.on_enter)
            self.discover_secret_choices()
            self._invalidate()
        finally:
            self.status = EngineStatus.LOADED
        return scene

    def discover_secret_choices(self) -> list[str]:
        """Record every secret in the current scene that has just become discoverable."""
        if self.current_scene is None:
            return []
        found = []
        for choice in self.current_scene.choices:
            if not choice.is_secret or choice.id in self.secret_choices_available:
                continue
            evaluation = self.classifier.classify(choice, self.secret_choices_available)
            if evaluation.should_record_discovery:
                self._record_discovery(choice, self.current_scene.id)
                found.append(choice.id)
        return found

    def _record_discovery(self, choice: Choice, scene_id: str) -> None:
        self.secret_choices_available.add(choice.id)
        self.secrets_discovered.append(SecretDiscovery(
            choice_id=choice.id, scene_id=scene_id, choice_text=choice.text,
            timestamp=self._clock(),
        ))
        self._unannounced.add(choice.id)
        logger.info("Discovered secret choice %s in %s", choice.id, scene_id)

    # ------------------------------------------------------------------
    # Choices
    # ------------------------------------------------------------------

    def evaluate_choice(self, choice: Choice) -> ChoiceEvaluation:
        """Classify a choice and apply its usage limits."""
        evaluation = self.classifier.classify(choice, self.secret_choices_available)
        if evaluation.is_selectable:
            lock = usage_lock(choice, self.history.choice_history, self._clock())
            if lock is not None:
                reason, remaining_ms = lock
                evaluation.lock(reason)
                evaluation.cooldown_remaining_ms = remaining_ms
        return evaluation

    def get_current_choices(self) -> list[ChoiceView]:
        """Visible choices of the current scene. Hidden ones are never returned."""
        if self.current_scene is None:
            return []
        self.discover_secret_choices()

        views = []
        for choice in self.current_scene.choices:
            evaluation = self.evaluate_choice(choice)
            if not evaluation.is_visible:
                continue
            newly_discovered = choice.id in self._unannounced
            self._unannounced.discard(choice.id)
            views.append(ChoiceView(
                id=choice.id,
                text=self._render(choice.text),
                state=evaluation.state,
                kind=evaluation.kind,
                is_selectable=evaluation.is_selectable,
                reason=evaluation.reason,
                lock_reasons=evaluation.lock_reasons,
                newly_discovered=newly_discovered,
                is_fake=choice.is_fake,
                input_type=choice.input_type,
                input_config=choice.input_config,
                cooldown_remaining_ms=evaluation.cooldown_remaining_ms,
            ))
        return views

    def make_choice(self, choice_id: str, submission: Any = None) -> Scene | None:
        """Take a choice. Returns the scene the player ends up in, or None if rejected."""
        scene = self.current_scene
        if scene is None:
            logger.error("No scene loaded; cannot make choice %r", choice_id)
            return None
        choice = scene.choice(choice_id)
        if choice is None:
            logger.error("Choice %r not found in scene %s", choice_id, scene.id)
            return None

        evaluation = self.evaluate_choice(choice)
        if not evaluation.is_visible:
            logger.warning("Rejected hidden choice %s in %s", choice_id, scene.id)
            return None
        if not evaluation.is_selectable:
            logger.warning("Rejected locked choice %s: %s", choice_id, evaluation.reason)
            return None
        if evaluation.should_record_discovery:
            self._record_discovery(choice, scene.id)

        input_value = None
        if choice.input_type != "static":
            input_value = capture_input(choice, submission)

        self.history.choice_history.append(ChoiceRecord(
            scene_id=scene.id, choice_id=choice.id, input_value=input_value,
            timestamp=self._clock(),
        ))
        logger.info("Choice %s made in %s", choice.id, scene.id)

        variable = choice.input_config.variable
        if choice.input_type != "static" and variable:
            self.execute_actions([SetStatAction(key=variable, value=input_value)])
        self.execute_actions(choice.actions)

        if choice.is_fake or not choice.target_scene_id:
            if not choice.is_fake:
                logger.warning("Choice %s has no target; staying in %s", choice.id, scene.id)
            self.discover_secret_choices()
            self._invalidate()
            return self.current_scene

        entered = self.navigate_to_scene(choice.target_scene_id)
        if entered is None:
            self.discover_secret_choices()
            self._invalidate()
            return self.current_scene
        return entered

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def execute_actions(self, actions: Iterable[ActionBase]) -> list[ActionResult]:
        """Run actions in order. One bad action doesn't stop the rest."""
        results = [self._execute(action) for action in actions]
        if results:
            self._invalidate()
        return results

    def _execute(self, action: ActionBase) -> ActionResult:
        kind = action.type
        key = action.key

        if action.conditions and not self.evaluator.evaluate_all(action.conditions):
            logger.debug("Skipping %s %s: conditions not met", kind, key)
            return ActionResult(
                type=kind, key=key, success=True, skipped=True, message="Conditions not met",
            )

        if action.one_time:
            if not action.id:
                logger.warning("One-time %s action on %r has no id; firing anyway", kind, key)
            elif action.id in self.fired_actions:
                logger.info("Skipping one-time action %s (already fired)", action.id)
                return ActionResult(
                    type=kind, key=key, success=True, skipped=True, message="Already fired",
                )
            else:
                self.fired_actions.add(action.id)

        if isinstance(action, UnknownAction):
            logger.warning("Unknown action type %r", kind)
            return ActionResult(type=kind, key=key, success=False, message="Unknown action type")

        value = action.value
        if kind == "set_stat":
            outcome = self.stats.set_stat(key, value)
        elif kind == "add_stat":
            outcome = self.stats.add_stat(key, value)
        elif kind == "multiply_stat":
            outcome = self.stats.multiply_stat(key, value)
        elif kind == "set_flag":
            outcome = self.stats.set_flag(key, True if value is None else value)
        elif kind == "toggle_flag":
            outcome = self.stats.toggle_flag(key)
        elif kind in ("add_inventory", "remove_inventory", "set_inventory"):
            return self._execute_inventory(kind, key, value)
        elif kind == "add_achievement":
            unlocked = self.unlock_achievement(key)
            return ActionResult(
                type=kind, key=key, success=True,
                message="Achievement unlocked" if unlocked else "Already unlocked",
            )
        else:  # unlock_secret
            unlocked = self.unlock_secret(key)
            return ActionResult(
                type=kind, key=key, success=True,
                message="Secret unlocked" if unlocked else "Already discovered",
            )
        return ActionResult(type=kind, key=key, success=outcome.success, message=outcome.message)

    def _execute_inventory(self, kind: str, item_id: str, value: Any) -> ActionResult:
        quantity = to_number(value)
        if quantity is None:
            if kind == "set_inventory" or value is not None:
                message = f"{kind} on {item_id} needs a numeric quantity, got {value!r}"
                logger.warning(message)
                return ActionResult(type=kind, key=item_id, success=False, message=message)
            quantity = 1

        if kind == "add_inventory":
            result = self.inventory.add_item(item_id, quantity)
        elif kind == "remove_inventory":
            result = self.inventory.remove_item(item_id, quantity)
        else:
            result = self.inventory.set_item_count(item_id, quantity)
        return ActionResult(type=kind, key=item_id, success=result.success, message=result.message)

    def unlock_achievement(self, achievement_id: str) -> bool:
        """Record an achievement once and run its rewards. False if already unlocked."""
        if any(a.id == achievement_id for a in self.achievements):
            return False
        definition = self.adventure.achievement(achievement_id) if self.adventure else None
        if definition is None:
            logger.warning("Achievement %r is not defined", achievement_id)
        self.achievements.append(AchievementRecord(id=achievement_id, timestamp=self._clock()))
        logger.info("Achievement unlocked: %s", achievement_id)
        if definition is not None and definition.rewards:
            self.execute_actions(definition.rewards)
        return True

    def unlock_secret(self, choice_id: str) -> bool:
        """Mark a secret choice discovered without meeting its conditions."""
        if choice_id in self.secret_choices_available:
            return False
        for scene in self.adventure.scenes if self.adventure else ():
            choice = scene.choice(choice_id)
            if choice is not None:
                self._record_discovery(choice, scene.id)
                return True
        logger.warning("unlock_secret: no choice %r in this adventure", choice_id)
        self.secret_choices_available.add(choice_id)
        return True

    def use_item(self, item_id: str, quantity: int = 1) -> InventoryResult:
        result = self.inventory.use_item(item_id, quantity)
        self._invalidate()
        return result

    # ------------------------------------------------------------------
    # Save / load
    # ------------------------------------------------------------------

    def snapshot(self) -> SaveSnapshot:
        return SaveSnapshot(
            current_scene_id=self.current_scene.id if self.current_scene else None,
            visited_scenes=list(self.history.visited_scenes),
            choice_history=[r.model_copy() for r in self.history.choice_history],
            secrets_discovered=[d.model_copy() for d in self.secrets_discovered],
            secret_choices_available=sorted(self.secret_choices_available),
            stats=self.stats.all_stats(),
            flags=self.stats.all_flags(),
            inventory=self.inventory.to_save(),
            fired_actions=sorted(self.fired_actions),
            achievements=[a.model_copy() for a in self.achievements],
            scene_visit_counts=dict(self.history.scene_visit_counts),
        )

    def load_from_save(self, snapshot: SaveSnapshot | dict[str, Any]) -> bool:
        """Restore a snapshot onto the loaded adventure. onEnter is not re-run."""
        if self.adventure is None:
            logger.error("Cannot restore a save before an adventure is loaded")
            return False
        if not isinstance(snapshot, SaveSnapshot):
            try:
                snapshot = SaveSnapshot.model_validate(snapshot)
            except ValidationError as e:
                logger.error("Invalid save snapshot: %s", e)
                return False

        scene = self.adventure.scene(snapshot.current_scene_id)
        if scene is None:
            logger.error("Saved scene %r not found", snapshot.current_scene_id)
            return False

        self.stats.load_from_save(snapshot.stats, snapshot.flags)
        self.inventory.load_from_save(snapshot.inventory)
        self.history.visited_scenes = list(snapshot.visited_scenes)
        self.history.choice_history = list(snapshot.choice_history)
        self.history.scene_visit_counts = dict(snapshot.scene_visit_counts)
        self.secrets_discovered = list(snapshot.secrets_discovered)
        self.secret_choices_available = set(snapshot.secret_choices_available) | {
            d.choice_id for d in snapshot.secrets_discovered
        }
        self.fired_actions = set(snapshot.fired_actions)
        self.achievements = list(snapshot.achievements)
        self._unannounced.clear()

        self.current_scene = scene
        if scene.id not in self.history.visited_scenes:
            self.history.visited_scenes.append(scene.id)
        self.discover_secret_choices()
        self._invalidate()
        logger.info("Restored save at scene %s", scene.id)
        return True

    # ------------------------------------------------------------------
    # Presentation
    # ------------------------------------------------------------------

    def render_current_scene(self) -> dict[str, Any] | None:
        scene = self.current_scene
        if scene is None:
            return None
        choices = self.get_current_choices()
        return {
            "scene_id": scene.id,
            "title": scene.title,
            "content": self._render(scene.content),
            "choices": [view.model_dump(mode="json") for view in choices],
            "stats": self.stats.get_visible_stats(),
            "inventory": self.inventory.get_visible_items(),
        }

    def _render(self, text: str) -> str:
        scene = self.current_scene
        context = build_context(
            self.stats,
            self.inventory,
            scene={"id": scene.id, "title": scene.title} if scene else None,
            adventure={"id": self.adventure.id, "title": self.adventure.title}
            if self.adventure else None,
        )
        try:
            return render_text(text, context, make_helpers(self.stats, self.inventory))
        except ContentError as e:
            logger.warning("Could not render text in %s: %s", scene.id if scene else "-", e)
            return text

    def completion_percentage(self) -> int:
        if not self.adventure or not self.adventure.scenes:
            return 0
        return round(len(self.history.visited_scenes) / len(self.adventure.scenes) * 100)

    def generate_exportable_data(self) -> dict[str, Any]:
        """State worth carrying into another adventure (cross-game saves)."""
        return {
            "stats": self.stats.get_exportable_stats(),
            "flags": self.stats.get_exportable_flags(),
            "inventory": self.inventory.get_exportable_inventory(),
            "achievements": [a.id for a in self.achievements],
            "secrets": [d.choice_id for d in self.secrets_discovered],
            "metadata": {
                "adventure_id": self.adventure.id if self.adventure else None,
                "adventure_title": self.adventure.title if self.adventure else None,
                "completion_percentage": self.completion_percentage(),
                "play_time": round(self._clock() - self.start_time, 3),
                "total_choices_made": len(self.history.choice_history),
                "scenes_visited": len(self.history.visited_scenes),
                "secrets_found": len(self.secrets_discovered),
            },
        }

    def debug_state(self) -> dict[str, Any]:
        scene = self.current_scene
        return {
            "status": self.status.value,
            "adventure_title": self.adventure.title if self.adventure else None,
            "scenes_count": len(self.adventure.scenes) if self.adventure else 0,
            "current_scene_id": scene.id if scene else None,
            "choices_count": len(scene.choices) if scene else 0,
            "visited_scenes_count": len(self.history.visited_scenes),
            "choice_history_count": len(self.history.choice_history),
            "secrets_discovered": len(self.secrets_discovered),
            "inventory_items": self.inventory.total_count(),
            "fired_actions": len(self.fired_actions),
            "completion_percentage": self.completion_percentage(),
            "condition_cache": self.evaluator.cache_stats(),
        }

    def _invalidate(self) -> None:
        self.evaluator.clear_cache()


# ── Input capture ────────────────────────────────────────


def capture_input(choice: Choice, submission: Any) -> Any:
    """Turn a player's raw submission into the value stored for an input choice."""
    config = choice.input_config

    if choice.input_type == "input_text":
        text = "" if submission is None else str(submission).strip()
        if config.max_length is not None:
            text = text[:config.max_length]
        if not text and config.default is not None:
            return str(config.default)
        return text

    if choice.input_type == "input_number":
        low = config.min if config.min is not None else DEFAULT_NUMBER_MIN
        high = config.max if config.max is not None else DEFAULT_NUMBER_MAX
        if low > high:
            low, high = high, low
        number = to_number(submission)
        if number is None:
            number = to_number(config.default)
        if number is None:
            number = low
        number = min(high, max(low, number))
        if isinstance(number, float) and number.is_integer():
            return int(number)
        return number

    if choice.input_type == "input_choice":
        options = config.options
        if not options:
            return config.default
        wanted = None if submission is None else str(submission)
        for option in options:
            candidates = (option.value, option.id, option.label)
            if wanted is not None and any(
                c is not None and str(c) == wanted for c in candidates
            ):
                return option.value if option.value is not None else option.id
        first = options[0]
        return first.value if first.value is not None else first.id

    return submission
