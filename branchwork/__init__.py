"""Branchwork — runtime rules for choice-based adventure documents."""

from branchwork.choices import ChoiceClassifier, ChoiceEvaluation, ChoiceKind, ChoiceState, ChoiceView
from branchwork.conditions import ConditionEvaluator, PlayHistory
from branchwork.engine import ActionResult, AdventureLoadError, EngineStatus, StoryEngine
from branchwork.inventory import InventoryResult, InventoryStore
from branchwork.models import Adventure, SaveSnapshot
from branchwork.stats import StatResult, StatStore, StatTypeRegistry
from branchwork.text import ContentError
from branchwork.validation import (
    DocumentValidator,
    HttpValidator,
    PermissiveValidator,
    ValidationReport,
    ValidationServiceError,
)

__all__ = [
    "ActionResult",
    "Adventure",
    "AdventureLoadError",
    "ChoiceClassifier",
    "ChoiceEvaluation",
    "ChoiceKind",
    "ChoiceState",
    "ChoiceView",
    "ConditionEvaluator",
    "ContentError",
    "DocumentValidator",
    "EngineStatus",
    "HttpValidator",
    "InventoryResult",
    "InventoryStore",
    "PermissiveValidator",
    "PlayHistory",
    "SaveSnapshot",
    "StatResult",
    "StatStore",
    "StatTypeRegistry",
    "StoryEngine",
    "ValidationReport",
    "ValidationServiceError",
]
