"""Document validation — the collaborator the engine consults at load time.

Every validator matches the protocol:

    async def validate(adventure, *, scope, enable_fixes) -> ValidationReport

Three implementations are provided:

    DocumentValidator    — local rules (dangling targets, bad conditions,
                           duplicate ids, unknown actions ...). Can return a
                           fixed copy of the document.
    HttpValidator        — POSTs the document to a remote validation service.
    PermissiveValidator  — accepts everything. Useful when a document is
                           trusted or validation is switched off.

`scope="runtime"` runs only the rules that protect play; `scope="full"` also
reports authoring problems such as unreachable scenes.
"""

from __future__ import annotations

import logging
from typing import Literal, Protocol

import httpx
from pydantic import Field, ValidationError

from branchwork.conditions import check_condition
from branchwork.inventory import TOTAL_ITEMS_STAT
from branchwork.models import (
    AddAchievementAction,
    AddInventoryAction,
    Adventure,
    DocumentModel,
    RemoveInventoryAction,
    Scene,
    SetInventoryAction,
    UnknownAction,
)

logger = logging.getLogger(__name__)

Severity = Literal["info", "warning", "error", "critical"]
Scope = Literal["runtime", "full"]

CRITICAL_ERROR_COUNT = 5
WARNING_SEVERITY_COUNT = 10

_ITEM_ACTIONS = (AddInventoryAction, RemoveInventoryAction, SetInventoryAction)
_ITEM_CONDITIONS = ("has_item", "item_count")


class ValidationIssue(DocumentModel):
    code: str
    message: str
    scene_id: str | None = None
    choice_id: str | None = None


class ValidationReport(DocumentModel):
    errors: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[ValidationIssue] = Field(default_factory=list)
    info: list[ValidationIssue] = Field(default_factory=list)
    severity: Severity = "info"
    is_valid: bool = True
    fixes: list[str] = Field(default_factory=list)
    fixed: Adventure | None = None


def compute_severity(error_count: int, warning_count: int) -> Severity:
    if error_count > CRITICAL_ERROR_COUNT:
        return "critical"
    if error_count:
        return "error"
    if warning_count > WARNING_SEVERITY_COUNT:
        return "warning"
    return "info"


# ---------------------------------------------------------------------------
# Protocol: every validator implementation must match this signature
# ---------------------------------------------------------------------------

class Validator(Protocol):
    async def validate(
        self, adventure: Adventure, *, scope: Scope = "runtime", enable_fixes: bool = False,
    ) -> ValidationReport: ...


# ---------------------------------------------------------------------------
# DocumentValidator: local rules
# ---------------------------------------------------------------------------

class DocumentValidator:
    """Checks a document against the rules the engine relies on."""

    async def validate(
        self, adventure: Adventure, *, scope: Scope = "runtime", enable_fixes: bool = False,
    ) -> ValidationReport:
        return self.check(adventure, scope=scope, enable_fixes=enable_fixes)

    def check(
        self, adventure: Adventure, *, scope: Scope = "runtime", enable_fixes: bool = False,
    ) -> ValidationReport:
        """Synchronous form of validate(); the rules never need to await."""
        report = ValidationReport()
        scene_ids = set(adventure.scene_ids())
        item_ids = {item.id for item in adventure.inventory}
        achievement_ids = {a.id for a in adventure.achievements}
        stat_ids = {s.id for s in adventure.stats}

        if adventure.scene(adventure.start_scene_id) is None:
            report.errors.append(ValidationIssue(
                code="missing_start_scene",
                message=f"Start scene '{adventure.start_scene_id}' does not exist",
            ))

        seen_scenes: set[str] = set()
        for scene in adventure.scenes:
            if scene.id in seen_scenes:
                report.errors.append(ValidationIssue(
                    code="duplicate_scene", message=f"Duplicate scene id '{scene.id}'",
                    scene_id=scene.id,
                ))
            seen_scenes.add(scene.id)
            self._check_scene(scene, report, scene_ids, item_ids, achievement_ids, stat_ids, scope)

        total_items = next((s for s in adventure.stats if s.id == TOTAL_ITEMS_STAT), None)
        if total_items is not None and (
            total_items.type != "number"
            or total_items.min is not None
            or total_items.max is not None
        ):
            report.warnings.append(ValidationIssue(
                code="total_items_restricted",
                message=(
                    f"Stat '{TOTAL_ITEMS_STAT}' mirrors the inventory total and should be an "
                    "unbounded number"
                ),
            ))

        if scope == "full":
            for scene_id in sorted(scene_ids - reachable_scenes(adventure)):
                report.warnings.append(ValidationIssue(
                    code="unreachable_scene",
                    message=f"Scene '{scene_id}' cannot be reached from the start scene",
                    scene_id=scene_id,
                ))

        if enable_fixes:
            report.fixed, report.fixes = apply_fixes(adventure)

        report.severity = compute_severity(len(report.errors), len(report.warnings))
        report.is_valid = not report.errors
        return report

    def _check_scene(
        self, scene: Scene, report: ValidationReport, scene_ids: set[str],
        item_ids: set[str], achievement_ids: set[str], stat_ids: set[str], scope: Scope,
    ) -> None:
        for label, actions in (("onEnter", scene.on_enter), ("onExit", scene.on_exit)):
            self._check_actions(
                actions, report, scene.id, None, item_ids, achievement_ids, stat_ids, scope, label,
            )

        seen_choices: set[str] = set()
        for choice in scene.choices:
            where = {"scene_id": scene.id, "choice_id": choice.id}
            if choice.id in seen_choices:
                report.errors.append(ValidationIssue(
                    code="duplicate_choice",
                    message=f"Duplicate choice id '{choice.id}' in scene '{scene.id}'", **where,
                ))
            seen_choices.add(choice.id)

            if not choice.is_fake:
                if choice.target_scene_id is None:
                    report.warnings.append(ValidationIssue(
                        code="missing_target",
                        message=f"Choice '{choice.id}' has no target scene", **where,
                    ))
                elif choice.target_scene_id not in scene_ids:
                    report.errors.append(ValidationIssue(
                        code="dangling_target",
                        message=(
                            f"Choice '{choice.id}' targets missing scene "
                            f"'{choice.target_scene_id}'"
                        ),
                        **where,
                    ))

            for tree in (choice.conditions, choice.requirements, choice.selectable_if):
                for condition in tree:
                    self._check_condition(condition, report, item_ids, where)

            if choice.input_type != "static" and not choice.input_config.variable:
                report.warnings.append(ValidationIssue(
                    code="input_without_variable",
                    message=f"Input choice '{choice.id}' has no variable to store into",
                    **where,
                ))
            if choice.input_type == "input_choice" and not choice.input_config.options:
                report.warnings.append(ValidationIssue(
                    code="input_without_options",
                    message=f"Input choice '{choice.id}' has no options", **where,
                ))

            self._check_actions(
                choice.actions, report, scene.id, choice.id,
                item_ids, achievement_ids, stat_ids, scope, "actions",
            )

    def _check_condition(
        self, condition, report: ValidationReport, item_ids: set[str], where: dict,
    ) -> None:
        problem = check_condition(condition)
        if problem:
            report.errors.append(ValidationIssue(code="invalid_condition", message=problem, **where))
            return
        if getattr(condition, "type", None) in _ITEM_CONDITIONS and condition.key not in item_ids:
            report.warnings.append(ValidationIssue(
                code="undefined_item",
                message=f"Condition refers to undefined item '{condition.key}'", **where,
            ))

    def _check_actions(
        self, actions, report: ValidationReport, scene_id: str, choice_id: str | None,
        item_ids: set[str], achievement_ids: set[str], stat_ids: set[str],
        scope: Scope, label: str,
    ) -> None:
        where = {"scene_id": scene_id, "choice_id": choice_id}
        for action in actions:
            if isinstance(action, UnknownAction):
                report.warnings.append(ValidationIssue(
                    code="unknown_action",
                    message=f"Unknown action type '{action.type}' in {label}", **where,
                ))
                continue
            if action.one_time and not action.id:
                report.warnings.append(ValidationIssue(
                    code="one_time_without_id",
                    message=f"One-time {action.type} action in {label} has no id", **where,
                ))
            for condition in action.conditions:
                self._check_condition(condition, report, item_ids, where)

            if isinstance(action, _ITEM_ACTIONS) and action.key not in item_ids:
                report.warnings.append(ValidationIssue(
                    code="undefined_item",
                    message=f"{action.type} refers to undefined item '{action.key}'", **where,
                ))
            elif isinstance(action, AddAchievementAction) and action.key not in achievement_ids:
                report.warnings.append(ValidationIssue(
                    code="undefined_achievement",
                    message=f"Achievement '{action.key}' is not defined", **where,
                ))
            elif (
                scope == "full"
                and action.type in ("set_stat", "add_stat", "multiply_stat")
                and action.key not in stat_ids
            ):
                report.info.append(ValidationIssue(
                    code="undefined_stat",
                    message=f"Stat '{action.key}' is not defined; it will be stored untyped",
                    **where,
                ))


def reachable_scenes(adventure: Adventure) -> set[str]:
    """Scene ids reachable from the start scene through real choices."""
    seen: set[str] = set()
    pending = [adventure.start_scene_id]
    while pending:
        scene = adventure.scene(pending.pop())
        if scene is None or scene.id in seen:
            continue
        seen.add(scene.id)
        for choice in scene.choices:
            if not choice.is_fake and choice.target_scene_id:
                pending.append(choice.target_scene_id)
    return seen


def apply_fixes(adventure: Adventure) -> tuple[Adventure, list[str]]:
    """Return a fixed copy of the document and a description of each fix.

    Dangling targets become fake choices; one-time actions get generated ids.
    """
    fixed = Adventure.model_validate(adventure.model_dump(by_alias=True))
    scene_ids = set(fixed.scene_ids())
    fixes: list[str] = []

    for scene in fixed.scenes:
        for label, actions in (("on_enter", scene.on_enter), ("on_exit", scene.on_exit)):
            fixes.extend(_assign_action_ids(actions, f"{scene.id}.{label}"))
        for choice in scene.choices:
            if (
                not choice.is_fake
                and choice.target_scene_id is not None
                and choice.target_scene_id not in scene_ids
            ):
                fixes.append(
                    f"Choice '{choice.id}' in '{scene.id}' targeted missing scene "
                    f"'{choice.target_scene_id}'; made it a fake choice"
                )
                choice.is_fake = True
                choice.target_scene_id = None
            fixes.extend(_assign_action_ids(choice.actions, f"{scene.id}.{choice.id}"))

    for achievement in fixed.achievements:
        fixes.extend(_assign_action_ids(achievement.rewards, f"achievement.{achievement.id}"))
    return fixed, fixes


def _assign_action_ids(actions, prefix: str) -> list[str]:
    fixes = []
    for index, action in enumerate(actions):
        if action.one_time and not action.id:
            action.id = f"{prefix}.{index}"
            fixes.append(f"Assigned id '{action.id}' to one-time {action.type} action")
    return fixes


# ---------------------------------------------------------------------------
# HttpValidator: remote validation service
# ---------------------------------------------------------------------------

class HttpValidator:
    """Async HTTP client for a remote validation service.

    POST {base_url}/validate  {"adventure": ..., "scope": ..., "enableFixes": ...}
    Response: a ValidationReport in camelCase JSON.

    Args:
        base_url: Base URL of the service, e.g. "http://localhost:8100".
        api_key:  Bearer token, or empty string if not required.
        timeout:  HTTP timeout in seconds. Defaults to 30.
    """

    def __init__(self, base_url: str, api_key: str = "", timeout: float = 30.0) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    async def validate(
        self, adventure: Adventure, *, scope: Scope = "runtime", enable_fixes: bool = False,
    ) -> ValidationReport:
        url = f"{self._base_url}/validate"
        body = {
            "adventure": adventure.model_dump(mode="json", by_alias=True),
            "scope": scope,
            "enableFixes": enable_fixes,
        }
        logger.debug("validate adventure=%s url=%s", adventure.id, url)

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(url, json=body, headers=self._headers())
                resp.raise_for_status()
        except httpx.ConnectError as e:
            raise ValidationServiceError(
                f"Cannot connect to validation service at {self._base_url}"
            ) from e
        except httpx.HTTPStatusError as e:
            raise ValidationServiceError(
                f"Validation service returned HTTP {e.response.status_code}"
            ) from e
        except httpx.TimeoutException as e:
            raise ValidationServiceError(
                f"Validation service timed out after {self._timeout}s"
            ) from e
        except httpx.HTTPError as e:
            raise ValidationServiceError(f"Validation service request failed: {e}") from e

        try:
            report = ValidationReport.model_validate(resp.json())
        except (ValueError, ValidationError) as e:
            raise ValidationServiceError("Unexpected response from validation service") from e
        logger.debug("validate adventure=%s severity=%s", adventure.id, report.severity)
        return report


# ---------------------------------------------------------------------------
# PermissiveValidator: accepts every document
# ---------------------------------------------------------------------------

class PermissiveValidator:
    async def validate(
        self, adventure: Adventure, *, scope: Scope = "runtime", enable_fixes: bool = False,
    ) -> ValidationReport:
        logger.debug("PermissiveValidator adventure=%s", adventure.id)
        return ValidationReport()


# ---------------------------------------------------------------------------
# ValidationServiceError: raised by HttpValidator for transport failures
# ---------------------------------------------------------------------------

class ValidationServiceError(RuntimeError):
    """Raised when the validation service cannot be reached or returns an error."""
