"""Rule Matcher — automation registry and alert-to-automation matching.

Automations are kept in registration order so that
``find_matching_automations`` is deterministic. All conditions of one
automation are ANDed. Registration validates the whole definition first;
nothing is stored when any part is rejected.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping

from src.contracts.alert import Alert
from src.contracts.automation import Action, Automation
from src.contracts.errors import ValidationError
from src.contracts.pattern import DetectionResult
from src.rules.conditions import Condition, EvaluationContext, parse_condition
from src.shared.config_loader import load_yaml

log = logging.getLogger(__name__)


class RuleMatcher:
    """Registry of Automations plus condition evaluation.

    Args:
        window_provider: returns the alert window trend conditions read.
        detection_provider: returns the last pattern detection result.
    """

    def __init__(
        self,
        window_provider: Callable[[], list[Alert]] | None = None,
        detection_provider: Callable[[], DetectionResult] | None = None,
    ) -> None:
        self._automations: dict[str, Automation] = {}
        self._window_provider = window_provider or list
        self._detection_provider = detection_provider or DetectionResult

    # ── registration ──────────────────────────────────────────────────────

    def register_automation(
        self,
        conditions: Iterable[Mapping[str, Any] | Condition],
        workflow: Iterable[Mapping[str, Any] | Action],
        *,
        automation_id: str | None = None,
        name: str = "",
        automation_type: str = "default",
        depends_on: Iterable[str] = (),
    ) -> str:
        """Validate and store an automation; return its id.

        Raises:
            ValidationError: bad condition/action, duplicate id, empty
                workflow or unknown dependency.
        """
        automation = self._build(
            automation_id or uuid.uuid4().hex[:12],
            conditions,
            workflow,
            name=name,
            automation_type=automation_type,
            depends_on=depends_on,
        )
        if automation.id in self._automations:
            raise ValidationError(f"Automation '{automation.id}' already registered")
        self._automations[automation.id] = automation
        log.info("Registered automation %s (%d conditions, %d steps)",
                 automation.describe(), len(automation.conditions), len(automation.workflow))
        return automation.id

    def register_from_dict(self, raw: Mapping[str, Any]) -> str:
        """Register one automation from its YAML/JSON definition."""
        return self.register_automation(
            raw.get("conditions") or [],
            raw.get("workflow") or raw.get("actions") or [],
            automation_id=raw.get("id"),
            name=str(raw.get("name") or ""),
            automation_type=str(raw.get("type") or "default"),
            depends_on=raw.get("depends_on") or (),
        )

    def update_automation(self, automation_id: str, **updates: Any) -> Automation:
        """Replace an automation's definition and bump its version."""
        current = self.get_automation(automation_id)
        candidate = self._build(
            automation_id,
            updates.get("conditions", current.conditions),
            updates.get("workflow", current.workflow),
            name=updates.get("name", current.name),
            automation_type=updates.get("automation_type", current.type),
            depends_on=updates.get("depends_on", current.depends_on),
        )
        updated = replace(candidate, version=current.version + 1)
        self._automations[automation_id] = updated
        log.info("Updated automation %s to version %d", automation_id, updated.version)
        return updated

    def delete_automation(self, automation_id: str) -> None:
        """Remove an automation.

        Raises:
            ValidationError: unknown id, or other automations depend on it.
        """
        self.get_automation(automation_id)
        dependents = self.find_dependents(automation_id)
        if dependents:
            raise ValidationError(
                f"Automation '{automation_id}' has dependents: {', '.join(a.id for a in dependents)}"
            )
        del self._automations[automation_id]
        log.info("Deleted automation %s", automation_id)

    def find_dependents(self, automation_id: str) -> list[Automation]:
        return [a for a in self._automations.values() if automation_id in a.depends_on]

    def _build(
        self,
        automation_id: str,
        conditions: Iterable[Mapping[str, Any] | Condition],
        workflow: Iterable[Mapping[str, Any] | Action],
        *,
        name: str,
        automation_type: str,
        depends_on: Iterable[str],
    ) -> Automation:
        errors: list[str] = []
        parsed_conditions: list[Condition] = []
        for idx, raw in enumerate(conditions):
            try:
                parsed_conditions.append(parse_condition(raw))
            except ValidationError as exc:
                errors.append(f"condition {idx}: {exc}")

        steps: list[Action] = []
        for idx, raw in enumerate(workflow):
            try:
                steps.append(raw if isinstance(raw, Action) else Action.from_dict(raw))
            except ValidationError as exc:
                errors.append(f"action {idx}: {exc}")
        if not steps and not errors:
            errors.append("workflow must contain at least one action")

        deps = tuple(depends_on)
        for dep in deps:
            if dep == automation_id:
                errors.append("automation cannot depend on itself")
            elif dep not in self._automations:
                errors.append(f"missing dependency: {dep}")

        if errors:
            raise ValidationError(f"Invalid automation '{automation_id}': {'; '.join(errors)}", errors)

        return Automation(
            id=automation_id,
            conditions=tuple(parsed_conditions),
            workflow=tuple(steps),
            name=name or automation_id,
            type=automation_type or "default",
            depends_on=deps,
        )

    # ── matching ──────────────────────────────────────────────────────────

    def context(self) -> EvaluationContext:
        return EvaluationContext(window=self._window_provider(), detection=self._detection_provider())

    def matches(self, alert: Alert, automation: Automation, ctx: EvaluationContext | None = None) -> bool:
        ctx = ctx or self.context()
        return all(c.evaluate(alert, ctx) for c in automation.conditions)

    def find_matching_automations(self, alert: Alert) -> list[Automation]:
        """Automations whose conditions all hold for *alert*, in registration order."""
        ctx = self.context()
        matched = [a for a in self._automations.values() if self.matches(alert, a, ctx)]
        log.debug("Alert %s (%s/%s) matched %d automation(s)",
                  alert.id, alert.type, alert.priority, len(matched))
        return matched

    # ── reads ─────────────────────────────────────────────────────────────

    def get_automation(self, automation_id: str) -> Automation:
        try:
            return self._automations[automation_id]
        except KeyError:
            raise ValidationError(f"Automation not found: {automation_id}") from None

    def get_automations(self) -> list[Automation]:
        return list(self._automations.values())


def load_automations(path: str | Path, matcher: RuleMatcher) -> list[str]:
    """Register every automation listed under ``automations:`` in a YAML file.

    An automation's ``workflow`` may name an entry of the top-level
    ``workflows:`` mapping instead of listing its steps inline.
    Definitions are registered in file order, so a ``depends_on`` entry
    must refer to an automation listed earlier.
    """
    cfg = load_yaml(path)
    workflows = cfg.get("workflows") or {}
    ids: list[str] = []
    for raw in cfg.get("automations") or []:
        steps = raw.get("workflow")
        if isinstance(steps, str):
            if steps not in workflows:
                raise ValidationError(f"Automation '{raw.get('id')}' references unknown workflow '{steps}'")
            raw = {**raw, "workflow": workflows[steps]}
        ids.append(matcher.register_from_dict(raw))
    log.info("Loaded %d automations from %s", len(ids), path)
    return ids
