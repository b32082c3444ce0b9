"""Automation, workflow Action and per-step ActionResult models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Mapping

from src.contracts.errors import ValidationError

if TYPE_CHECKING:
    from src.rules.conditions import Condition


@dataclass(frozen=True, slots=True)
class Action:
    """One workflow step. ``type`` resolves against the ActionRegistry."""

    type: str
    params: Mapping[str, Any] = field(default_factory=dict)
    required: bool = False

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> Action:
        action_type = str(raw.get("type") or raw.get("action") or "").strip()
        if not action_type:
            raise ValidationError("Action must have a type")
        params = raw.get("params") or {}
        if not isinstance(params, Mapping):
            raise ValidationError(f"Action '{action_type}' params must be a mapping")
        return cls(type=action_type, params=dict(params), required=bool(raw.get("required", False)))


@dataclass(slots=True)
class ActionResult:
    """Explicit outcome of a single workflow step."""

    action: str
    success: bool
    output: dict[str, Any] = field(default_factory=dict)
    error: str = ""

    @classmethod
    def coerce(cls, action_type: str, raw: Any) -> ActionResult:
        """Normalise whatever an action returned into an ActionResult.

        A mapping without a ``success`` key counts as success; ``None``
        counts as success with empty output; a bare bool is the success flag.
        """
        if isinstance(raw, ActionResult):
            return raw
        if raw is None:
            return cls(action=action_type, success=True)
        if isinstance(raw, bool):
            return cls(action=action_type, success=raw)
        if isinstance(raw, Mapping):
            out = dict(raw)
            success = bool(out.pop("success", True))
            error = str(out.pop("error", "") or "")
            return cls(action=action_type, success=success, output=out, error=error)
        return cls(action=action_type, success=True, output={"value": raw})


@dataclass(frozen=True, slots=True)
class Automation:
    """A condition set plus an ordered workflow of actions."""

    id: str
    conditions: tuple[Condition, ...] = ()
    workflow: tuple[Action, ...] = ()
    name: str = ""
    type: str = "default"  # selects the scheduler worker
    depends_on: tuple[str, ...] = ()
    version: int = 1

    def describe(self) -> str:
        steps = "->".join(a.type + ("!" if a.required else "") for a in self.workflow)
        return f"{self.id}[{steps}]"
