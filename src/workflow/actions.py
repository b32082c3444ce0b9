"""Action registry and the built-in remediation actions.

An action is any coroutine function ``(params, alert, response) -> result``
where *result* is an ActionResult, a mapping (``success`` defaults to True),
a bool or None. Operators extend the registry with their own handlers; the
built-ins only log what they would do.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Mapping, Protocol

from src.contracts.alert import Alert
from src.contracts.automation import ActionResult
from src.contracts.errors import UnknownActionError, ValidationError

log = logging.getLogger(__name__)


class ActionHandler(Protocol):
    def __call__(
        self,
        params: Mapping[str, Any],
        alert: Alert | None,
        response: Mapping[str, Any],
    ) -> Awaitable[ActionResult | Mapping[str, Any] | bool | None]: ...


class ActionRegistry:
    """Maps an action ``type`` to its handler."""

    def __init__(self) -> None:
        self._handlers: dict[str, ActionHandler] = {}

    def register(self, action_type: str, handler: ActionHandler) -> None:
        if not action_type:
            raise ValidationError("Action type must be a non-empty string")
        if not callable(handler):
            raise ValidationError(f"Handler for action '{action_type}' is not callable")
        if action_type in self._handlers:
            log.info("Action '%s' re-registered", action_type)
        self._handlers[action_type] = handler

    def get(self, action_type: str) -> ActionHandler:
        try:
            return self._handlers[action_type]
        except KeyError:
            raise UnknownActionError(action_type) from None

    def __contains__(self, action_type: object) -> bool:
        return action_type in self._handlers

    def types(self) -> list[str]:
        return list(self._handlers)


# ═══════════════════════════════════════════════════════════════════════════
#  Built-in actions
# ═══════════════════════════════════════════════════════════════════════════


def _alert_ref(alert: Alert | None) -> str:
    return f"{alert.type}/{alert.id}" if alert else "scheduled run"


async def notify(params: Mapping[str, Any], alert: Alert | None, response: Mapping[str, Any]) -> ActionResult:
    channel = params.get("channel", "ops")
    log.info("Would notify #%s (%s): %s", channel, _alert_ref(alert), response.get("content", ""))
    return ActionResult(action="notify", success=True, output={"notified": True, "channel": channel})


async def scale(params: Mapping[str, Any], alert: Alert | None, response: Mapping[str, Any]) -> ActionResult:
    service = params.get("service", "default")
    amount = params.get("amount", 1)
    log.info("Would scale %s by %s (%s)", service, amount, _alert_ref(alert))
    return ActionResult(action="scale", success=True, output={"scaled": True, "amount": amount})


async def restart(params: Mapping[str, Any], alert: Alert | None, response: Mapping[str, Any]) -> ActionResult:
    service = params.get("service", "default")
    log.info("Would restart %s graceful=%s (%s)", service, params.get("graceful", True), _alert_ref(alert))
    return ActionResult(action="restart", success=True, output={"restarted": True})


async def backup(params: Mapping[str, Any], alert: Alert | None, response: Mapping[str, Any]) -> ActionResult:
    target = params.get("target", params.get("type", "full"))
    log.info("Would back up %s (%s)", target, _alert_ref(alert))
    return ActionResult(action="backup", success=True, output={"backed_up": True})


async def rollback(params: Mapping[str, Any], alert: Alert | None, response: Mapping[str, Any]) -> ActionResult:
    log.info("Would roll back %s to %s (%s)",
             params.get("service", "default"), params.get("version", "previous"), _alert_ref(alert))
    return ActionResult(action="rollback", success=True, output={"rolled_back": True})


DEFAULT_ACTIONS: dict[str, ActionHandler] = {
    "notify": notify,
    "scale": scale,
    "restart": restart,
    "backup": backup,
    "rollback": rollback,
}


def register_default_actions(registry: ActionRegistry) -> ActionRegistry:
    for action_type, handler in DEFAULT_ACTIONS.items():
        registry.register(action_type, handler)
    return registry
