"""Workflow Executor — run an automation's ordered action steps.

Step semantics
──────────────
  * Steps run strictly in declared order, one at a time.
  * An unregistered step type raises ``UnknownActionError``.
  * A handler that raises is recorded as a failed ActionResult.
  * A failed *required* step aborts the workflow with
    ``WorkflowAbortedError`` carrying the partial result list; failed
    optional steps are recorded and execution continues.

Retry
─────
``execute_with_retry`` re-runs the *whole* workflow, waiting
``retry_delay × attempt`` between attempts (linear). Steps that succeeded
in an earlier attempt run again: delivery is at-least-once.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Iterable, Mapping

from src.contracts.alert import Alert
from src.contracts.automation import Action, ActionResult, Automation
from src.contracts.errors import WorkflowAbortedError
from src.contracts.queue import QueueItem, result_summary
from src.shared.settings import EngineConfig
from src.workflow.actions import ActionRegistry

log = logging.getLogger(__name__)

ResponseFactory = Callable[[Alert | None, Automation | None], Mapping[str, Any]]


def default_response(alert: Alert | None, automation: Automation | None = None) -> dict[str, Any]:
    """Minimal response payload handed to every action."""
    if alert is None:
        name = automation.name if automation else "automation"
        return {"content": f"Scheduled run of {name}", "alert_id": ""}
    return {
        "content": f"[{alert.priority.upper()}] {alert.type} alert {alert.id}",
        "alert_id": alert.id,
        "priority": alert.priority,
    }


class WorkflowExecutor:
    def __init__(
        self,
        registry: ActionRegistry,
        config: EngineConfig | None = None,
        response_factory: ResponseFactory = default_response,
    ) -> None:
        self.registry = registry
        self.config = config or EngineConfig()
        self.response_factory = response_factory
        self.active = 0
        self.peak_active = 0

    # ── single workflow ───────────────────────────────────────────────────

    async def execute_workflow(
        self,
        workflow: Iterable[Action],
        alert: Alert | None,
        response: Mapping[str, Any],
    ) -> list[ActionResult]:
        results: list[ActionResult] = []
        for step in workflow:
            handler = self.registry.get(step.type)
            try:
                raw = await handler(dict(step.params), alert, response)
                result = ActionResult.coerce(step.type, raw)
            except Exception as exc:
                log.warning("Action %s raised: %s", step.type, exc)
                result = ActionResult(action=step.type, success=False, error=str(exc))
            results.append(result)

            if not result.success:
                if step.required:
                    log.warning("Required action %s failed, aborting workflow", step.type)
                    raise WorkflowAbortedError(step.type, results)
                log.info("Optional action %s failed, continuing: %s", step.type, result.error or "no detail")
        return results

    # ── retry ─────────────────────────────────────────────────────────────

    async def execute_with_retry(
        self,
        automation: Automation,
        alert: Alert | None = None,
        response: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Run the workflow, retrying the whole of it on any error.

        Raises:
            Exception: the last error once ``max_retries`` attempts failed.
        """
        response = response if response is not None else self.response_factory(alert, automation)
        max_attempts = self.config.max_retries
        last_error: Exception | None = None

        for attempt in range(1, max_attempts + 1):
            try:
                results = await self.execute_workflow(automation.workflow, alert, response)
                return {
                    "automation_id": automation.id,
                    "success": True,
                    "attempts": attempt,
                    "results": result_summary(results),
                }
            except Exception as exc:
                last_error = exc
                log.warning("Automation %s attempt %d/%d failed: %s",
                            automation.id, attempt, max_attempts, exc)
                if attempt < max_attempts:
                    await asyncio.sleep(self.config.retry_delay * attempt)

        assert last_error is not None
        raise last_error

    # ── fan-out ───────────────────────────────────────────────────────────

    async def execute_automations(
        self,
        automations: list[Automation],
        alert: Alert | None,
        response: Mapping[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        """Run several automations, at most ``concurrent_limit`` at a time.

        Results come back in input order. One automation failing never
        affects the others.
        """
        if not automations:
            return []
        semaphore = asyncio.Semaphore(self.config.concurrent_limit)

        async def _guarded(automation: Automation) -> dict[str, Any]:
            async with semaphore:
                self.active += 1
                self.peak_active = max(self.peak_active, self.active)
                try:
                    return await self.execute_with_retry(automation, alert, response)
                except Exception as exc:
                    log.error("Automation %s failed: %s", automation.id, exc)
                    return {
                        "automation_id": automation.id,
                        "success": False,
                        "error": str(exc),
                        "results": result_summary(getattr(exc, "results", [])),
                    }
                finally:
                    self.active -= 1

        return list(await asyncio.gather(*(_guarded(a) for a in automations)))

    # ── scheduler worker ──────────────────────────────────────────────────

    async def run_item(self, item: QueueItem) -> dict[str, Any]:
        """Default scheduler worker: one attempt at the item's workflow.

        Retries are the scheduler's business here, so errors propagate.
        """
        response = self.response_factory(item.alert, item.automation)
        results = await self.execute_workflow(item.automation.workflow, item.alert, response)
        return {
            "automation_id": item.automation.id,
            "success": True,
            "results": result_summary(results),
        }
