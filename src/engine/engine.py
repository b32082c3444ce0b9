"""AutomationEngine — composition root wiring every component once.

    alert ─► PatternDetector.observe + detect_patterns
          ─► RuleMatcher.find_matching_automations
          ─► direct:  WorkflowExecutor.execute_automations  (process_alert)
             queued:  Scheduler.queue_automation           (dispatch_alert)

All collaborators are explicit attributes; nothing is a module-level
singleton. Operators extend the engine through ``register_action``,
``register_worker``, ``register_state`` and ``register_transition``.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping

from src.contracts.alert import Alert
from src.contracts.automation import Action, Automation
from src.contracts.enums import PRIORITY_WEIGHT
from src.contracts.errors import QueueFullError, ValidationError
from src.contracts.pattern import Correlation, DetectionResult, Pattern, Sequence
from src.contracts.queue import HistoryEntry, QueueItem, Schedule
from src.contracts.state import StateRecord
from src.patterns.detector import PatternDetector
from src.rules.conditions import Condition
from src.rules.matcher import RuleMatcher, load_automations
from src.scheduler.service import Scheduler
from src.scheduler.workers import DEFAULT_WORKER, Worker, WorkerRegistry
from src.shared.settings import EngineConfig, load_config
from src.state.machine import StateManager, Validator
from src.workflow.actions import ActionHandler, ActionRegistry, register_default_actions
from src.workflow.executor import WorkflowExecutor

log = logging.getLogger(__name__)


class AutomationEngine:
    """Головний оркестратор: оповіщення -> правила -> виконання."""

    def __init__(self, config: EngineConfig | None = None, clock: Callable[[], float] = time.time) -> None:
        self.config = config or EngineConfig()
        self.clock = clock

        self.detector = PatternDetector(self.config)
        self.matcher = RuleMatcher(
            window_provider=lambda: self.detector.window,
            detection_provider=lambda: self.detector.last_result,
        )
        self.actions = register_default_actions(ActionRegistry())
        self.executor = WorkflowExecutor(self.actions, self.config)
        self.state = StateManager(self.config, clock=clock)
        self.workers = WorkerRegistry()
        self.workers.register(DEFAULT_WORKER, self.executor.run_item)
        self.scheduler = Scheduler(self.config, self.workers, self.state, clock=clock)
        self.history: deque[HistoryEntry] = deque(maxlen=self.config.max_history)

    @classmethod
    def from_files(
        cls,
        config_path: str | Path | None = None,
        automations_path: str | Path | None = None,
    ) -> AutomationEngine:
        engine = cls(load_config(config_path))
        if automations_path is not None:
            load_automations(automations_path, engine.matcher)
        return engine

    # ═══════════════════════════════════════════════════════════════════════
    #  Registration
    # ═══════════════════════════════════════════════════════════════════════

    def register_automation(
        self,
        conditions: Iterable[Mapping[str, Any] | Condition],
        workflow: Iterable[Mapping[str, Any] | Action],
        **kwargs: Any,
    ) -> str:
        return self.matcher.register_automation(conditions, workflow, **kwargs)

    def delete_automation(self, automation_id: str) -> None:
        """Delete an automation no schedule or other automation depends on."""
        scheduled = [s.id for s in self.scheduler.schedules.values() if s.automation.id == automation_id]
        if scheduled:
            raise ValidationError(
                f"Automation '{automation_id}' is referenced by schedule(s): {', '.join(scheduled)}"
            )
        self.matcher.delete_automation(automation_id)

    def register_action(self, action_type: str, handler: ActionHandler) -> None:
        self.actions.register(action_type, handler)

    def register_worker(self, automation_type: str, worker: Worker) -> None:
        self.workers.register(automation_type, worker)

    def register_state(self, name: str, description: str = "", **flags: bool) -> None:
        self.state.register_state(name, description, **flags)

    def register_transition(self, from_state: str, to_state: str, validator: Validator | None = None) -> None:
        self.state.register_transition(from_state, to_state, validator)

    # ═══════════════════════════════════════════════════════════════════════
    #  Mutations
    # ═══════════════════════════════════════════════════════════════════════

    def schedule_automation(
        self,
        automation: Automation | str,
        frequency: str,
        interval: int | None = None,
        priority: int | None = None,
    ) -> Schedule:
        if isinstance(automation, str):
            automation = self.matcher.get_automation(automation)
        return self.scheduler.schedule_automation(automation, frequency, interval, priority)

    async def queue_automation(self, automation: Automation | str, priority: int | None = None) -> QueueItem:
        if isinstance(automation, str):
            automation = self.matcher.get_automation(automation)
        return await self.scheduler.queue_automation(automation, priority)

    async def update_state(self, instance_id: str, new_state: str, context: dict[str, Any] | None = None) -> StateRecord:
        return await self.state.update_state(instance_id, new_state, context)

    # ═══════════════════════════════════════════════════════════════════════
    #  Alert processing
    # ═══════════════════════════════════════════════════════════════════════

    def ingest(self, alert: Alert | Mapping[str, Any]) -> Alert:
        """Validate, add to the mining window and refresh detection.

        Raises:
            ValidationError: malformed alert (nothing is recorded).
        """
        parsed = alert if isinstance(alert, Alert) else Alert.from_dict(alert)
        self.detector.observe(parsed)
        self.detector.detect_patterns()
        return parsed

    async def process_alert(self, alert: Alert | Mapping[str, Any]) -> list[dict[str, Any]]:
        """Match *alert* and execute every matching automation right away."""
        parsed = self.ingest(alert)
        automations = self.matcher.find_matching_automations(parsed)
        if not automations:
            return []
        response = self.executor.response_factory(parsed, None)
        results = await self.executor.execute_automations(automations, parsed, response)
        self._record(parsed, automations, results)
        ok = sum(1 for r in results if r.get("success"))
        log.info("Alert %s: %d/%d automation(s) succeeded", parsed.id, ok, len(results))
        return results

    async def dispatch_alert(self, alert: Alert | Mapping[str, Any]) -> list[QueueItem]:
        """Match *alert* and enqueue every matching automation."""
        parsed = self.ingest(alert)
        automations = self.matcher.find_matching_automations(parsed)
        if not automations:
            return []
        priority = PRIORITY_WEIGHT.get(parsed.priority, self.config.default_priority)
        items: list[QueueItem] = []
        results: list[dict[str, Any]] = []
        for automation in automations:
            try:
                item = await self.scheduler.queue_automation(automation, priority, alert=parsed)
            except QueueFullError as exc:
                log.error("Alert %s: automation %s not queued: %s", parsed.id, automation.id, exc)
                results.append({"automation_id": automation.id, "success": False, "error": str(exc)})
                continue
            items.append(item)
            results.append({"automation_id": automation.id, "success": True, "queue_item": item.id})
        self._record(parsed, automations, results)
        return items

    async def replay(self, alerts: Iterable[Alert | Mapping[str, Any]], mode: str = "direct") -> int:
        """Feed alerts in order; in ``queued`` mode wait for the queue to settle.

        Malformed alerts are logged and skipped. Returns the number processed.
        """
        if mode not in ("direct", "queued"):
            raise ValidationError(f"Unknown replay mode '{mode}'")
        processed = 0
        for alert in alerts:
            try:
                if mode == "direct":
                    await self.process_alert(alert)
                else:
                    await self.dispatch_alert(alert)
            except ValidationError as exc:
                log.warning("Skipping alert: %s", exc)
                continue
            processed += 1
        if mode == "queued":
            await self.scheduler.join()
        log.info("Replayed %d alert(s) in %s mode", processed, mode)
        return processed

    def _record(self, alert: Alert, automations: list[Automation], results: list[dict[str, Any]]) -> None:
        self.history.appendleft(
            HistoryEntry(alert=alert, automations=list(automations), results=results, timestamp=self.clock())
        )

    # ═══════════════════════════════════════════════════════════════════════
    #  Lifecycle
    # ═══════════════════════════════════════════════════════════════════════

    async def start(self) -> None:
        self.scheduler.start()
        self.state.start_cleanup()

    async def stop(self, drain: bool = True) -> None:
        await self.scheduler.stop(drain=drain)
        await self.state.stop()

    # ═══════════════════════════════════════════════════════════════════════
    #  Reads
    # ═══════════════════════════════════════════════════════════════════════

    def get_history(self, alert_type: str | None = None, limit: int | None = None) -> list[HistoryEntry]:
        out = list(self.history)
        if alert_type is not None:
            out = [h for h in out if h.alert.type == alert_type]
        return out[:limit] if limit is not None else out

    def get_queue(self) -> list[QueueItem]:
        return self.scheduler.get_queue()

    def get_running(self) -> list[QueueItem]:
        return self.scheduler.get_running()

    def get_schedules(self, status: str | None = None, frequency: str | None = None) -> list[Schedule]:
        return self.scheduler.get_schedules(status, frequency)

    def get_states(self) -> dict[str, StateRecord]:
        return self.state.get_states()

    def get_detection(self) -> DetectionResult:
        return self.detector.last_result

    def get_patterns(self) -> list[Pattern]:
        return self.detector.get_patterns()

    def get_sequences(self) -> list[Sequence]:
        return self.detector.get_sequences()

    def get_correlations(self) -> list[Correlation]:
        return self.detector.get_correlations()
