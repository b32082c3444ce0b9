"""Scheduler — time-based schedules, bounded priority queue, worker pool.

Two periodic loops drive it:

  schedule tick  (``schedule_interval``, default 60 s)
      every ``scheduled`` Schedule whose ``next_run`` has passed is
      enqueued, then ``next_run`` is recomputed
  queue tick     (``queue_interval``, default 1 s)
      pops up to ``max_concurrent − len(running)`` items, highest priority
      first, and dispatches each as its own task

Each dispatch races the selected worker against ``worker_timeout``. A
failure (timeout included) re-enqueues the same item after
``retry_delay × attempts`` while ``attempts < max_retries``; after that
the item is failed for good. Every item ends completed, failed or
cancelled and lands in the bounded execution history.

Lifecycle states are mirrored into the optional StateManager using the
queue item id as the instance id. Between retry attempts the instance
stays ``running``; an instance that is ``paused`` is held in the queue
until it is resumed.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from collections import deque
from typing import Any, Callable

from src.contracts.alert import Alert
from src.contracts.automation import Automation
from src.contracts.enums import LifecycleState, QueueStatus, ScheduleStatus
from src.contracts.errors import (
    InvalidTransitionError,
    QueueFullError,
    RetryExhaustedError,
    ValidationError,
    WorkerTimeoutError,
)
from src.contracts.queue import QueueItem, Schedule
from src.scheduler.queue import PriorityQueue
from src.scheduler.schedules import calculate_next_run, validate_schedule
from src.scheduler.workers import Worker, WorkerRegistry
from src.shared.settings import EngineConfig
from src.shared.ticker import run_periodic
from src.state.machine import StateManager

log = logging.getLogger(__name__)


class Scheduler:
    def __init__(
        self,
        config: EngineConfig | None = None,
        workers: WorkerRegistry | None = None,
        state: StateManager | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config or EngineConfig()
        self.workers = workers or WorkerRegistry()
        self.state = state
        self.clock = clock

        self.schedules: dict[str, Schedule] = {}
        self.queue = PriorityQueue(self.config.max_queue_size)
        self.running: dict[str, QueueItem] = {}
        self.history: deque[QueueItem] = deque(maxlen=self.config.max_history)
        self.peak_running = 0

        self._item_ids = itertools.count(1)
        self._schedule_ids = itertools.count(1)
        self._tasks: set[asyncio.Task] = set()
        self._retries: dict[str, tuple[QueueItem, asyncio.Task]] = {}
        self._stop: asyncio.Event | None = None
        self._tickers: list[asyncio.Task] = []

    def register_worker(self, automation_type: str, worker: Worker) -> None:
        self.workers.register(automation_type, worker)

    # ═══════════════════════════════════════════════════════════════════════
    #  Schedules
    # ═══════════════════════════════════════════════════════════════════════

    def schedule_automation(
        self,
        automation: Automation,
        frequency: str,
        interval: int | None = None,
        priority: int | None = None,
    ) -> Schedule:
        """Register a recurring trigger for *automation*.

        Raises:
            ValidationError: missing automation/frequency, unknown
                frequency, or bad ``interval`` for ``minutes``.
        """
        validate_schedule(automation, frequency, interval)
        now = self.clock()
        schedule = Schedule(
            id=f"SCH-{next(self._schedule_ids):04d}",
            automation=automation,
            frequency=frequency,
            interval=interval,
            priority=priority,
            next_run=calculate_next_run(frequency, interval, now),
            created=now,
            modified=now,
        )
        self.schedules[schedule.id] = schedule
        log.info("Scheduled %s %s (interval=%s) for automation %s",
                 schedule.id, frequency, interval, automation.id)
        return schedule

    def _get_schedule(self, schedule_id: str) -> Schedule:
        try:
            return self.schedules[schedule_id]
        except KeyError:
            raise ValidationError(f"Schedule not found: {schedule_id}") from None

    def pause_schedule(self, schedule_id: str) -> Schedule:
        schedule = self._get_schedule(schedule_id)
        schedule.status = ScheduleStatus.PAUSED.value
        schedule.modified = self.clock()
        return schedule

    def resume_schedule(self, schedule_id: str) -> Schedule:
        schedule = self._get_schedule(schedule_id)
        now = self.clock()
        schedule.status = ScheduleStatus.SCHEDULED.value
        if schedule.next_run < now:
            schedule.next_run = calculate_next_run(schedule.frequency, schedule.interval, now)
        schedule.modified = now
        return schedule

    def delete_schedule(self, schedule_id: str) -> Schedule:
        schedule = self._get_schedule(schedule_id)
        del self.schedules[schedule_id]
        schedule.status = ScheduleStatus.CANCELLED.value
        log.info("Deleted schedule %s", schedule_id)
        return schedule

    async def process_schedules(self) -> int:
        """Enqueue every due schedule; return how many were enqueued."""
        now = self.clock()
        due = [
            s for s in self.schedules.values()
            if s.status == ScheduleStatus.SCHEDULED.value and s.next_run <= now
        ]
        enqueued = 0
        for schedule in due:
            try:
                await self.queue_automation(
                    schedule.automation,
                    schedule.priority or self.config.default_priority,
                    schedule_id=schedule.id,
                )
                enqueued += 1
            except (QueueFullError, InvalidTransitionError) as exc:
                log.error("Schedule %s could not enqueue: %s", schedule.id, exc)
            schedule.runs.append(now)
            schedule.next_run = calculate_next_run(schedule.frequency, schedule.interval, now)
            schedule.modified = now
        if due:
            log.debug("Schedule tick: %d due, %d enqueued", len(due), enqueued)
        return enqueued

    # ═══════════════════════════════════════════════════════════════════════
    #  Queue
    # ═══════════════════════════════════════════════════════════════════════

    async def queue_automation(
        self,
        automation: Automation,
        priority: int | None = None,
        *,
        alert: Alert | None = None,
        schedule_id: str = "",
    ) -> QueueItem:
        """Create a queue item for *automation*.

        Raises:
            QueueFullError: the queue already holds ``max_queue_size`` items.
        """
        now = self.clock()
        item = QueueItem(
            id=f"Q-{next(self._item_ids):05d}",
            automation=automation,
            priority=self.config.default_priority if priority is None else int(priority),
            status=QueueStatus.QUEUED.value,
            created=now,
            modified=now,
            alert=alert,
            schedule_id=schedule_id,
        )
        self.queue.push(item)
        scheduled = False
        try:
            if schedule_id:
                await self._require_state(item.id, LifecycleState.SCHEDULED, schedule_id=schedule_id)
                scheduled = True
            await self._require_state(item.id, LifecycleState.QUEUED, automation_id=automation.id)
        except InvalidTransitionError:
            self.queue.remove(item.id)
            if scheduled:
                await self._transition(item.id, LifecycleState.CANCELLED, reason="not queued")
            raise
        log.debug("Queued %s (automation=%s priority=%d, size=%d)",
                  item.id, automation.id, item.priority, len(self.queue))
        return item

    async def cancel(self, item_id: str) -> QueueItem:
        """Cancel an item that is queued or waiting for a retry.

        Raises:
            ValidationError: unknown id, or the item is executing right now.
        """
        if item_id in self.running:
            raise ValidationError(f"Item {item_id} is running; pause it instead")

        item = self.queue.remove(item_id)
        if item is None and item_id in self._retries:
            item, task = self._retries.pop(item_id)
            task.cancel()
        if item is None:
            raise ValidationError(f"Queue item not found: {item_id}")

        if self.state is not None and self.state.get_state(item_id) == LifecycleState.RUNNING.value:
            await self._transition(item_id, LifecycleState.PAUSED, reason="cancel")
        await self._transition(item_id, LifecycleState.CANCELLED)
        self._finish(item, QueueStatus.CANCELLED, error="cancelled")
        log.info("Cancelled %s", item_id)
        return item

    # ═══════════════════════════════════════════════════════════════════════
    #  Dispatch
    # ═══════════════════════════════════════════════════════════════════════

    def _is_held(self, item: QueueItem) -> bool:
        return self.state is not None and self.state.get_state(item.id) == LifecycleState.PAUSED.value

    def process_queue(self) -> list[QueueItem]:
        """Move up to the free concurrency slots from the queue into running."""
        free = self.config.max_concurrent - len(self.running)
        dispatched: list[QueueItem] = []
        while free > 0:
            item = self.queue.pop(skip=self._is_held)
            if item is None:
                break
            item.status = QueueStatus.RUNNING.value
            item.modified = self.clock()
            self.running[item.id] = item
            self.peak_running = max(self.peak_running, len(self.running))
            task = asyncio.create_task(self._execute(item), name=f"exec-{item.id}")
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            dispatched.append(item)
            free -= 1
        return dispatched

    async def _execute(self, item: QueueItem) -> None:
        item.attempts += 1
        error: Exception | None = None
        result: Any = None
        try:
            if self.state is not None and self.state.get_state(item.id) != LifecycleState.RUNNING.value:
                await self._transition(item.id, LifecycleState.RUNNING, attempt=item.attempts)
            worker = self.workers.select(item.automation)
            result = await asyncio.wait_for(worker(item), timeout=self.config.worker_timeout)
        except asyncio.TimeoutError:
            error = WorkerTimeoutError(item.id, self.config.worker_timeout)
        except Exception as exc:
            error = exc
        finally:
            self.running.pop(item.id, None)

        if error is None:
            await self._on_success(item, result)
        else:
            await self._on_failure(item, error)

    async def _on_success(self, item: QueueItem, result: Any) -> None:
        item.result = result
        item.error = ""
        await self._settle(item.id, LifecycleState.COMPLETED, attempts=item.attempts)
        self._finish(item, QueueStatus.COMPLETED)
        log.info("Completed %s (automation=%s, attempts=%d)", item.id, item.automation.id, item.attempts)

    async def _on_failure(self, item: QueueItem, error: Exception) -> None:
        item.error = str(error)
        if item.attempts < self.config.max_retries:
            delay = self.config.retry_delay * item.attempts
            item.status = QueueStatus.QUEUED.value
            item.modified = self.clock()
            log.warning("Attempt %d of %s failed (%s); retrying in %.2fs",
                        item.attempts, item.id, error, delay)
            task = asyncio.create_task(self._requeue_after(item, delay), name=f"retry-{item.id}")
            self._retries[item.id] = (item, task)
            return

        exhausted = RetryExhaustedError(item.id, item.attempts, error)
        await self._settle(item.id, LifecycleState.FAILED, error=str(error))
        self._finish(item, QueueStatus.FAILED, error=str(exhausted))
        log.error("%s", exhausted)

    async def _requeue_after(self, item: QueueItem, delay: float) -> None:
        await asyncio.sleep(delay)
        self._retries.pop(item.id, None)
        try:
            self.queue.push(item)
        except QueueFullError as exc:
            await self._settle(item.id, LifecycleState.FAILED, error=str(exc))
            self._finish(item, QueueStatus.FAILED, error=f"retry dropped: {exc}")
            log.error("Retry of %s dropped: %s", item.id, exc)

    def _finish(self, item: QueueItem, status: QueueStatus, error: str | None = None) -> None:
        item.status = status.value
        item.modified = self.clock()
        if error is not None:
            item.error = error
        self.history.appendleft(item)

    # ── lifecycle mirroring ───────────────────────────────────────────────

    async def _require_state(self, item_id: str, state: LifecycleState, **context: Any) -> None:
        if self.state is not None:
            await self.state.update_state(item_id, state.value, context)

    async def _transition(self, item_id: str, state: LifecycleState, **context: Any) -> None:
        """Best-effort lifecycle update; a rejected edge never stops execution."""
        if self.state is None:
            return
        try:
            await self.state.update_state(item_id, state.value, context)
        except InvalidTransitionError as exc:
            log.warning("Lifecycle of %s not updated: %s", item_id, exc)

    async def _settle(self, item_id: str, state: LifecycleState, **context: Any) -> None:
        """Apply a terminal state; an instance paused mid-run is resumed first."""
        if self.state is not None and self.state.get_state(item_id) == LifecycleState.PAUSED.value:
            await self._transition(item_id, LifecycleState.RUNNING, reason="settle")
        await self._transition(item_id, state, **context)

    # ═══════════════════════════════════════════════════════════════════════
    #  Loops
    # ═══════════════════════════════════════════════════════════════════════

    def start(self) -> None:
        """Start the schedule and queue tickers on the running loop."""
        if self._tickers:
            return
        self._stop = asyncio.Event()
        self._tickers = [
            asyncio.create_task(
                run_periodic("schedules", self.process_schedules, self.config.schedule_interval, self._stop)
            ),
            asyncio.create_task(
                run_periodic("queue", self.process_queue, self.config.queue_interval, self._stop)
            ),
        ]
        log.info("Scheduler started (max_concurrent=%d, max_queue_size=%d)",
                 self.config.max_concurrent, self.config.max_queue_size)

    async def stop(self, drain: bool = True) -> None:
        """Stop the tickers; with *drain*, wait for in-flight executions."""
        if self._stop is not None:
            self._stop.set()
        if self._tickers:
            await asyncio.gather(*self._tickers)
            self._tickers = []
        for _, task in list(self._retries.values()):
            task.cancel()
        if drain and self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        log.info("Scheduler stopped (queued=%d, pending retries=%d)", len(self.queue), len(self._retries))

    async def join(self, poll_interval: float = 0.01, timeout: float | None = None) -> None:
        """Dispatch until nothing is queued, running or waiting to retry.

        Items held by a ``paused`` lifecycle state stay queued and do not
        keep ``join`` waiting.
        """
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while True:
            dispatched = self.process_queue()
            if not dispatched and not self.running and not self._retries and not self._tasks:
                return
            if deadline is not None and loop.time() >= deadline:
                raise asyncio.TimeoutError(f"Scheduler did not settle within {timeout}s")
            await asyncio.sleep(poll_interval)

    # ═══════════════════════════════════════════════════════════════════════
    #  Reads
    # ═══════════════════════════════════════════════════════════════════════

    def get_schedules(self, status: str | None = None, frequency: str | None = None) -> list[Schedule]:
        out = list(self.schedules.values())
        if status is not None:
            out = [s for s in out if s.status == status]
        if frequency is not None:
            out = [s for s in out if s.frequency == frequency]
        return out

    def get_queue(self) -> list[QueueItem]:
        """Queued items in pop order (pending retries excluded)."""
        return self.queue.ordered()

    def get_running(self) -> list[QueueItem]:
        return list(self.running.values())

    def get_pending_retries(self) -> list[QueueItem]:
        return [item for item, _ in self._retries.values()]

    def get_history(
        self,
        status: str | None = None,
        automation_id: str | None = None,
        limit: int | None = None,
    ) -> list[QueueItem]:
        """Terminal items, newest first."""
        out = list(self.history)
        if status is not None:
            out = [i for i in out if i.status == status]
        if automation_id is not None:
            out = [i for i in out if i.automation.id == automation_id]
        return out[:limit] if limit is not None else out
