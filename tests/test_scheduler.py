"""Tests for src.scheduler.service — schedules, queue dispatch, retries."""

from __future__ import annotations

import asyncio

import pytest

from src.contracts.errors import NoWorkerFoundError, QueueFullError, ValidationError
from src.scheduler.service import Scheduler
from src.scheduler.workers import WorkerRegistry
from src.shared.settings import EngineConfig
from src.state.machine import StateManager
from tests.conftest import make_automation


def _scheduler(config: EngineConfig, worker=None, clock=None) -> Scheduler:
    workers = WorkerRegistry()
    if worker is not None:
        workers.register("default", worker)
    kwargs = {} if clock is None else {"clock": clock}
    state = StateManager(config, **kwargs)
    return Scheduler(config, workers, state, **kwargs)


def _flaky(fail_times: int):
    calls = {"n": 0}

    async def worker(item):
        calls["n"] += 1
        if calls["n"] <= fail_times:
            raise RuntimeError(f"failure {calls['n']}")
        return {"ok": True}

    return worker, calls


# ═══════════════════════════════════════════════════════════════════════════
#  Schedules
# ═══════════════════════════════════════════════════════════════════════════


class TestSchedules:
    def test_invalid_schedule_not_registered(self, fast_config, clock):
        sched = _scheduler(fast_config, clock=clock)
        with pytest.raises(ValidationError):
            sched.schedule_automation(make_automation(), "minutes", None)
        assert sched.get_schedules() == []

    @pytest.mark.asyncio
    async def test_minutes_schedule_fires_and_advances(self, fast_config, clock):
        sched = _scheduler(fast_config, clock=clock)
        schedule = sched.schedule_automation(make_automation(), "minutes", 5, priority=8)
        assert schedule.id == "SCH-0001"
        assert schedule.next_run == clock.now + 300

        assert await sched.process_schedules() == 0
        clock.advance(300)
        assert await sched.process_schedules() == 1

        queued = sched.get_queue()
        assert len(queued) == 1
        assert queued[0].schedule_id == schedule.id
        assert queued[0].priority == 8
        assert schedule.next_run == clock.now + 300
        assert schedule.runs == [clock.now]
        assert [r.current_state for r in reversed(sched.state.get_history(queued[0].id))] == [
            "scheduled", "queued",
        ]

    @pytest.mark.asyncio
    async def test_rejected_queue_transition_cancels_scheduled_instance(self, fast_config, clock):
        sched = _scheduler(fast_config, clock=clock)
        sched.state.register_transition("scheduled", "queued", lambda ctx: False)
        sched.schedule_automation(make_automation(), "minutes", 1)
        clock.advance(60)

        assert await sched.process_schedules() == 0
        assert sched.get_queue() == []
        assert [r.current_state for r in reversed(sched.state.get_history("Q-00001"))] == [
            "scheduled", "cancelled",
        ]

    @pytest.mark.asyncio
    async def test_paused_schedule_skipped_until_resumed(self, fast_config, clock):
        sched = _scheduler(fast_config, clock=clock)
        schedule = sched.schedule_automation(make_automation(), "hourly")
        sched.pause_schedule(schedule.id)
        clock.advance(7200)
        assert await sched.process_schedules() == 0

        sched.resume_schedule(schedule.id)
        assert schedule.next_run == clock.now + 3600
        assert sched.get_schedules(status="scheduled") == [schedule]

    def test_delete_schedule(self, fast_config, clock):
        sched = _scheduler(fast_config, clock=clock)
        schedule = sched.schedule_automation(make_automation(), "daily")
        sched.delete_schedule(schedule.id)
        assert schedule.status == "cancelled"
        with pytest.raises(ValidationError):
            sched.delete_schedule(schedule.id)


# ═══════════════════════════════════════════════════════════════════════════
#  Queue & dispatch
# ═══════════════════════════════════════════════════════════════════════════


class TestQueue:
    @pytest.mark.asyncio
    async def test_capacity(self):
        sched = _scheduler(EngineConfig(max_queue_size=1))
        await sched.queue_automation(make_automation())
        with pytest.raises(QueueFullError):
            await sched.queue_automation(make_automation())
        assert len(sched.get_queue()) == 1

    @pytest.mark.asyncio
    async def test_default_priority_and_lifecycle(self, fast_config):
        sched = _scheduler(fast_config, worker=_flaky(0)[0])
        item = await sched.queue_automation(make_automation())
        assert item.priority == fast_config.default_priority
        assert sched.state.get_state(item.id) == "queued"

        await sched.join()
        assert item.status == "completed"
        assert item.result == {"ok": True}
        assert [r.current_state for r in reversed(sched.state.get_history(item.id))] == [
            "queued", "running", "completed",
        ]
        assert sched.get_history(status="completed") == [item]

    @pytest.mark.asyncio
    async def test_running_never_exceeds_max_concurrent(self):
        gate = asyncio.Event()

        async def blocked(item):
            await gate.wait()

        config = EngineConfig(max_concurrent=2, retry_delay=0.0)
        sched = _scheduler(config, worker=blocked)
        for _ in range(5):
            await sched.queue_automation(make_automation())

        assert len(sched.process_queue()) == 2
        assert len(sched.process_queue()) == 0
        assert len(sched.get_running()) == 2
        assert len(sched.get_queue()) == 3

        gate.set()
        await sched.join()
        assert sched.peak_running == 2
        assert len(sched.get_history(status="completed")) == 5

    @pytest.mark.asyncio
    async def test_priority_order_of_dispatch(self):
        seen: list[str] = []

        async def record(item):
            seen.append(item.automation.id)

        sched = _scheduler(EngineConfig(max_concurrent=1, retry_delay=0.0), worker=record)
        await sched.queue_automation(make_automation(automation_id="low"), 2)
        await sched.queue_automation(make_automation(automation_id="crit"), 10)
        await sched.queue_automation(make_automation(automation_id="med"), 5)
        await sched.join()
        assert seen == ["crit", "med", "low"]


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancel_queued_item(self, fast_config):
        worker, calls = _flaky(0)
        sched = _scheduler(fast_config, worker=worker)
        item = await sched.queue_automation(make_automation())
        await sched.cancel(item.id)

        assert item.status == "cancelled"
        assert sched.state.get_state(item.id) == "cancelled"
        assert sched.get_queue() == []
        await sched.join()
        assert calls["n"] == 0

    @pytest.mark.asyncio
    async def test_cancel_unknown(self, fast_config):
        sched = _scheduler(fast_config)
        with pytest.raises(ValidationError, match="not found"):
            await sched.cancel("Q-99999")

    @pytest.mark.asyncio
    async def test_cancel_pending_retry(self):
        worker, calls = _flaky(5)
        sched = _scheduler(EngineConfig(retry_delay=10.0, max_retries=3), worker=worker)
        item = await sched.queue_automation(make_automation())
        sched.process_queue()
        for _ in range(20):
            await asyncio.sleep(0)
        assert sched.get_pending_retries() == [item]

        await sched.cancel(item.id)
        assert item.status == "cancelled"
        assert sched.state.get_state(item.id) == "cancelled"
        assert sched.get_pending_retries() == []
        assert calls["n"] == 1


class TestPausedItems:
    @pytest.mark.asyncio
    async def test_paused_item_held_until_resumed(self, fast_config):
        worker, calls = _flaky(0)
        sched = _scheduler(fast_config, worker=worker)
        item = await sched.queue_automation(make_automation())
        await sched.state.update_state(item.id, "running")
        await sched.state.update_state(item.id, "paused")

        assert sched.process_queue() == []
        assert sched.get_queue() == [item]

        await sched.state.update_state(item.id, "running")
        await sched.join()
        assert item.status == "completed"
        assert calls["n"] == 1

    @pytest.mark.asyncio
    async def test_paused_mid_run_still_reaches_final_state(self, fast_config, clock):
        started, release = asyncio.Event(), asyncio.Event()

        async def gated(item):
            started.set()
            await release.wait()
            return "done"

        sched = _scheduler(fast_config, worker=gated, clock=clock)
        item = await sched.queue_automation(make_automation())
        sched.process_queue()
        await started.wait()
        await sched.state.update_state(item.id, "paused")

        release.set()
        await sched.join()
        assert item.status == "completed"
        assert sched.state.get_state(item.id) == "completed"
        assert [r.current_state for r in reversed(sched.state.get_history(item.id))] == [
            "queued", "running", "paused", "running", "completed",
        ]

        clock.advance(fast_config.history_retention + 1)
        assert sched.state.cleanup() == 1
        assert item.id not in sched.state.get_states()

    @pytest.mark.asyncio
    async def test_paused_mid_run_failure_reaches_failed(self):
        started, release = asyncio.Event(), asyncio.Event()

        async def gated(item):
            started.set()
            await release.wait()
            raise RuntimeError("disk full")

        sched = _scheduler(EngineConfig(max_retries=1, retry_delay=0.0), worker=gated)
        item = await sched.queue_automation(make_automation())
        sched.process_queue()
        await started.wait()
        await sched.state.update_state(item.id, "paused")

        release.set()
        await sched.join()
        assert item.status == "failed"
        assert sched.state.get_state(item.id) == "failed"


# ═══════════════════════════════════════════════════════════════════════════
#  Failures, retries, timeouts
# ═══════════════════════════════════════════════════════════════════════════


class TestRetries:
    @pytest.mark.asyncio
    async def test_retry_until_success(self, fast_config):
        worker, calls = _flaky(2)
        sched = _scheduler(fast_config, worker=worker)
        item = await sched.queue_automation(make_automation())
        await sched.join()
        assert item.status == "completed"
        assert item.attempts == 3
        assert calls["n"] == 3
        states = [r.current_state for r in reversed(sched.state.get_history(item.id))]
        assert states == ["queued", "running", "completed"]

    @pytest.mark.asyncio
    async def test_exhausted_retries_fail_item(self, fast_config):
        worker, calls = _flaky(99)
        sched = _scheduler(fast_config, worker=worker)
        item = await sched.queue_automation(make_automation())
        await sched.join()
        assert item.status == "failed"
        assert item.attempts == fast_config.max_retries
        assert calls["n"] == fast_config.max_retries
        assert "Gave up" in item.error
        assert sched.state.get_state(item.id) == "failed"

    @pytest.mark.asyncio
    async def test_worker_timeout_is_retryable(self):
        slow_calls = {"n": 0}

        async def slow_then_fast(item):
            slow_calls["n"] += 1
            if slow_calls["n"] == 1:
                await asyncio.sleep(5)
            return "done"

        config = EngineConfig(worker_timeout=0.05, retry_delay=0.0)
        sched = _scheduler(config, worker=slow_then_fast)
        item = await sched.queue_automation(make_automation())
        await sched.join(timeout=5)
        assert item.status == "completed"
        assert item.attempts == 2

    @pytest.mark.asyncio
    async def test_timeout_exhaustion_message(self):
        async def hang(item):
            await asyncio.sleep(5)

        config = EngineConfig(worker_timeout=0.02, retry_delay=0.0, max_retries=1)
        sched = _scheduler(config, worker=hang)
        item = await sched.queue_automation(make_automation())
        await sched.join(timeout=5)
        assert item.status == "failed"
        assert "Worker timeout" in item.error

    @pytest.mark.asyncio
    async def test_no_worker_found(self, fast_config):
        sched = _scheduler(fast_config)
        with pytest.raises(NoWorkerFoundError):
            sched.workers.select(make_automation(automation_type="exotic"))

        item = await sched.queue_automation(make_automation(automation_type="exotic"))
        await sched.join()
        assert item.status == "failed"
        assert "No suitable worker" in item.error

    @pytest.mark.asyncio
    async def test_type_specific_worker_preferred(self, fast_config):
        used: list[str] = []

        async def default_worker(item):
            used.append("default")

        async def db_worker(item):
            used.append("db")

        sched = _scheduler(fast_config, worker=default_worker)
        sched.register_worker("database", db_worker)
        await sched.queue_automation(make_automation(automation_type="database"))
        await sched.queue_automation(make_automation(automation_type="other"))
        await sched.join()
        assert sorted(used) == ["db", "default"]


# ═══════════════════════════════════════════════════════════════════════════
#  Tickers
# ═══════════════════════════════════════════════════════════════════════════


class TestTickers:
    @pytest.mark.asyncio
    async def test_start_processes_queue_and_stop_drains(self, fast_config):
        worker, calls = _flaky(0)
        sched = _scheduler(fast_config, worker=worker)
        sched.start()
        item = await sched.queue_automation(make_automation())
        for _ in range(100):
            if item.status == "completed":
                break
            await asyncio.sleep(0.01)
        await sched.stop()
        assert item.status == "completed"
        assert calls["n"] == 1
        assert sched._tickers == []
