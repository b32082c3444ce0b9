"""State Manager — lifecycle state machine for automation instances.

Default graph
─────────────
  created   → scheduled | queued
  scheduled → queued | cancelled
  queued    → running | cancelled
  running   → completed | failed | paused
  paused    → running | cancelled

``completed``, ``failed`` and ``cancelled`` are final. An instance id seen
for the first time is in the initial state (``created``).

Every accepted transition stores a StateRecord, is appended to a bounded
history and is fanned out to all listeners. Listener failures are logged
per listener and never undo the transition.
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from src.contracts.enums import LifecycleState as S
from src.contracts.errors import InvalidTransitionError, ValidationError
from src.contracts.state import StateRecord
from src.shared.settings import EngineConfig
from src.shared.ticker import run_periodic

log = logging.getLogger(__name__)

Validator = Callable[[dict[str, Any]], Awaitable[bool | None] | bool | None]
Listener = Callable[[StateRecord], Awaitable[None] | None]

_DEFAULT_STATES: list[tuple[str, str, bool, bool]] = [
    (S.CREATED.value, "Automation has been created", True, False),
    (S.SCHEDULED.value, "Automation is scheduled for execution", False, False),
    (S.QUEUED.value, "Automation is in execution queue", False, False),
    (S.RUNNING.value, "Automation is currently running", False, False),
    (S.COMPLETED.value, "Automation has completed successfully", False, True),
    (S.FAILED.value, "Automation has failed", False, True),
    (S.PAUSED.value, "Automation is temporarily paused", False, False),
    (S.CANCELLED.value, "Automation has been cancelled", False, True),
]

_DEFAULT_TRANSITIONS: list[tuple[str, str]] = [
    (S.CREATED.value, S.SCHEDULED.value),
    (S.CREATED.value, S.QUEUED.value),
    (S.SCHEDULED.value, S.QUEUED.value),
    (S.SCHEDULED.value, S.CANCELLED.value),
    (S.QUEUED.value, S.RUNNING.value),
    (S.QUEUED.value, S.CANCELLED.value),
    (S.RUNNING.value, S.COMPLETED.value),
    (S.RUNNING.value, S.FAILED.value),
    (S.RUNNING.value, S.PAUSED.value),
    (S.PAUSED.value, S.RUNNING.value),
    (S.PAUSED.value, S.CANCELLED.value),
]


@dataclass(slots=True)
class StateDefinition:
    name: str
    description: str = ""
    initial: bool = False
    final: bool = False
    transitions: set[str] = field(default_factory=set)


class StateManager:
    def __init__(
        self,
        config: EngineConfig | None = None,
        clock: Callable[[], float] = time.time,
        defaults: bool = True,
    ) -> None:
        self.config = config or EngineConfig()
        self.clock = clock
        self._states: dict[str, StateDefinition] = {}
        self._validators: dict[tuple[str, str], Validator] = {}
        self._records: dict[str, StateRecord] = {}
        self._history: deque[StateRecord] = deque(maxlen=self.config.max_history)
        self._listeners: dict[str, Listener] = {}
        self._listener_ids = itertools.count(1)
        self._lock = asyncio.Lock()
        self._stop: asyncio.Event | None = None
        self._cleanup_task: asyncio.Task | None = None
        if defaults:
            for name, desc, initial, final in _DEFAULT_STATES:
                self.register_state(name, desc, initial=initial, final=final)
            for src, dst in _DEFAULT_TRANSITIONS:
                self.register_transition(src, dst)

    # ── graph ─────────────────────────────────────────────────────────────

    def register_state(self, name: str, description: str = "", *, initial: bool = False, final: bool = False) -> None:
        if not name:
            raise ValidationError("State name must be non-empty")
        if initial and any(d.initial for d in self._states.values() if d.name != name):
            raise ValidationError(f"Cannot mark '{name}' initial: '{self.initial_state}' already is")
        existing = self._states.get(name)
        self._states[name] = StateDefinition(
            name=name,
            description=description,
            initial=initial,
            final=final,
            transitions=existing.transitions if existing else set(),
        )

    def register_transition(self, from_state: str, to_state: str, validator: Validator | None = None) -> None:
        """Allow ``from_state → to_state``, optionally guarded by *validator*.

        The validator receives the transition context. Raising or returning
        ``False`` rejects the transition.
        """
        missing = [s for s in (from_state, to_state) if s not in self._states]
        if missing:
            raise ValidationError(f"Unknown state(s) in transition: {', '.join(missing)}")
        self._states[from_state].transitions.add(to_state)
        if validator is not None:
            self._validators[(from_state, to_state)] = validator

    @property
    def initial_state(self) -> str:
        for d in self._states.values():
            if d.initial:
                return d.name
        return S.CREATED.value

    def is_final(self, state: str) -> bool:
        d = self._states.get(state)
        return bool(d and d.final)

    def allowed_transitions(self, state: str) -> set[str]:
        d = self._states.get(state)
        return set(d.transitions) if d else set()

    # ── transitions ───────────────────────────────────────────────────────

    def get_state(self, instance_id: str) -> str:
        record = self._records.get(instance_id)
        return record.current_state if record else self.initial_state

    async def update_state(
        self,
        instance_id: str,
        new_state: str,
        context: dict[str, Any] | None = None,
    ) -> StateRecord:
        """Move *instance_id* to *new_state*.

        Raises:
            InvalidTransitionError: the edge is not registered, or its
                validator rejected it.
        """
        context = dict(context or {})
        async with self._lock:
            current = self.get_state(instance_id)
            if new_state not in self._states:
                raise InvalidTransitionError(current, new_state, "unknown state")
            if self.config.validate_transitions:
                await self._validate(current, new_state, context)

            record = StateRecord(
                instance_id=instance_id,
                previous_state=current,
                current_state=new_state,
                timestamp=self.clock(),
                context=context,
            )
            self._records[instance_id] = record
            self._history.appendleft(record)

        log.debug("State %s: %s -> %s", instance_id, current, new_state)
        await self._notify(record)
        return record

    async def _validate(self, from_state: str, to_state: str, context: dict[str, Any]) -> None:
        if to_state not in self.allowed_transitions(from_state):
            raise InvalidTransitionError(from_state, to_state)
        validator = self._validators.get((from_state, to_state))
        if validator is None:
            return
        try:
            outcome = validator(context)
            if inspect.isawaitable(outcome):
                outcome = await outcome
        except InvalidTransitionError:
            raise
        except Exception as exc:
            raise InvalidTransitionError(from_state, to_state, str(exc)) from exc
        if outcome is False:
            raise InvalidTransitionError(from_state, to_state, "rejected by validator")

    # ── listeners ─────────────────────────────────────────────────────────

    def add_listener(self, listener: Listener) -> str:
        listener_id = f"L-{next(self._listener_ids):03d}"
        self._listeners[listener_id] = listener
        return listener_id

    def remove_listener(self, listener_id: str) -> bool:
        return self._listeners.pop(listener_id, None) is not None

    async def _notify(self, record: StateRecord) -> list[BaseException]:
        async def _call(listener_id: str, listener: Listener) -> BaseException | None:
            try:
                out = listener(record)
                if inspect.isawaitable(out):
                    await out
            except Exception as exc:
                log.error("State listener %s failed on %s -> %s: %s",
                          listener_id, record.instance_id, record.current_state, exc)
                return exc
            return None

        outcomes = await asyncio.gather(*(_call(lid, fn) for lid, fn in list(self._listeners.items())))
        return [exc for exc in outcomes if exc is not None]

    # ── retention ─────────────────────────────────────────────────────────

    def cleanup(self, now: float | None = None) -> int:
        """Drop history older than retention and old final-state records.

        Instances whose current state is not final are never purged.
        Returns the number of purged records.
        """
        cutoff = (self.clock() if now is None else now) - self.config.history_retention
        self._history = deque(
            (r for r in self._history if r.timestamp >= cutoff or not self.is_final(self.get_state(r.instance_id))),
            maxlen=self.config.max_history,
        )
        stale = [
            iid for iid, rec in self._records.items()
            if rec.timestamp < cutoff and self.is_final(rec.current_state)
        ]
        for iid in stale:
            del self._records[iid]
        if stale:
            log.info("State cleanup purged %d finished instance(s)", len(stale))
        return len(stale)

    def start_cleanup(self) -> None:
        if self._cleanup_task is not None:
            return
        self._stop = asyncio.Event()
        self._cleanup_task = asyncio.create_task(
            run_periodic("state-cleanup", self.cleanup, self.config.cleanup_interval, self._stop)
        )

    async def stop(self) -> None:
        if self._cleanup_task is None:
            return
        assert self._stop is not None
        self._stop.set()
        await self._cleanup_task
        self._cleanup_task = None

    # ── reads ─────────────────────────────────────────────────────────────

    def get_record(self, instance_id: str) -> StateRecord | None:
        return self._records.get(instance_id)

    def get_states(self) -> dict[str, StateRecord]:
        return dict(self._records)

    def get_state_definition(self, name: str) -> StateDefinition | None:
        return self._states.get(name)

    def get_history(
        self,
        instance_id: str | None = None,
        state: str | None = None,
        start: float | None = None,
        end: float | None = None,
    ) -> list[StateRecord]:
        """Newest-first transition history, optionally filtered."""
        out = list(self._history)
        if instance_id is not None:
            out = [r for r in out if r.instance_id == instance_id]
        if state is not None:
            out = [r for r in out if r.current_state == state]
        if start is not None:
            out = [r for r in out if r.timestamp >= start]
        if end is not None:
            out = [r for r in out if r.timestamp <= end]
        return out
