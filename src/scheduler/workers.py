"""Worker registry: automation type → coroutine executing a queue item."""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

from src.contracts.automation import Automation
from src.contracts.errors import NoWorkerFoundError, ValidationError
from src.contracts.queue import QueueItem

log = logging.getLogger(__name__)

Worker = Callable[[QueueItem], Awaitable[Any]]

DEFAULT_WORKER = "default"


class WorkerRegistry:
    def __init__(self) -> None:
        self._workers: dict[str, Worker] = {}

    def register(self, automation_type: str, worker: Worker) -> None:
        if not automation_type:
            raise ValidationError("Worker type must be a non-empty string")
        if not callable(worker):
            raise ValidationError(f"Worker for '{automation_type}' is not callable")
        self._workers[automation_type] = worker
        log.debug("Registered worker for type '%s'", automation_type)

    def select(self, automation: Automation) -> Worker:
        """Worker for ``automation.type``, else the ``default`` worker."""
        worker = self._workers.get(automation.type) or self._workers.get(DEFAULT_WORKER)
        if worker is None:
            raise NoWorkerFoundError(automation.type)
        return worker

    def types(self) -> list[str]:
        return list(self._workers)
