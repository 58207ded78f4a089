"""
In-flight execution tracking, keyed by pipeline id.
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Optional

from pipeline_scheduler.utils import get_logger

if TYPE_CHECKING:
    from pipeline_scheduler.orchestrator.executor import Executor


class ExecutionTracker:
    """
    Map of pipeline id to the Executor currently running it.

    Bookkeeping only: registering an id that is already tracked replaces
    the entry, leaving the earlier run untracked until it finishes.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._running: dict[int, Executor] = {}
        self.logger = get_logger("tracker")

    def register(self, pipeline_id: int, executor: Executor) -> Optional[Executor]:
        """Track ``executor``; returns the entry it replaced, if any."""
        with self._lock:
            previous = self._running.get(pipeline_id)
            self._running[pipeline_id] = executor
        if previous is not None and previous is not executor:
            self.logger.warning(
                f"Pipeline {pipeline_id} started while a previous run is still tracked; "
                "the earlier run is no longer addressable"
            )
        return previous

    def unregister(self, pipeline_id: int) -> None:
        with self._lock:
            self._running.pop(pipeline_id, None)

    def get(self, pipeline_id: int) -> Optional[Executor]:
        with self._lock:
            return self._running.get(pipeline_id)

    def is_running(self, pipeline_id: int) -> bool:
        with self._lock:
            return pipeline_id in self._running

    def running_ids(self) -> list[int]:
        with self._lock:
            return sorted(self._running)

    def __contains__(self, pipeline_id: object) -> bool:
        with self._lock:
            return pipeline_id in self._running

    def __len__(self) -> int:
        with self._lock:
            return len(self._running)
