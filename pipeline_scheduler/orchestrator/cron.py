"""
Named timer registry driving pipeline triggers.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional

from croniter import croniter  # type: ignore[import-untyped]

from pipeline_scheduler.config import Config
from pipeline_scheduler.utils import get_logger
from pipeline_scheduler.utils.cron_expr import (
    is_valid_cron,
    normalize_cron,
    to_croniter_expression,
)
from pipeline_scheduler.utils.errors import ValidationError
from pipeline_scheduler.utils.logging_config import log_exception, log_event, run_context


@dataclass
class Timer:
    """A named job; ``cron`` None means fire once on the next tick."""

    name: str
    cron: Optional[str]
    job: Callable[[], Any]
    next_run: Optional[datetime] = None
    # Set under the registry lock when the timer is replaced or removed
    cancelled: bool = False

    @property
    def recurring(self) -> bool:
        return self.cron is not None

    def advance(self, base: datetime) -> None:
        """Move next_run to the first cron match strictly after ``base``."""
        self.next_run = croniter(to_croniter_expression(self.cron), base).get_next(datetime)


class CronRegistry:
    """
    Registry of named, possibly recurring timers.

    Knows nothing about pipelines: callers pick the names and supply the
    job closures. Each firing runs on its own daemon thread.

    Registering an existing name replaces and cancels the old timer under
    the registry lock. A cancelled timer whose firing was already collected
    by run_pending() is dropped when its thread starts, so the old job is
    never started after register() or remove() returns. A job that has
    already started runs to completion.
    """

    def __init__(self, tick_seconds: Optional[float] = None):
        self.logger = get_logger("cron")
        self._tick_seconds = tick_seconds or Config.CRON_TICK_SECONDS
        self._lock = threading.Lock()
        self._timers: dict[str, Timer] = {}
        self._running = False
        self._thread: Optional[threading.Thread] = None

    # ── registration ────────────────────────────────────────────────

    def register(
        self,
        name: str,
        cron: Optional[str],
        job: Callable[[], Any],
        now: Optional[datetime] = None,
    ) -> Timer:
        """
        Add or replace a timer.

        Args:
            name: Unique timer name
            cron: 5 or 6 field cron expression, or None for a one-shot job
            job: Callable run when the timer fires
            now: Reference time for the first schedule (defaults to now)

        Raises:
            ValidationError: If the cron expression is malformed
        """
        now = now or datetime.now()
        if cron is not None:
            cron = normalize_cron(cron)
            if not is_valid_cron(cron):
                raise ValidationError(
                    f"Invalid cron expression: '{cron}'", context={"timer": name}
                )

        timer = Timer(name=name, cron=cron, job=job)
        if timer.recurring:
            timer.advance(now)
        else:
            timer.next_run = now

        with self._lock:
            previous = self._timers.get(name)
            replaced = previous is not None
            if previous is not None:
                previous.cancelled = True
            self._timers[name] = timer
            count = len(self._timers)

        log_event(
            self.logger,
            "info",
            "cron.timer.registered",
            timer=name,
            cron=cron,
            replaced=replaced,
            next_run=timer.next_run.isoformat() if timer.next_run else None,
            timer_count=count,
        )
        return timer

    def remove(self, name: str) -> bool:
        """Remove a timer. Unknown names are ignored."""
        with self._lock:
            timer = self._timers.pop(name, None)
            if timer is not None:
                timer.cancelled = True
        removed = timer is not None
        if removed:
            self.logger.info(f"Removed timer {name}")
        return removed

    def clear_all(self):
        """Clear all timers."""
        with self._lock:
            for timer in self._timers.values():
                timer.cancelled = True
            self._timers.clear()
        self.logger.info("Cleared all timers")

    def size(self) -> int:
        with self._lock:
            return len(self._timers)

    def names(self, prefix: Optional[str] = None) -> list[str]:
        with self._lock:
            return sorted(
                n for n in self._timers if prefix is None or n.startswith(prefix)
            )

    def get(self, name: str) -> Optional[Timer]:
        with self._lock:
            return self._timers.get(name)

    # ── firing ──────────────────────────────────────────────────────

    def run_pending(self, now: Optional[datetime] = None) -> list[threading.Thread]:
        """
        Dispatch every due timer.

        One-shot timers are dropped before they run; recurring timers are
        advanced to their next match. Returns the dispatched threads.
        """
        now = now or datetime.now()
        due: list[Timer] = []
        with self._lock:
            for name, timer in list(self._timers.items()):
                if timer.next_run is None or timer.next_run > now:
                    continue
                due.append(timer)
                if timer.recurring:
                    timer.advance(now)
                else:
                    del self._timers[name]

        return [self._dispatch(timer) for timer in due]

    def fire(self, name: str) -> Any:
        """Run a timer's job synchronously on the calling thread."""
        timer = self.get(name)
        if timer is None:
            raise KeyError(f"No timer named {name}")
        return timer.job()

    def _dispatch(self, timer: Timer) -> threading.Thread:
        thread = threading.Thread(
            target=self._invoke,
            args=(timer,),
            daemon=True,
            name=f"cron-{timer.name}",
        )
        thread.start()
        return thread

    def _invoke(self, timer: Timer) -> None:
        with self._lock:
            cancelled = timer.cancelled
        if cancelled:
            log_event(self.logger, "info", "cron.job.skipped", timer=timer.name)
            return
        with run_context(timer=timer.name):
            log_event(self.logger, "info", "cron.job.start", timer=timer.name)
            try:
                timer.job()
                log_event(self.logger, "info", "cron.job.complete", timer=timer.name)
            except Exception as e:
                log_exception(self.logger, e, "cron.job.failed", timer=timer.name)

    # ── loop ────────────────────────────────────────────────────────

    def start(self):
        """Start the timer loop in a background thread."""
        if self._running:
            self.logger.warning("Cron registry is already running")
            return

        self._running = True
        self._thread = threading.Thread(target=self._run_loop, daemon=True, name="cron-loop")
        self._thread.start()
        log_event(self.logger, "info", "cron.started", timer_count=self.size())

    def stop(self):
        """Stop the timer loop."""
        self._running = False
        if self._thread:
            self._thread.join(timeout=5)
            self._thread = None
        log_event(self.logger, "info", "cron.stopped")

    @property
    def running(self) -> bool:
        return self._running

    def _run_loop(self):
        """Main timer loop."""
        while self._running:
            try:
                self.run_pending()
            except Exception as e:
                log_exception(self.logger, e, "cron.run_pending.exception")
            time.sleep(self._tick_seconds)

    # ── introspection ───────────────────────────────────────────────

    def get_next_runs(self) -> dict[str, Optional[datetime]]:
        """Get the next run time for each timer."""
        with self._lock:
            return {name: timer.next_run for name, timer in self._timers.items()}

    def get_status(self) -> dict:
        """Get registry status."""
        with self._lock:
            timers = list(self._timers.values())
        return {
            "running": self._running,
            "timer_count": len(timers),
            "timers": [
                {
                    "name": timer.name,
                    "cron": timer.cron,
                    "next_run": timer.next_run.isoformat() if timer.next_run else None,
                }
                for timer in sorted(timers, key=lambda t: t.name)
            ],
        }
