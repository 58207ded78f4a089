"""
Pipeline orchestration: trigger lifecycle and run dispatch.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

from pipeline_scheduler.models import (
    PipelineDetail,
    PipelineDocument,
    PipelineEntity,
    RunHistory,
    Trigger,
)
from pipeline_scheduler.orchestrator.cron import CronRegistry
from pipeline_scheduler.orchestrator.executor import Executor, ExecutorFactory
from pipeline_scheduler.orchestrator.history_recorder import RunHistoryRecorder
from pipeline_scheduler.orchestrator.tracker import ExecutionTracker
from pipeline_scheduler.orchestrator.triggers import (
    ONCE_TRIGGER_ID,
    TriggerResolver,
    TriggerType,
    once_timer_name,
    timer_name,
    timer_prefix,
)
from pipeline_scheduler.services.repository import Repository
from pipeline_scheduler.services.storage_service import DbStorage, StorageService
from pipeline_scheduler.utils import get_logger
from pipeline_scheduler.utils.errors import (
    PipelineAlreadyRunningError,
    PipelineNotFoundError,
    ValidationError,
)
from pipeline_scheduler.utils.logging_config import log_exception, log_event, run_context


class PipelineService:
    """
    Owns the pipeline lifecycle around the Executor.

    - Startup: reload timers for every enabled pipeline
    - Save/delete: keep timers in line with stored documents
    - Fire: map a timer or manual call to exactly one Executor run,
      tracked while it runs and recorded through the history recorder
    """

    def __init__(
        self,
        pipelines: Repository[PipelineEntity],
        recorder: RunHistoryRecorder,
        cron: CronRegistry,
        tracker: ExecutionTracker,
        executor_factory: ExecutorFactory,
        *,
        access_service: Any = None,
        storage_service: Optional[StorageService] = None,
        email_service: Any = None,
        file_root_dir: Optional[Path] = None,
        batch_size: int = 20,
        allow_overlap: bool = True,
    ):
        self.pipelines = pipelines
        self.recorder = recorder
        self.cron = cron
        self.tracker = tracker
        self.executor_factory = executor_factory
        self.resolver = TriggerResolver(cron)
        self.access_service = access_service
        self.storage_service = storage_service
        self.email_service = email_service
        self.file_root_dir = file_root_dir or Path(".")
        self.batch_size = batch_size
        self.allow_overlap = allow_overlap
        self.logger = get_logger("pipeline")

    # ── queries ─────────────────────────────────────────────────────

    def info(self, pipeline_id: int) -> PipelineEntity:
        entity = self.pipelines.get(pipeline_id)
        if entity is None:
            raise PipelineNotFoundError(
                f"Pipeline {pipeline_id} not found", pipeline_id=pipeline_id
            )
        return entity

    def detail(self, pipeline_id: int) -> PipelineDetail:
        entity = self.info(pipeline_id)
        return PipelineDetail(
            entity=entity,
            pipeline=entity.parse_document(),
            running=self.tracker.is_running(pipeline_id),
        )

    def is_running(self, pipeline_id: int) -> bool:
        return self.tracker.is_running(pipeline_id)

    # ── persistence ─────────────────────────────────────────────────

    def save(self, entity: PipelineEntity) -> PipelineEntity:
        """
        Validate and persist a pipeline.

        The title is taken from the document. The stored content is rewritten
        so its id and userId match the row. Triggers are not registered
        here; callers follow up with register_trigger_by_id().

        Raises:
            ValidationError: If the document is malformed
        """
        document = PipelineDocument.from_json(entity.content)
        entity.title = document.title
        saved = self.pipelines.save(entity)

        document.id = saved.id
        if saved.user_id is not None:
            document.user_id = saved.user_id
        content = document.to_json()
        if content != saved.content:
            saved.content = content
            self.pipelines.update(saved.id, content=content)

        log_event(self.logger, "info", "pipeline.saved", pipeline_id=saved.id, title=saved.title)
        return saved

    def update(self, pipeline_id: int, **values: Any) -> bool:
        return self.pipelines.update(pipeline_id, **values)

    def delete(self, pipeline_id: int) -> None:
        """Remove the pipeline's timers, then the pipeline. History is kept."""
        entity = self.pipelines.get(pipeline_id)
        if entity is None:
            return
        try:
            names = [timer_name(pipeline_id, t.id) for t in entity.parse_document().triggers]
        except ValidationError as e:
            # Unreadable content: fall back to every timer carrying the pipeline's prefix
            self.logger.warning(f"Pipeline {pipeline_id} content unreadable on delete: {e}")
            names = self.cron.names(prefix=timer_prefix(pipeline_id))

        for name in names:
            self.cron.remove(name)
        self.pipelines.delete_by_ids([pipeline_id])
        log_event(
            self.logger,
            "info",
            "pipeline.deleted",
            pipeline_id=pipeline_id,
            timers_removed=len(names),
        )

    # ── trigger registration ────────────────────────────────────────

    def on_startup(self) -> int:
        """Register timers for every enabled pipeline. Returns the timer count."""
        log_event(self.logger, "info", "pipeline.reload.start")
        ids = self.pipelines.find_ids(disabled=False)

        for offset in range(0, len(ids), self.batch_size):
            batch = ids[offset:offset + self.batch_size]
            for entity in self.pipelines.find_by_ids(batch):
                if entity.disabled:
                    continue
                try:
                    document = entity.parse_document()
                    if not document.disabled:
                        self.register_triggers(document)
                except Exception as e:
                    log_exception(
                        self.logger, e, "pipeline.reload.error", pipeline_id=entity.id
                    )

        count = self.cron.size()
        log_event(
            self.logger, "info", "pipeline.reload.complete", pipelines=len(ids), timer_count=count
        )
        return count

    def register_trigger_by_id(self, pipeline_id: Optional[int]) -> None:
        """
        Bring a pipeline's timers in line with its stored document.

        Enabled pipelines get every scheduled trigger (re)registered and
        timers of removed triggers dropped; disabled pipelines lose all of
        their recurring timers.
        """
        if pipeline_id is None:
            return
        entity = self.pipelines.get(pipeline_id)
        if entity is None:
            return

        document = entity.parse_document()
        keep: set[str] = set()
        if not entity.disabled and not document.disabled:
            self.register_triggers(document)
            keep = {timer_name(pipeline_id, t.id) for t in document.scheduled_triggers}

        once = once_timer_name(pipeline_id)
        for name in self.cron.names(prefix=timer_prefix(pipeline_id)):
            if name not in keep and name != once:
                self.cron.remove(name)

    def register_triggers(self, pipeline: Optional[PipelineDocument]) -> None:
        if pipeline is None or not pipeline.triggers:
            return
        for trigger in pipeline.triggers:
            self.register_cron(pipeline.id, trigger)
        self.logger.info(f"Current timer count: {self.cron.size()}")

    def register_cron(self, pipeline_id: int, trigger: Trigger) -> None:
        cron = trigger.cron
        if cron is None:
            return
        trigger_id = trigger.id

        def job():
            log_event(
                self.logger,
                "info",
                "pipeline.timer.fired",
                pipeline_id=pipeline_id,
                trigger_id=trigger_id,
            )
            self.run(pipeline_id, trigger_id)

        self.cron.register(timer_name(pipeline_id, trigger_id), cron, job)

    def remove_cron(self, pipeline_id: int, trigger_id: str) -> None:
        self.cron.remove(timer_name(pipeline_id, trigger_id))

    def trigger(self, pipeline_id: int) -> None:
        """Schedule a one-off manual run on the next cron tick."""

        def job():
            self.logger.info(
                f"Manual run starting for pipeline {pipeline_id}; timer count {self.cron.size()}"
            )
            self.run(pipeline_id, None)

        self.cron.register(once_timer_name(pipeline_id), None, job)
        log_event(
            self.logger,
            "info",
            "pipeline.trigger.scheduled",
            pipeline_id=pipeline_id,
            trigger_id=ONCE_TRIGGER_ID,
        )

    # ── execution ───────────────────────────────────────────────────

    def run(self, pipeline_id: int, trigger_id: Optional[str]) -> None:
        """
        Run a pipeline once.

        Args:
            pipeline_id: Pipeline to run
            trigger_id: Firing trigger, or None for a manual run

        Raises:
            PipelineNotFoundError: If the pipeline no longer exists
            PipelineAlreadyRunningError: If overlap is disallowed and a run is tracked
            Exception: Whatever the Executor raised from init()/run()
        """
        entity = self.info(pipeline_id)
        pipeline = entity.parse_document()

        if not pipeline.stages:
            self.logger.debug(f"Pipeline {pipeline_id} has no stages; nothing to run")
            return

        classification = self.resolver.classify(trigger_id, pipeline)
        if not classification.runnable:
            return

        if not self.allow_overlap and self.tracker.is_running(pipeline_id):
            raise PipelineAlreadyRunningError(
                f"Pipeline {pipeline_id} is already running", pipeline_id=pipeline_id
            )

        def on_changed(history: RunHistory) -> None:
            self.recorder.record(history)

        user_id = entity.user_id
        trigger_type = classification.type.value
        history_id = self.recorder.start(entity, trigger_type)

        executor = self._build_executor(user_id, pipeline, on_changed)
        with run_context(
            pipeline_id=pipeline_id,
            history_id=history_id,
            trigger_id=trigger_id,
            trigger_type=trigger_type,
        ):
            try:
                self.tracker.register(pipeline_id, executor)
                log_event(self.logger, "info", "pipeline.run.start")
                executor.init()
                executor.run(history_id, trigger_type)
                log_event(self.logger, "info", "pipeline.run.complete")
            except Exception as e:
                log_exception(
                    self.logger,
                    e,
                    "pipeline.run.failed",
                    pipeline_id=pipeline_id,
                    history_id=history_id,
                )
                raise
            finally:
                self.tracker.unregister(pipeline_id)

    def _build_executor(self, user_id, pipeline: PipelineDocument, on_changed) -> Executor:
        storage = (
            DbStorage(user_id, self.storage_service)
            if self.storage_service is not None
            else None
        )
        return self.executor_factory(
            user_id=user_id,
            pipeline=pipeline,
            on_changed=on_changed,
            access_service=self.access_service,
            storage=storage,
            email_service=self.email_service,
            file_root_dir=self.file_root_dir,
        )
