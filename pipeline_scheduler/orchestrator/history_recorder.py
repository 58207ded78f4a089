"""
Durable recording of run outcomes and logs.
"""

from __future__ import annotations

from typing import Optional

from pipeline_scheduler.models import (
    ERROR_STATUS,
    HISTORY_START_STATUS,
    HistoryEntity,
    HistoryLogEntity,
    PipelineEntity,
    RunHistory,
)
from pipeline_scheduler.services.repository import Repository
from pipeline_scheduler.utils import get_logger
from pipeline_scheduler.utils.logging_config import log_exception, log_event


class RunHistoryRecorder:
    """
    Persist run snapshots emitted by an Executor.

    record() performs three writes with no surrounding transaction:

    1. pipeline.status / pipeline.last_history_time
    2. history row (upsert on run id)
    3. history log row (upsert on the same run id)

    When any of them fails the pipeline status is forced to ``error`` so
    it never stays ``running`` after a lost record, then the error is
    re-raised. Every write is keyed by run id, so repeating record()
    for the same snapshot is safe.
    """

    def __init__(
        self,
        pipelines: Repository[PipelineEntity],
        histories: Repository[HistoryEntity],
        history_logs: Repository[HistoryLogEntity],
    ):
        self.pipelines = pipelines
        self.histories = histories
        self.history_logs = history_logs
        self.logger = get_logger("history")

    def start(self, entity: PipelineEntity, trigger_type: Optional[str] = None) -> int:
        """Pre-allocate the history row for a run and return its id."""
        history = self.histories.save(
            HistoryEntity(
                user_id=entity.user_id,
                pipeline_id=entity.id,
                pipeline=entity.content,
                status=HISTORY_START_STATUS,
                trigger_type=trigger_type,
            )
        )
        log_event(
            self.logger,
            "info",
            "history.started",
            pipeline_id=entity.id,
            history_id=history.id,
            trigger_type=trigger_type,
        )
        assert history.id is not None
        return history.id

    def record(self, history: RunHistory) -> None:
        """Persist a snapshot, falling back to an ``error`` pipeline status on failure."""
        try:
            self.save(history)
        except Exception as e:
            self.pipelines.update(
                history.pipeline_id,
                status=ERROR_STATUS,
                last_history_time=history.start_time,
            )
            log_exception(
                self.logger,
                e,
                "history.record.failed",
                pipeline_id=history.pipeline_id,
                history_id=history.id,
            )
            raise

    def save(self, history: RunHistory) -> None:
        pipeline_id = history.pipeline_id
        history_id = int(history.id)
        status = history.status or ""

        self.pipelines.update(
            pipeline_id,
            status=status,
            last_history_time=history.start_time,
        )

        # Update in place so columns set by start() (trigger_type) survive
        values = dict(
            user_id=history.pipeline.user_id,
            pipeline_id=pipeline_id,
            pipeline=history.pipeline.to_json(),
            status=status,
        )
        if not self.histories.update(history_id, **values):
            self.histories.save(HistoryEntity(id=history_id, **values))

        self.history_logs.save(
            HistoryLogEntity(
                id=history_id,
                user_id=history.pipeline.user_id,
                pipeline_id=pipeline_id,
                history_id=history_id,
                logs=history.logs_json(),
            )
        )
        log_event(
            self.logger,
            "debug",
            "history.recorded",
            pipeline_id=pipeline_id,
            history_id=history_id,
            status=status,
        )
