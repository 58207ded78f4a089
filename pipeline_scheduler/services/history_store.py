"""
PostgreSQL persistence for run history and run logs.

A history row and its log row share the same id (the run id) and are
written in lockstep by the run history recorder.
"""

from __future__ import annotations

from pipeline_scheduler.models import HistoryEntity, HistoryLogEntity
from pipeline_scheduler.services.repository import PostgresRepository


class HistoryStore(PostgresRepository[HistoryEntity]):
    """CRUD layer over the ``pipeline_history`` table."""

    TABLE = "pipeline_history"
    entity_cls = HistoryEntity
    SCHEMA = (
        """
        CREATE TABLE IF NOT EXISTS pipeline_history (
            id              BIGSERIAL PRIMARY KEY,
            user_id         BIGINT,
            pipeline_id     BIGINT,
            pipeline        TEXT NOT NULL DEFAULT '{}',
            status          TEXT NOT NULL DEFAULT 'start',
            trigger_type    TEXT,
            created_at      TIMESTAMPTZ DEFAULT NOW()
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_pipeline_history_pipeline "
        "ON pipeline_history (pipeline_id)",
    )


class HistoryLogStore(PostgresRepository[HistoryLogEntity]):
    """CRUD layer over the ``pipeline_history_log`` table."""

    TABLE = "pipeline_history_log"
    entity_cls = HistoryLogEntity
    SCHEMA = (
        """
        CREATE TABLE IF NOT EXISTS pipeline_history_log (
            id              BIGINT PRIMARY KEY,
            user_id         BIGINT,
            pipeline_id     BIGINT,
            history_id      BIGINT,
            logs            TEXT NOT NULL DEFAULT '{}',
            created_at      TIMESTAMPTZ DEFAULT NOW()
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_pipeline_history_log_pipeline "
        "ON pipeline_history_log (pipeline_id)",
    )
