"""
PostgreSQL persistence for pipeline definitions.

``content`` holds the serialized pipeline document; ``status`` and
``last_history_time`` are the orchestration-owned cache of the last run.
"""

from __future__ import annotations

from pipeline_scheduler.models import PipelineEntity
from pipeline_scheduler.services.repository import PostgresRepository


class PipelineStore(PostgresRepository[PipelineEntity]):
    """CRUD layer over the ``pipeline`` table."""

    TABLE = "pipeline"
    entity_cls = PipelineEntity
    SCHEMA = (
        """
        CREATE TABLE IF NOT EXISTS pipeline (
            id                  BIGSERIAL PRIMARY KEY,
            user_id             BIGINT,
            title               TEXT NOT NULL DEFAULT '',
            content             TEXT NOT NULL DEFAULT '{}',
            disabled            BOOLEAN NOT NULL DEFAULT FALSE,
            status              TEXT,
            last_history_time   BIGINT
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_pipeline_disabled ON pipeline (disabled)",
        "CREATE INDEX IF NOT EXISTS idx_pipeline_user ON pipeline (user_id)",
    )
