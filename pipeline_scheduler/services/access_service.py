"""
Credential records consumed by pipeline steps.

Steps reference an access record by id; the Executor resolves it through
AccessService, which only hands out records owned by the running user.
"""

from __future__ import annotations

import json
from typing import Any, Optional

from pipeline_scheduler.models import AccessEntity
from pipeline_scheduler.services.repository import PostgresRepository, Repository
from pipeline_scheduler.utils import get_logger
from pipeline_scheduler.utils.errors import AccessError


class AccessStore(PostgresRepository[AccessEntity]):
    """CRUD layer over the ``pipeline_access`` table."""

    TABLE = "pipeline_access"
    entity_cls = AccessEntity
    SCHEMA = (
        """
        CREATE TABLE IF NOT EXISTS pipeline_access (
            id          BIGSERIAL PRIMARY KEY,
            user_id     BIGINT,
            name        TEXT NOT NULL DEFAULT '',
            type        TEXT NOT NULL DEFAULT '',
            setting     TEXT NOT NULL DEFAULT '{}'
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_pipeline_access_user ON pipeline_access (user_id)",
    )


class AccessService:
    """Look up decoded credential settings for a user."""

    def __init__(self, repository: Repository[AccessEntity]) -> None:
        self._repository = repository
        self.logger = get_logger("access")

    def get_by_id(self, access_id: int, user_id: Optional[int] = None) -> dict[str, Any]:
        """
        Return the decoded ``setting`` of an access record.

        Args:
            access_id: Access record id
            user_id: Owning user; when given, records of other users are refused

        Raises:
            AccessError: If the record is missing, foreign, or unreadable
        """
        entity = self._repository.get(access_id)
        if entity is None:
            raise AccessError(f"Access record {access_id} not found")
        if user_id is not None and entity.user_id != user_id:
            self.logger.warning(
                f"User {user_id} requested access record {access_id} owned by another user"
            )
            raise AccessError(f"Access record {access_id} not found")

        try:
            setting = json.loads(entity.setting or "{}")
        except json.JSONDecodeError as exc:
            raise AccessError(
                f"Access record {access_id} has an unreadable setting",
                context={"error": str(exc)},
            ) from exc

        setting.setdefault("type", entity.type)
        return setting
