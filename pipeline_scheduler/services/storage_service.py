"""
User-scoped key/value storage for pipeline steps.

Steps keep small pieces of state between runs (issued certificates,
deployment fingerprints, ...). DbStorage binds a user id so an Executor
can only see the records of the pipeline's owner.
"""

from __future__ import annotations

import json
from typing import Any, Optional

from pipeline_scheduler.models import StorageEntity
from pipeline_scheduler.services.repository import PostgresRepository, Repository


class StorageStore(PostgresRepository[StorageEntity]):
    """CRUD layer over the ``pipeline_storage`` table."""

    TABLE = "pipeline_storage"
    entity_cls = StorageEntity
    SCHEMA = (
        """
        CREATE TABLE IF NOT EXISTS pipeline_storage (
            id          BIGSERIAL PRIMARY KEY,
            user_id     BIGINT,
            scope       TEXT NOT NULL,
            namespace   TEXT NOT NULL,
            key         TEXT NOT NULL,
            value       TEXT
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_pipeline_storage_lookup "
        "ON pipeline_storage (user_id, scope, namespace, key)",
    )


class StorageService:
    """Get/set JSON values keyed by (user, scope, namespace, key)."""

    def __init__(self, repository: Repository[StorageEntity]) -> None:
        self._repository = repository

    def _find(self, user_id: int, scope: str, namespace: str, key: str) -> Optional[StorageEntity]:
        rows = self._repository.find(
            user_id=user_id, scope=scope, namespace=namespace, key=key
        )
        return rows[0] if rows else None

    def get(self, user_id: int, scope: str, namespace: str, key: str) -> Any:
        entity = self._find(user_id, scope, namespace, key)
        if entity is None or entity.value is None:
            return None
        return json.loads(entity.value)

    def set(self, user_id: int, scope: str, namespace: str, key: str, value: Any) -> None:
        entity = self._find(user_id, scope, namespace, key) or StorageEntity(
            user_id=user_id, scope=scope, namespace=namespace, key=key
        )
        entity.value = json.dumps(value, ensure_ascii=False)
        self._repository.save(entity)

    def remove(self, user_id: int, scope: str, namespace: str, key: str) -> bool:
        entity = self._find(user_id, scope, namespace, key)
        if entity is None or entity.id is None:
            return False
        return self._repository.delete_by_ids([entity.id]) > 0


class DbStorage:
    """StorageService view bound to one user, handed to Executors."""

    def __init__(self, user_id: int, storage_service: StorageService) -> None:
        self.user_id = user_id
        self._service = storage_service

    def get(self, scope: str, namespace: str, key: str) -> Any:
        return self._service.get(self.user_id, scope, namespace, key)

    def set(self, scope: str, namespace: str, key: str, value: Any) -> None:
        self._service.set(self.user_id, scope, namespace, key, value)

    def remove(self, scope: str, namespace: str, key: str) -> bool:
        return self._service.remove(self.user_id, scope, namespace, key)
