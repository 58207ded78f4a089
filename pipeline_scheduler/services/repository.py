"""
Generic repository abstraction over entity dataclasses.

Two implementations share one contract:

- ``PostgresRepository``: psycopg pool backed, one table per entity,
  columns named after the dataclass fields.
- ``MemoryRepository``: dict backed, used when DATABASE_URL is empty
  and in tests. Nothing survives a restart.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import fields, replace
from typing import Any, Generic, Iterable, Iterator, Optional, TypeVar

import psycopg

from pipeline_scheduler.utils import get_logger
from pipeline_scheduler.utils.errors import StateError
from pipeline_scheduler.utils.logging_config import log_exception

E = TypeVar("E")


class Repository(ABC, Generic[E]):
    """CRUD contract used by the orchestration core."""

    entity_cls: type

    @property
    def columns(self) -> list[str]:
        return [f.name for f in fields(self.entity_cls)]

    def _check_columns(self, names: Iterable[str]) -> None:
        unknown = set(names) - set(self.columns)
        if unknown:
            raise ValueError(
                f"Unknown column(s) for {self.entity_cls.__name__}: {', '.join(sorted(unknown))}"
            )

    @abstractmethod
    def get(self, entity_id: int) -> Optional[E]:
        """Fetch one entity by id, or None."""

    @abstractmethod
    def find_by_ids(self, ids: list[int]) -> list[E]:
        """Fetch every entity whose id is in ``ids`` (order by id)."""

    @abstractmethod
    def find(self, **filters: Any) -> list[E]:
        """Fetch entities whose columns equal every given filter value."""

    @abstractmethod
    def find_ids(self, **filters: Any) -> list[int]:
        """Like find(), returning ids only."""

    @abstractmethod
    def save(self, entity: E) -> E:
        """Insert or update; returns the stored entity with its id assigned."""

    @abstractmethod
    def update(self, entity_id: int, **values: Any) -> bool:
        """Partial update of the given columns. Returns True if a row matched."""

    @abstractmethod
    def delete_by_ids(self, ids: list[int]) -> int:
        """Delete rows by id. Returns the number of deleted rows."""


class MemoryRepository(Repository[E]):
    """Thread-safe in-process repository."""

    def __init__(self, entity_cls: type) -> None:
        self.entity_cls = entity_cls
        self._rows: dict[int, Any] = {}
        self._next_id = 1
        self._lock = threading.Lock()

    def get(self, entity_id: int) -> Optional[E]:
        with self._lock:
            row = self._rows.get(int(entity_id))
            return replace(row) if row is not None else None

    def find_by_ids(self, ids: list[int]) -> list[E]:
        wanted = {int(i) for i in ids}
        with self._lock:
            return [replace(self._rows[i]) for i in sorted(wanted) if i in self._rows]

    def find(self, **filters: Any) -> list[E]:
        self._check_columns(filters)
        with self._lock:
            return [
                replace(row)
                for _, row in sorted(self._rows.items())
                if all(getattr(row, k) == v for k, v in filters.items())
            ]

    def find_ids(self, **filters: Any) -> list[int]:
        return [row.id for row in self.find(**filters)]

    def save(self, entity: E) -> E:
        with self._lock:
            entity_id = getattr(entity, "id")
            if entity_id is None:
                entity_id = self._next_id
            entity_id = int(entity_id)
            self._next_id = max(self._next_id, entity_id + 1)
            stored = replace(entity, id=entity_id)  # type: ignore[type-var]
            self._rows[entity_id] = stored
            return replace(stored)

    def update(self, entity_id: int, **values: Any) -> bool:
        self._check_columns(values)
        with self._lock:
            row = self._rows.get(int(entity_id))
            if row is None:
                return False
            self._rows[int(entity_id)] = replace(row, **values)
            return True

    def delete_by_ids(self, ids: list[int]) -> int:
        deleted = 0
        with self._lock:
            for entity_id in ids:
                if self._rows.pop(int(entity_id), None) is not None:
                    deleted += 1
        return deleted


class PostgresRepository(Repository[E]):
    """CRUD layer over one PostgreSQL table.

    Subclasses set ``TABLE``, ``entity_cls`` and ``SCHEMA`` (DDL statements
    run once by ensure_schema()). Driver errors raised by writes surface
    as StateError. Table and column names come from class
    constants and dataclass fields, never from user input.
    """

    TABLE: str = ""
    SCHEMA: tuple[str, ...] = ()

    def __init__(self, pool: Any) -> None:
        self._pool = pool
        self.logger = get_logger(f"store.{self.TABLE}")
        self._schema_ensured = False

    # ── schema ──────────────────────────────────────────────────────

    def ensure_schema(self) -> None:
        """Create the table and indexes if they don't exist."""
        if self._schema_ensured:
            return
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                for statement in self.SCHEMA:
                    cur.execute(statement)
            conn.commit()
        self._schema_ensured = True
        self.logger.debug(f"{self.TABLE} schema ensured")

    # ── CRUD ────────────────────────────────────────────────────────

    def _select(self) -> str:
        return f"SELECT {', '.join(self.columns)} FROM {self.TABLE}"

    def get(self, entity_id: int) -> Optional[E]:
        self.ensure_schema()
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(f"{self._select()} WHERE id = %s", (entity_id,))
                row = cur.fetchone()
        if row is None:
            return None
        return self._row_to_entity(row)

    def find_by_ids(self, ids: list[int]) -> list[E]:
        if not ids:
            return []
        self.ensure_schema()
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"{self._select()} WHERE id = ANY(%s) ORDER BY id",
                    (list(ids),),
                )
                rows = cur.fetchall()
        return [self._row_to_entity(r) for r in rows]

    def _where(self, filters: dict[str, Any]) -> tuple[str, tuple]:
        self._check_columns(filters)
        if not filters:
            return "", ()
        clause = " AND ".join(f"{name} = %s" for name in filters)
        return f" WHERE {clause}", tuple(filters.values())

    def find(self, **filters: Any) -> list[E]:
        self.ensure_schema()
        where, params = self._where(filters)
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(f"{self._select()}{where} ORDER BY id", params)
                rows = cur.fetchall()
        return [self._row_to_entity(r) for r in rows]

    def find_ids(self, **filters: Any) -> list[int]:
        self.ensure_schema()
        where, params = self._where(filters)
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(f"SELECT id FROM {self.TABLE}{where} ORDER BY id", params)
                return [row[0] for row in cur.fetchall()]

    def save(self, entity: E) -> E:
        self.ensure_schema()
        values = {name: getattr(entity, name) for name in self.columns}
        with self._write_errors("save", entity_id=values["id"]), self._pool.connection() as conn:
            with conn.cursor() as cur:
                if values["id"] is None:
                    names = [n for n in self.columns if n != "id"]
                    cur.execute(
                        f"INSERT INTO {self.TABLE} ({', '.join(names)}) "
                        f"VALUES ({', '.join(['%s'] * len(names))}) RETURNING id",
                        tuple(values[n] for n in names),
                    )
                    values["id"] = cur.fetchone()[0]
                else:
                    names = self.columns
                    updates = ", ".join(
                        f"{n} = EXCLUDED.{n}" for n in names if n != "id"
                    )
                    cur.execute(
                        f"INSERT INTO {self.TABLE} ({', '.join(names)}) "
                        f"VALUES ({', '.join(['%s'] * len(names))}) "
                        f"ON CONFLICT (id) DO UPDATE SET {updates}",
                        tuple(values[n] for n in names),
                    )
            conn.commit()
        return self.entity_cls(**values)

    def update(self, entity_id: int, **values: Any) -> bool:
        if not values:
            return False
        self._check_columns(values)
        self.ensure_schema()
        assignments = ", ".join(f"{name} = %s" for name in values)
        with self._write_errors("update", entity_id=entity_id), self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"UPDATE {self.TABLE} SET {assignments} WHERE id = %s",
                    (*values.values(), entity_id),
                )
                updated = cur.rowcount > 0
            conn.commit()
        return updated

    def delete_by_ids(self, ids: list[int]) -> int:
        if not ids:
            return 0
        self.ensure_schema()
        with self._write_errors("delete", ids=list(ids)), self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"DELETE FROM {self.TABLE} WHERE id = ANY(%s)", (list(ids),)
                )
                deleted = cur.rowcount
            conn.commit()
        return deleted

    # ── helpers ─────────────────────────────────────────────────────

    @contextmanager
    def _write_errors(self, operation: str, **context: Any) -> Iterator[None]:
        """Re-raise driver errors from a write as StateError."""
        try:
            yield
        except psycopg.Error as exc:
            log_exception(
                self.logger, exc, "store.write.failed", table=self.TABLE, operation=operation
            )
            raise StateError(
                f"Failed to {operation} {self.TABLE} row(s): {exc}",
                context={"table": self.TABLE, "operation": operation, **context},
            ) from exc

    def _row_to_entity(self, row: tuple) -> E:
        """Convert a DB row tuple (in column order) to an entity."""
        return self.entity_cls(**dict(zip(self.columns, row)))
