"""
PostgreSQL connection pool shared by the pipeline, history, history-log,
access and storage stores.

Connections are borrowed by HTTP request threads and by cron job threads
(one per firing, plus the recorder writes each run makes), so the pool is
sized from DB_POOL_MIN_SIZE / DB_POOL_MAX_SIZE rather than per store.
Sessions are tagged with application_name so scheduler connections can be
told apart in pg_stat_activity.

When DATABASE_URL is empty no pool is created and the container keeps
every store in memory.
"""

from __future__ import annotations

import threading
from typing import Any, Iterable, Optional

from pipeline_scheduler.config import Config
from pipeline_scheduler.utils import get_logger
from pipeline_scheduler.utils.logging_config import log_event, log_exception

APPLICATION_NAME = "pipeline-scheduler"

# Subset of psycopg_pool's get_stats() surfaced on the status endpoint
_STAT_KEYS = (
    "pool_min",
    "pool_max",
    "pool_size",
    "pool_available",
    "requests_waiting",
    "requests_num",
    "requests_errors",
    "connections_errors",
)

logger = get_logger("db.pool")

_pool = None
_pool_lock = threading.Lock()


def is_configured() -> bool:
    return bool(Config.DATABASE_URL)


def get_pool():
    """Return the shared ConnectionPool, opening it on first use.

    Raises:
        ValueError: If DATABASE_URL is not configured.
    """
    global _pool
    if _pool is None:
        with _pool_lock:
            if _pool is None:
                if not is_configured():
                    raise ValueError("DATABASE_URL is not configured")
                from psycopg_pool import ConnectionPool

                _pool = ConnectionPool(
                    Config.DATABASE_URL,
                    min_size=Config.DB_POOL_MIN_SIZE,
                    max_size=Config.DB_POOL_MAX_SIZE,
                    timeout=float(Config.DB_POOL_TIMEOUT),
                    name=APPLICATION_NAME,
                    kwargs={"application_name": APPLICATION_NAME},
                    open=True,
                    check=ConnectionPool.check_connection,
                )
                log_event(
                    logger,
                    "info",
                    "db.pool.opened",
                    min_size=Config.DB_POOL_MIN_SIZE,
                    max_size=Config.DB_POOL_MAX_SIZE,
                    timeout=Config.DB_POOL_TIMEOUT,
                )
    return _pool


def ensure_schemas(stores: Iterable[Any]) -> list[str]:
    """Create each store's table and indexes; returns the table names.

    Run once at startup so a missing grant or an unreachable server stops
    the service before any timer is registered.
    """
    tables = []
    for store in stores:
        try:
            store.ensure_schema()
        except Exception as exc:
            log_exception(logger, exc, "db.schema.failed", table=store.TABLE)
            raise
        tables.append(store.TABLE)
    log_event(logger, "info", "db.schema.ready", tables=tables)
    return tables


def get_stats() -> Optional[dict[str, int]]:
    """Pool counters for the status endpoint, or None before the pool opens."""
    pool = _pool
    if pool is None:
        return None
    stats = pool.get_stats()
    return {key: stats.get(key, 0) for key in _STAT_KEYS}


def close_pool() -> None:
    """Close the shared pool; safe to call when it was never opened."""
    global _pool
    with _pool_lock:
        if _pool is not None:
            _pool.close()
            _pool = None
            log_event(logger, "info", "db.pool.closed")
