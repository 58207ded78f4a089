"""
Configuration management for the pipeline scheduler service.
"""

from __future__ import annotations

import os
from pathlib import Path
from dotenv import load_dotenv


def load_env():
    """Load environment variables with safeguards."""
    app_env = os.getenv("APP_ENV", "development").lower()
    is_test = app_env == "test"

    env_file = ".env"
    if is_test:
        test_env = ".env.test"
        if os.path.exists(test_env):
            env_file = test_env

    load_dotenv(env_file)

    # Refuse to run production with test configuration loaded
    if app_env == "production":
        if os.path.exists(".env.test") or os.getenv("TEST_ENV_LOADED"):
            raise RuntimeError(
                "FATAL: Production environment detected but .env.test file is present "
                "or test configuration was loaded. Remove .env.test from the "
                "production environment."
            )


# Load environment variables
load_env()


# Base paths
BASE_DIR = Path(__file__).parent.parent
DATA_DIR = Path(os.getenv("DATA_DIR", BASE_DIR / "data"))


def _parse_bounded_int(
    raw: str, param_name: str, min_val: int = 1, max_val: int = 600
) -> int:
    """Validate a parameter as a bounded integer.

    Args:
        raw: Raw value from environment variable
        param_name: Name of the parameter for error messages
        min_val: Minimum allowed value (default 1)
        max_val: Maximum allowed value (default 600)

    Returns:
        Validated integer value

    Raises:
        ValueError: If value is not an integer or out of range
    """
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise ValueError(
            f"Invalid Config.{param_name}: must be an integer, got '{raw}'"
        )

    if value < min_val or value > max_val:
        raise ValueError(
            f"Invalid Config.{param_name}: must be between {min_val} and {max_val} inclusive, got '{value}'"
        )
    return value


class Config:
    """Application configuration."""

    # HTTP
    HOST = os.getenv("HOST", "0.0.0.0")
    PORT = int(os.getenv("PORT", 7001))
    DEBUG = os.getenv("FLASK_DEBUG", "0") == "1"

    # Database (empty -> in-memory repositories, nothing survives a restart)
    DATABASE_URL = os.getenv("DATABASE_URL", "")
    # Connection pool shared by every store. Each cron firing holds a
    # connection for its recorder writes, on top of the HTTP threads.
    DB_POOL_MIN_SIZE = _parse_bounded_int(
        os.getenv("DB_POOL_MIN_SIZE", "1"), "DB_POOL_MIN_SIZE", min_val=0, max_val=50
    )
    DB_POOL_MAX_SIZE = _parse_bounded_int(
        os.getenv("DB_POOL_MAX_SIZE", "8"), "DB_POOL_MAX_SIZE", min_val=1, max_val=100
    )
    DB_POOL_TIMEOUT = _parse_bounded_int(
        os.getenv("DB_POOL_TIMEOUT", "10"), "DB_POOL_TIMEOUT", min_val=1, max_val=120
    )

    # Directories
    FILE_ROOT_DIR = Path(os.getenv("FILE_ROOT_DIR", DATA_DIR / "files"))
    LOG_DIR = Path(os.getenv("LOG_DIR", DATA_DIR / "logs"))

    # Scheduling
    CRON_TICK_SECONDS = float(os.getenv("CRON_TICK_SECONDS", "1.0"))
    TRIGGER_RELOAD_BATCH_SIZE = _parse_bounded_int(
        os.getenv("TRIGGER_RELOAD_BATCH_SIZE", "20"),
        "TRIGGER_RELOAD_BATCH_SIZE",
        min_val=1,
        max_val=500,
    )
    ALLOW_OVERLAPPING_RUNS = (
        os.getenv("ALLOW_OVERLAPPING_RUNS", "true").lower() == "true"
    )

    # Executor implementation, as "package.module:ClassName"
    EXECUTOR_CLASS = os.getenv("EXECUTOR_CLASS", "")

    # Email notifications
    SMTP_HOST = os.getenv("SMTP_HOST", "")
    SMTP_PORT = int(os.getenv("SMTP_PORT", 587))
    SMTP_USERNAME = os.getenv("SMTP_USERNAME", "")
    SMTP_PASSWORD = os.getenv("SMTP_PASSWORD", "")
    SMTP_SENDER = os.getenv("SMTP_SENDER", "")
    SMTP_USE_TLS = os.getenv("SMTP_USE_TLS", "true").lower() == "true"
    SMTP_TIMEOUT = _parse_bounded_int(
        os.getenv("SMTP_TIMEOUT", "30"), "SMTP_TIMEOUT", min_val=1, max_val=600
    )

    # Logging
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_JSON_FORMAT = os.getenv("LOG_JSON_FORMAT", "true").lower() == "true"
    LOG_FILE_MAX_BYTES = int(os.getenv("LOG_FILE_MAX_BYTES", 10 * 1024 * 1024))
    LOG_FILE_BACKUP_COUNT = int(os.getenv("LOG_FILE_BACKUP_COUNT", 5))
    LOG_TO_FILE = os.getenv("LOG_TO_FILE", "true").lower() == "true"

    VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

    @classmethod
    def ensure_directories(cls):
        """Create required directories if they don't exist."""
        for dir_path in [cls.FILE_ROOT_DIR, cls.LOG_DIR]:
            dir_path.mkdir(parents=True, exist_ok=True)

    @classmethod
    def validate(cls):
        """Validate config invariants and fail fast on misconfiguration."""
        if cls.CRON_TICK_SECONDS <= 0:
            raise ValueError(
                f"Invalid Config: CRON_TICK_SECONDS must be positive, got {cls.CRON_TICK_SECONDS}"
            )

        if cls.DB_POOL_MIN_SIZE > cls.DB_POOL_MAX_SIZE:
            raise ValueError(
                f"Invalid Config: DB_POOL_MIN_SIZE ({cls.DB_POOL_MIN_SIZE}) exceeds "
                f"DB_POOL_MAX_SIZE ({cls.DB_POOL_MAX_SIZE})"
            )

        if cls.LOG_LEVEL.upper() not in cls.VALID_LOG_LEVELS:
            raise ValueError(
                f"Invalid LOG_LEVEL '{cls.LOG_LEVEL}'. "
                f"Must be one of: {', '.join(cls.VALID_LOG_LEVELS)}"
            )

        if cls.EXECUTOR_CLASS and ":" not in cls.EXECUTOR_CLASS:
            raise ValueError(
                "Invalid Config: EXECUTOR_CLASS must look like 'package.module:ClassName', "
                f"got '{cls.EXECUTOR_CLASS}'"
            )

        if cls.SMTP_HOST and not cls.SMTP_SENDER:
            raise ValueError(
                "Invalid Config: SMTP_HOST is set but SMTP_SENDER is empty"
            )

        if bool(cls.SMTP_USERNAME) != bool(cls.SMTP_PASSWORD):
            raise ValueError(
                "Invalid Config: SMTP_USERNAME and SMTP_PASSWORD must be set together"
            )


# Note: ensure_directories() and validate() are not called on import to avoid
# side-effects during tests. The entry point calls them explicitly.
