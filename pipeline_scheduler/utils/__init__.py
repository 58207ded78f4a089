"""
Utility modules for the pipeline scheduler service.
"""

from .logging_config import setup_logging, get_logger
from .errors import (
    PipelineError,
    ConfigurationError,
    ValidationError,
    StateError,
    PipelineNotFoundError,
    PipelineAlreadyRunningError,
    AccessError,
)

__all__ = [
    "setup_logging",
    "get_logger",
    "PipelineError",
    "ConfigurationError",
    "ValidationError",
    "StateError",
    "PipelineNotFoundError",
    "PipelineAlreadyRunningError",
    "AccessError",
]
