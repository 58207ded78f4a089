"""
Executor contract consumed by the orchestrator.

The Executor runs a pipeline's stages and reports progress through
``on_changed``. The orchestrator only constructs it, calls init() and
run(), and records whatever snapshots it emits.
"""

from __future__ import annotations

import importlib
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Optional

from pipeline_scheduler.models import PipelineDocument, RunHistory
from pipeline_scheduler.utils.errors import ConfigurationError

OnChanged = Callable[[RunHistory], None]


class Executor(ABC):
    """Abstract base class for pipeline executors."""

    def __init__(
        self,
        *,
        user_id: Optional[int],
        pipeline: PipelineDocument,
        on_changed: OnChanged,
        access_service: Any,
        storage: Any,
        email_service: Any,
        file_root_dir: Path,
    ):
        self.user_id = user_id
        self.pipeline = pipeline
        self.on_changed = on_changed
        self.access_service = access_service
        self.storage = storage
        self.email_service = email_service
        self.file_root_dir = file_root_dir

    @abstractmethod
    def init(self) -> None:
        """Prepare plugins and per-run state before run()."""

    @abstractmethod
    def run(self, history_id: int, trigger_type: str) -> None:
        """
        Run every stage of the pipeline.

        Must call ``emit()`` at least once with the final snapshot.
        """

    def emit(self, history: RunHistory) -> None:
        self.on_changed(history)


ExecutorFactory = Callable[..., Executor]


def load_executor_class(path: str) -> type[Executor]:
    """
    Import an Executor subclass from a ``package.module:ClassName`` path.

    Raises:
        ConfigurationError: If the path is empty, unimportable, or not an Executor
    """
    if not path or ":" not in path:
        raise ConfigurationError(
            "No executor configured: set EXECUTOR_CLASS to 'package.module:ClassName'"
        )
    module_name, class_name = path.split(":", 1)
    try:
        module = importlib.import_module(module_name)
        cls = getattr(module, class_name)
    except (ImportError, AttributeError) as exc:
        raise ConfigurationError(
            f"Cannot load executor class '{path}'", context={"error": str(exc)}
        ) from exc

    if not isinstance(cls, type) or not issubclass(cls, Executor):
        raise ConfigurationError(f"'{path}' is not an Executor subclass")
    return cls
