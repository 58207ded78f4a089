"""Standardized exception hierarchy for pipeline orchestration."""

from __future__ import annotations

from typing import Any, Optional


class PipelineError(Exception):
    """Base exception for pipeline-related failures."""

    def __init__(
        self,
        message: str,
        *,
        pipeline_id: Optional[int] = None,
        recoverable: bool = True,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.pipeline_id = pipeline_id
        self.recoverable = recoverable
        self.context = context or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        parts = [self.message]
        if self.pipeline_id is not None:
            parts.append(f"[pipeline={self.pipeline_id}]")
        if self.context:
            parts.append(f"context={self.context}")
        return " ".join(parts)


class ConfigurationError(PipelineError):
    """Configuration or setup issues (non-recoverable by default)."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("recoverable", False)
        super().__init__(message, **kwargs)


class ValidationError(PipelineError):
    """Malformed pipeline documents or cron expressions."""

    def __init__(self, message: str, *, errors: Optional[list[str]] = None, **kwargs: Any) -> None:
        kwargs.setdefault("recoverable", False)
        self.errors = errors or []
        super().__init__(message, **kwargs)


class StateError(PipelineError):
    """State tracking or persistence failures."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("recoverable", False)
        super().__init__(message, **kwargs)


class PipelineNotFoundError(PipelineError):
    """Raised when a pipeline id does not resolve to a stored pipeline."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("recoverable", False)
        super().__init__(message, **kwargs)


class PipelineAlreadyRunningError(PipelineError):
    """Raised when overlapping runs are disallowed and a run is already tracked."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("recoverable", True)
        super().__init__(message, **kwargs)


class AccessError(PipelineError):
    """Missing credential record or one owned by another user."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("recoverable", False)
        super().__init__(message, **kwargs)
