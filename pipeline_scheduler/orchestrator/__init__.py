"""
Orchestration module for trigger scheduling and pipeline execution.
"""

from .cron import CronRegistry
from .executor import Executor
from .history_recorder import RunHistoryRecorder
from .pipeline_service import PipelineService
from .tracker import ExecutionTracker
from .triggers import TriggerResolver, TriggerType

__all__ = [
    "CronRegistry",
    "Executor",
    "ExecutionTracker",
    "PipelineService",
    "RunHistoryRecorder",
    "TriggerResolver",
    "TriggerType",
]
