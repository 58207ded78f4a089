import json
import shutil
import tempfile
import time
from pathlib import Path

import pytest

from pipeline_scheduler.config import Config
from pipeline_scheduler.container import reset_container
from pipeline_scheduler.models import (
    HistoryEntity,
    HistoryLogEntity,
    PipelineDocument,
    PipelineEntity,
    RunHistory,
    RunStatus,
)
from pipeline_scheduler.orchestrator.cron import CronRegistry
from pipeline_scheduler.orchestrator.executor import Executor
from pipeline_scheduler.orchestrator.history_recorder import RunHistoryRecorder
from pipeline_scheduler.orchestrator.pipeline_service import PipelineService
from pipeline_scheduler.orchestrator.tracker import ExecutionTracker
from pipeline_scheduler.services.repository import MemoryRepository


@pytest.fixture
def temp_data_dir():
    """Create an isolated temporary data directory for tests."""
    path = Path(tempfile.mkdtemp())
    yield path
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch, temp_data_dir):
    """Redirect Config paths into the temp directory and reset the container."""
    monkeypatch.setattr(Config, "FILE_ROOT_DIR", temp_data_dir / "files")
    monkeypatch.setattr(Config, "LOG_DIR", temp_data_dir / "logs")
    monkeypatch.setattr(Config, "LOG_TO_FILE", False)
    monkeypatch.setattr(Config, "DATABASE_URL", "")
    monkeypatch.setattr(Config, "EXECUTOR_CLASS", "")

    Config.ensure_directories()
    reset_container()
    yield
    reset_container()


def now_millis():
    return int(time.time() * 1000)


class RecordingExecutor(Executor):
    """Executor double: emits a 'running' then a 'success' snapshot."""

    instances: list = []
    final_status = "success"

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.init_called = False
        self.run_args = None
        RecordingExecutor.instances.append(self)

    def init(self):
        self.init_called = True

    def run(self, history_id, trigger_type):
        self.run_args = (history_id, trigger_type)
        start = now_millis()
        self.emit(self._snapshot(history_id, "running", start))
        self.emit(self._snapshot(history_id, self.final_status, start))

    def _snapshot(self, history_id, status, start):
        data = self.pipeline.to_dict()
        document = PipelineDocument.from_dict(data)
        document.status = RunStatus(status=status, start_time=start)
        return RunHistory(
            id=history_id,
            pipeline=document,
            logs={stage.get("id", "stage"): [f"{status}"] for stage in self.pipeline.stages},
        )


class FailingExecutor(RecordingExecutor):
    """Executor double whose run() blows up after a 'running' snapshot."""

    def run(self, history_id, trigger_type):
        self.run_args = (history_id, trigger_type)
        self.emit(self._snapshot(history_id, "running", now_millis()))
        raise RuntimeError("step failed")


@pytest.fixture
def recording_executor():
    RecordingExecutor.instances = []
    yield RecordingExecutor
    RecordingExecutor.instances = []


@pytest.fixture
def repositories():
    """In-memory pipeline, history and history-log repositories."""
    return (
        MemoryRepository(PipelineEntity),
        MemoryRepository(HistoryEntity),
        MemoryRepository(HistoryLogEntity),
    )


@pytest.fixture
def cron():
    registry = CronRegistry(tick_seconds=0.05)
    yield registry
    if registry.running:
        registry.stop()


@pytest.fixture
def service(repositories, cron, recording_executor):
    """PipelineService wired to in-memory repositories and RecordingExecutor."""
    pipelines, histories, history_logs = repositories
    recorder = RunHistoryRecorder(pipelines, histories, history_logs)
    return PipelineService(
        pipelines=pipelines,
        recorder=recorder,
        cron=cron,
        tracker=ExecutionTracker(),
        executor_factory=recording_executor,
        file_root_dir=Config.FILE_ROOT_DIR,
    )


def make_content(pipeline_id=1, stages=1, triggers=None, disabled=False, title="Deploy"):
    """Serialized pipeline document for tests."""
    return json.dumps(
        {
            "id": pipeline_id,
            "title": title,
            "disabled": disabled,
            "stages": [{"id": f"s{i + 1}", "tasks": []} for i in range(stages)],
            "triggers": triggers if triggers is not None else [],
        }
    )


@pytest.fixture
def content_factory():
    return make_content


@pytest.fixture
def failing_executor():
    RecordingExecutor.instances = []
    yield FailingExecutor
    RecordingExecutor.instances = []
