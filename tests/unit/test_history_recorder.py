"""Tests for RunHistoryRecorder."""

from __future__ import annotations

import json
from unittest.mock import patch

import pytest

from pipeline_scheduler.models import (
    ERROR_STATUS,
    PipelineDocument,
    PipelineEntity,
    RunHistory,
    RunStatus,
)
from pipeline_scheduler.orchestrator.history_recorder import RunHistoryRecorder


def _snapshot(history_id, status, start_time=1_700_000_000_000):
    document = PipelineDocument.from_dict(
        {"id": 1, "userId": 5, "title": "Deploy", "stages": [{"id": "s1"}], "triggers": []}
    )
    document.status = RunStatus(status=status, start_time=start_time)
    return RunHistory(id=history_id, pipeline=document, logs={"s1": ["line 1", "line 2"]})


@pytest.fixture
def recorder(repositories, content_factory):
    pipelines, histories, history_logs = repositories
    pipelines.save(PipelineEntity(id=1, user_id=5, title="Deploy", content=content_factory()))
    return RunHistoryRecorder(pipelines, histories, history_logs)


class TestRecorderStart:
    def test_start_allocates_history_row(self, recorder):
        entity = recorder.pipelines.get(1)

        history_id = recorder.start(entity, "timer")

        row = recorder.histories.get(history_id)
        assert row.status == "start"
        assert row.pipeline_id == 1
        assert row.user_id == 5
        assert row.trigger_type == "timer"

    def test_start_ids_are_distinct(self, recorder):
        entity = recorder.pipelines.get(1)

        assert recorder.start(entity, "manual") != recorder.start(entity, "manual")


class TestRecorderRecord:
    def test_record_writes_three_rows(self, recorder):
        history_id = recorder.start(recorder.pipelines.get(1), "timer")

        recorder.record(_snapshot(history_id, "success"))

        pipeline = recorder.pipelines.get(1)
        assert pipeline.status == "success"
        assert pipeline.last_history_time == 1_700_000_000_000

        history = recorder.histories.get(history_id)
        assert history.status == "success"
        assert history.trigger_type == "timer"
        assert json.loads(history.pipeline)["status"]["status"] == "success"

        log = recorder.history_logs.get(history_id)
        assert log.history_id == history_id
        assert log.pipeline_id == 1
        assert json.loads(log.logs) == {"s1": ["line 1", "line 2"]}

    def test_record_is_idempotent(self, recorder):
        history_id = recorder.start(recorder.pipelines.get(1), "timer")
        snapshot = _snapshot(history_id, "success")

        recorder.record(snapshot)
        recorder.record(snapshot)

        assert len(recorder.histories.find(pipeline_id=1)) == 1
        assert len(recorder.history_logs.find(pipeline_id=1)) == 1

    def test_last_snapshot_wins(self, recorder):
        history_id = recorder.start(recorder.pipelines.get(1), "manual")

        recorder.record(_snapshot(history_id, "running"))
        recorder.record(_snapshot(history_id, "failed"))

        assert recorder.pipelines.get(1).status == "failed"
        assert recorder.histories.get(history_id).status == "failed"

    def test_record_without_started_row_inserts(self, recorder):
        recorder.record(_snapshot(77, "success"))

        assert recorder.histories.get(77).status == "success"
        assert recorder.history_logs.get(77).history_id == 77

    def test_failure_forces_error_status(self, recorder):
        history_id = recorder.start(recorder.pipelines.get(1), "timer")

        with patch.object(
            recorder.history_logs, "save", side_effect=RuntimeError("disk full")
        ), patch(
            "pipeline_scheduler.orchestrator.history_recorder.log_exception"
        ) as mock_log:
            with pytest.raises(RuntimeError, match="disk full"):
                recorder.record(_snapshot(history_id, "success", start_time=123))

        pipeline = recorder.pipelines.get(1)
        assert pipeline.status == ERROR_STATUS
        assert pipeline.last_history_time == 123
        mock_log.assert_called_once()
        assert mock_log.call_args[0][2] == "history.record.failed"
        assert mock_log.call_args[1]["history_id"] == history_id

    def test_failure_on_first_write_still_forces_error(self, recorder):
        calls = []
        original_update = recorder.pipelines.update

        def flaky_update(pipeline_id, **values):
            calls.append(values)
            if len(calls) == 1:
                raise RuntimeError("connection lost")
            return original_update(pipeline_id, **values)

        with patch.object(recorder.pipelines, "update", side_effect=flaky_update):
            with pytest.raises(RuntimeError):
                recorder.record(_snapshot(9, "running", start_time=456))

        assert recorder.pipelines.get(1).status == ERROR_STATUS
        assert recorder.pipelines.get(1).last_history_time == 456
