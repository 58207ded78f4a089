"""Tests for PipelineService: trigger lifecycle and run dispatch."""

from __future__ import annotations

import json
from unittest.mock import MagicMock, patch

import pytest

from pipeline_scheduler.models import PipelineEntity, StorageEntity
from pipeline_scheduler.orchestrator.history_recorder import RunHistoryRecorder
from pipeline_scheduler.orchestrator.pipeline_service import PipelineService
from pipeline_scheduler.orchestrator.tracker import ExecutionTracker
from pipeline_scheduler.services.repository import MemoryRepository
from pipeline_scheduler.services.storage_service import DbStorage, StorageService
from pipeline_scheduler.utils.errors import (
    PipelineAlreadyRunningError,
    PipelineNotFoundError,
    ValidationError,
)
from pipeline_scheduler.utils.logging_config import current_run_fields

T1 = {"id": "t1", "title": "every 5 min", "props": {"cron": "*/5 * * * *"}}
T2 = {"id": "t2", "title": "nightly", "props": {"cron": "0 3 * * *"}}
MANUAL = {"id": "m1", "title": "manual only", "type": "manual", "props": {}}


def _store(service, pipeline_id, content, disabled=False, user_id=5):
    return service.pipelines.save(
        PipelineEntity(id=pipeline_id, user_id=user_id, content=content, disabled=disabled)
    )


class TestStartupReload:
    def test_registers_only_enabled_pipelines(self, service, content_factory):
        _store(service, 1, content_factory(1, triggers=[T1, T2]))
        _store(service, 2, content_factory(2, triggers=[T1]), disabled=True)
        _store(service, 3, content_factory(3, triggers=[T1], disabled=True))

        count = service.on_startup()

        assert count == 2
        assert service.cron.names() == ["pipeline.1.trigger.t1", "pipeline.1.trigger.t2"]

    def test_unparseable_pipeline_is_skipped(self, service, content_factory):
        _store(service, 1, "{not json")
        _store(service, 2, content_factory(2, triggers=[T1]))

        with patch(
            "pipeline_scheduler.orchestrator.pipeline_service.log_exception"
        ) as mock_log:
            count = service.on_startup()

        assert count == 1
        assert service.cron.names() == ["pipeline.2.trigger.t1"]
        mock_log.assert_called_once()
        assert mock_log.call_args[1]["pipeline_id"] == 1

    def test_reload_pages_in_batches(self, service, content_factory):
        service.batch_size = 2
        for pipeline_id in range(1, 6):
            _store(service, pipeline_id, content_factory(pipeline_id, triggers=[T1]))

        with patch.object(
            service.pipelines, "find_by_ids", wraps=service.pipelines.find_by_ids
        ) as spy:
            count = service.on_startup()

        assert count == 5
        assert [c[0][0] for c in spy.call_args_list] == [[1, 2], [3, 4], [5]]

    def test_triggers_without_cron_are_not_registered(self, service, content_factory):
        _store(service, 1, content_factory(1, triggers=[MANUAL, T1]))

        service.on_startup()

        assert service.cron.names() == ["pipeline.1.trigger.t1"]


class TestTriggerRegistration:
    def test_reregister_replaces(self, service, content_factory):
        entity = _store(service, 1, content_factory(1, triggers=[T1]))
        document = entity.parse_document()

        service.register_triggers(document)
        size = service.cron.size()
        service.register_triggers(document)

        assert service.cron.size() == size == 1

    def test_remove_cron(self, service, content_factory):
        entity = _store(service, 1, content_factory(1, triggers=[T1]))
        service.register_triggers(entity.parse_document())

        service.remove_cron(1, "t1")

        assert service.cron.size() == 0

    def test_register_by_id_drops_deleted_triggers(self, service, content_factory):
        _store(service, 1, content_factory(1, triggers=[T1, T2]))
        service.register_trigger_by_id(1)

        _store(service, 1, content_factory(1, triggers=[T2]))
        service.register_trigger_by_id(1)

        assert service.cron.names() == ["pipeline.1.trigger.t2"]

    def test_register_by_id_disabled_removes_recurring_timers(self, service, content_factory):
        _store(service, 1, content_factory(1, triggers=[T1, T2]))
        service.register_trigger_by_id(1)
        service.trigger(1)

        _store(service, 1, content_factory(1, triggers=[T1, T2]), disabled=True)
        service.register_trigger_by_id(1)

        assert service.cron.names() == ["pipeline.1.trigger.once"]

    def test_register_by_id_leaves_other_pipelines(self, service, content_factory):
        _store(service, 1, content_factory(1, triggers=[T1]))
        _store(service, 10, content_factory(10, triggers=[T1]))
        service.register_trigger_by_id(1)
        service.register_trigger_by_id(10)

        _store(service, 1, content_factory(1, triggers=[]))
        service.register_trigger_by_id(1)

        assert service.cron.names() == ["pipeline.10.trigger.t1"]

    def test_register_by_id_none_or_missing_is_noop(self, service):
        service.register_trigger_by_id(None)
        service.register_trigger_by_id(404)

        assert service.cron.size() == 0

    def test_trigger_registers_one_shot(self, service, content_factory):
        _store(service, 1, content_factory(1))

        service.trigger(1)

        timer = service.cron.get("pipeline.1.trigger.once")
        assert timer is not None
        assert not timer.recurring


class TestPersistence:
    def test_save_takes_title_from_document(self, service, content_factory):
        saved = service.save(
            PipelineEntity(user_id=5, content=content_factory(None, title="Renew certs"))
        )

        assert saved.id is not None
        assert saved.title == "Renew certs"
        assert service.cron.size() == 0

    @pytest.mark.parametrize("document_id", [7, None])
    def test_save_rewrites_document_id_to_row_id(
        self, service, content_factory, recording_executor, document_id
    ):
        saved = service.save(
            PipelineEntity(user_id=5, content=content_factory(document_id, triggers=[T1]))
        )
        service.register_trigger_by_id(saved.id)

        assert saved.id == 1
        assert service.cron.names() == ["pipeline.1.trigger.t1"]
        stored = json.loads(service.pipelines.get(1).content)
        assert stored["id"] == 1
        assert stored["userId"] == 5

        service.cron.fire("pipeline.1.trigger.t1")

        assert recording_executor.instances[0].pipeline.id == 1
        assert service.pipelines.get(1).status == "success"
        assert service.pipelines.get(7) is None

    def test_save_over_existing_row_keeps_row_id(self, service, content_factory):
        _store(service, 3, content_factory(3))

        service.save(PipelineEntity(id=3, user_id=5, content=content_factory(9, triggers=[T1])))
        service.register_trigger_by_id(3)

        assert service.cron.names() == ["pipeline.3.trigger.t1"]
        assert json.loads(service.pipelines.get(3).content)["id"] == 3

    @pytest.mark.parametrize("key", ["id", "userId"])
    def test_save_rejects_non_numeric_ids(self, service, key):
        content = json.dumps({key: "pipe-a", "stages": []})

        with pytest.raises(ValidationError) as exc_info:
            service.save(PipelineEntity(content=content))

        assert exc_info.value.errors
        assert service.pipelines.find_ids() == []

    def test_save_rejects_invalid_document(self, service):
        with pytest.raises(ValidationError):
            service.save(PipelineEntity(content='{"stages": "nope"}'))

    def test_save_rejects_invalid_cron(self, service, content_factory):
        bad = {"id": "x", "props": {"cron": "every day"}}
        with pytest.raises(ValidationError) as exc_info:
            service.save(PipelineEntity(content=content_factory(1, triggers=[bad])))
        assert any("every day" in e for e in exc_info.value.errors)

    def test_delete_removes_exactly_its_timers(self, service, content_factory):
        _store(service, 1, content_factory(1, triggers=[T1, T2]))
        _store(service, 2, content_factory(2, triggers=[T1]))
        service.on_startup()
        history_id = service.recorder.start(service.pipelines.get(1), "manual")

        service.delete(1)

        assert service.cron.names() == ["pipeline.2.trigger.t1"]
        assert service.pipelines.get(1) is None
        # History is not cascaded
        assert service.recorder.histories.get(history_id) is not None

    def test_delete_missing_is_noop(self, service):
        service.delete(404)

        assert service.cron.size() == 0

    def test_delete_unreadable_content_uses_prefix(self, service, content_factory):
        _store(service, 1, content_factory(1, triggers=[T1, T2]))
        service.register_trigger_by_id(1)
        service.pipelines.update(1, content="{broken")

        service.delete(1)

        assert service.cron.size() == 0
        assert service.pipelines.get(1) is None

    def test_update(self, service, content_factory):
        _store(service, 1, content_factory(1))

        assert service.update(1, disabled=True) is True
        assert service.pipelines.get(1).disabled is True

    def test_detail(self, service, content_factory):
        _store(service, 1, content_factory(1, triggers=[T1]))

        detail = service.detail(1)

        assert detail.running is False
        payload = detail.to_dict()
        assert payload["pipeline"]["triggers"][0]["id"] == "t1"
        assert payload["running"] is False

    def test_info_missing_raises(self, service):
        with pytest.raises(PipelineNotFoundError):
            service.info(404)


class TestRun:
    def test_stale_trigger_constructs_no_executor(
        self, service, content_factory, recording_executor
    ):
        _store(service, 1, content_factory(1, triggers=[T1]))
        service.cron.register("pipeline.1.trigger.missing", "*/5 * * * *", MagicMock())

        service.run(1, "missing")

        assert service.cron.get("pipeline.1.trigger.missing") is None
        assert recording_executor.instances == []
        assert service.recorder.histories.find(pipeline_id=1) == []

    def test_manual_run_constructs_executor(
        self, service, content_factory, recording_executor
    ):
        _store(service, 1, content_factory(1, stages=2))

        service.run(1, None)

        assert len(recording_executor.instances) == 1
        executor = recording_executor.instances[0]
        assert executor.init_called
        history_id, trigger_type = executor.run_args
        assert trigger_type == "manual"
        assert service.recorder.histories.get(history_id).trigger_type == "manual"

    def test_timer_run_records_success(self, service, content_factory, recording_executor):
        _store(service, 1, content_factory(1, triggers=[T1]))

        service.run(1, "t1")

        executor = recording_executor.instances[0]
        history_id, trigger_type = executor.run_args
        assert trigger_type == "timer"
        assert service.pipelines.get(1).status == "success"
        assert service.recorder.histories.get(history_id).status == "success"
        assert service.recorder.history_logs.get(history_id).history_id == history_id

    def test_zero_stages_is_noop(self, service, content_factory, recording_executor):
        _store(service, 1, content_factory(1, stages=0))
        service.tracker = MagicMock(wraps=service.tracker)

        service.run(1, None)

        service.tracker.register.assert_not_called()
        assert recording_executor.instances == []

    def test_tracker_entry_present_only_during_run(
        self, service, content_factory, recording_executor
    ):
        _store(service, 1, content_factory(1))
        seen = []

        class InspectingExecutor(recording_executor):
            def run(self, history_id, trigger_type):
                seen.append(service.is_running(1))
                super().run(history_id, trigger_type)

        service.executor_factory = InspectingExecutor
        service.run(1, None)

        assert seen == [True]
        assert not service.is_running(1)

    def test_run_binds_log_context(self, service, content_factory, recording_executor):
        _store(service, 1, content_factory(1, triggers=[T1]))
        seen = []

        class ContextExecutor(recording_executor):
            def run(self, history_id, trigger_type):
                seen.append(current_run_fields())
                super().run(history_id, trigger_type)

        service.executor_factory = ContextExecutor
        service.run(1, "t1")

        history_id = recording_executor.instances[0].run_args[0]
        assert seen == [
            {
                "pipeline_id": 1,
                "history_id": history_id,
                "trigger_id": "t1",
                "trigger_type": "timer",
            }
        ]
        assert current_run_fields() == {}

    def test_executor_failure_releases_tracker(self, service, content_factory, failing_executor):
        _store(service, 1, content_factory(1))
        service.executor_factory = failing_executor

        with patch(
            "pipeline_scheduler.orchestrator.pipeline_service.log_exception"
        ) as mock_log:
            with pytest.raises(RuntimeError, match="step failed"):
                service.run(1, None)

        assert not service.is_running(1)
        assert mock_log.call_args[0][2] == "pipeline.run.failed"

    def test_missing_pipeline_raises(self, service):
        with pytest.raises(PipelineNotFoundError):
            service.run(404, None)

    def test_overlap_rejected_when_disallowed(
        self, service, content_factory, recording_executor
    ):
        _store(service, 1, content_factory(1))
        service.allow_overlap = False
        service.tracker.register(1, MagicMock())

        with pytest.raises(PipelineAlreadyRunningError):
            service.run(1, None)

        assert recording_executor.instances == []

    def test_overlap_allowed_by_default(self, service, content_factory, recording_executor):
        _store(service, 1, content_factory(1))
        service.tracker.register(1, MagicMock())

        service.run(1, None)

        assert len(recording_executor.instances) == 1
        assert not service.is_running(1)

    def test_executor_receives_collaborators(
        self, repositories, cron, content_factory, recording_executor
    ):
        pipelines, histories, history_logs = repositories

        storage_service = StorageService(MemoryRepository(StorageEntity))
        access_service, email_service = MagicMock(), MagicMock()
        service = PipelineService(
            pipelines=pipelines,
            recorder=RunHistoryRecorder(pipelines, histories, history_logs),
            cron=cron,
            tracker=ExecutionTracker(),
            executor_factory=recording_executor,
            access_service=access_service,
            storage_service=storage_service,
            email_service=email_service,
        )
        _store(service, 1, content_factory(1), user_id=9)

        service.run(1, None)

        executor = recording_executor.instances[0]
        assert executor.user_id == 9
        assert executor.pipeline.id == 1
        assert executor.access_service is access_service
        assert executor.email_service is email_service
        assert isinstance(executor.storage, DbStorage)
        assert executor.storage.user_id == 9

    def test_one_shot_trigger_runs_manual(self, service, content_factory, recording_executor):
        _store(service, 1, content_factory(1))
        service.trigger(1)

        service.cron.fire("pipeline.1.trigger.once")

        assert recording_executor.instances[0].run_args[1] == "manual"
