"""Pipeline documents, persisted entities and run results."""

from __future__ import annotations

import copy
import json
from dataclasses import dataclass, field, asdict
from typing import Any, Optional

from pipeline_scheduler.utils.document_schema import validate_pipeline_document
from pipeline_scheduler.utils.errors import ValidationError

# Status written onto a pipeline when its run history could not be recorded
ERROR_STATUS = "error"
HISTORY_START_STATUS = "start"

_DOCUMENT_KEYS = {"id", "title", "disabled", "userId", "stages", "triggers", "status"}
_TRIGGER_KEYS = {"id", "title", "type", "props"}
_STATUS_KEYS = {"status", "startTime", "endTime", "result"}


@dataclass
class Trigger:
    """A trigger definition; only triggers carrying ``cron`` are scheduled."""

    id: str
    title: str = ""
    type: str = "timer"
    props: dict = field(default_factory=dict)
    extra: dict = field(default_factory=dict)

    @property
    def cron(self) -> Optional[str]:
        return self.props.get("cron") or None

    @classmethod
    def from_dict(cls, data: dict) -> Trigger:
        return cls(
            id=str(data["id"]),
            title=data.get("title") or "",
            type=data.get("type") or "timer",
            props=dict(data.get("props") or {}),
            extra={k: v for k, v in data.items() if k not in _TRIGGER_KEYS},
        )

    def to_dict(self) -> dict:
        payload = dict(self.extra)
        payload.update(
            {"id": self.id, "title": self.title, "type": self.type, "props": dict(self.props)}
        )
        return payload


@dataclass
class RunStatus:
    """Run state embedded in a pipeline snapshot by the Executor."""

    status: str
    start_time: Optional[int] = None
    end_time: Optional[int] = None
    result: Optional[str] = None
    extra: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> RunStatus:
        return cls(
            status=str(data.get("status") or ""),
            start_time=data.get("startTime"),
            end_time=data.get("endTime"),
            result=data.get("result"),
            extra={k: v for k, v in data.items() if k not in _STATUS_KEYS},
        )

    def to_dict(self) -> dict:
        payload = dict(self.extra)
        payload.update(
            {
                "status": self.status,
                "startTime": self.start_time,
                "endTime": self.end_time,
                "result": self.result,
            }
        )
        return payload


@dataclass
class PipelineDocument:
    """
    User-authored pipeline: ordered stages plus triggers.

    Stages are opaque to the orchestrator and handed to the Executor untouched.
    Keys this class does not know about are kept in ``extra`` so documents
    written by newer versions survive a read/write cycle.
    """

    id: Optional[int] = None
    title: str = ""
    disabled: bool = False
    stages: list[dict] = field(default_factory=list)
    triggers: list[Trigger] = field(default_factory=list)
    user_id: Optional[int] = None
    status: Optional[RunStatus] = None
    extra: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> PipelineDocument:
        errors = validate_pipeline_document(data)
        if errors:
            raise ValidationError(
                f"Invalid pipeline document: {'; '.join(errors)}", errors=errors
            )

        raw_id = data.get("id")
        raw_user = data.get("userId")
        raw_status = data.get("status")
        return cls(
            id=int(raw_id) if raw_id not in (None, "") else None,
            title=data.get("title") or "",
            disabled=bool(data.get("disabled") or False),
            stages=copy.deepcopy(data.get("stages") or []),
            triggers=[Trigger.from_dict(t) for t in data.get("triggers") or []],
            user_id=int(raw_user) if raw_user not in (None, "") else None,
            status=RunStatus.from_dict(raw_status) if raw_status else None,
            extra={k: copy.deepcopy(v) for k, v in data.items() if k not in _DOCUMENT_KEYS},
        )

    @classmethod
    def from_json(cls, content: Optional[str]) -> PipelineDocument:
        try:
            data = json.loads(content or "{}")
        except json.JSONDecodeError as exc:
            raise ValidationError(f"Pipeline content is not valid JSON: {exc}") from exc
        return cls.from_dict(data)

    def to_dict(self) -> dict:
        payload = copy.deepcopy(self.extra)
        payload.update(
            {
                "id": self.id,
                "title": self.title,
                "disabled": self.disabled,
                "stages": copy.deepcopy(self.stages),
                "triggers": [t.to_dict() for t in self.triggers],
            }
        )
        if self.user_id is not None:
            payload["userId"] = self.user_id
        if self.status is not None:
            payload["status"] = self.status.to_dict()
        return payload

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)

    def find_trigger(self, trigger_id: str) -> Optional[Trigger]:
        for trigger in self.triggers:
            if trigger.id == str(trigger_id):
                return trigger
        return None

    @property
    def scheduled_triggers(self) -> list[Trigger]:
        return [t for t in self.triggers if t.cron]


# ── persisted entities ──────────────────────────────────────────────


@dataclass
class PipelineEntity:
    id: Optional[int] = None
    user_id: Optional[int] = None
    title: str = ""
    content: str = "{}"
    disabled: bool = False
    status: Optional[str] = None
    last_history_time: Optional[int] = None

    def parse_document(self) -> PipelineDocument:
        """Parse ``content``; the row's id and user win over whatever the document says."""
        document = PipelineDocument.from_json(self.content)
        if self.id is not None:
            document.id = self.id
        if self.user_id is not None:
            document.user_id = self.user_id
        return document

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class HistoryEntity:
    id: Optional[int] = None
    user_id: Optional[int] = None
    pipeline_id: Optional[int] = None
    pipeline: str = "{}"
    status: str = HISTORY_START_STATUS
    trigger_type: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class HistoryLogEntity:
    id: Optional[int] = None
    user_id: Optional[int] = None
    pipeline_id: Optional[int] = None
    history_id: Optional[int] = None
    logs: str = "{}"

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class AccessEntity:
    """Credential record referenced by pipeline steps."""

    id: Optional[int] = None
    user_id: Optional[int] = None
    name: str = ""
    type: str = ""
    setting: str = "{}"


@dataclass
class StorageEntity:
    """User-scoped key/value record used by steps between runs."""

    id: Optional[int] = None
    user_id: Optional[int] = None
    scope: str = ""
    namespace: str = ""
    key: str = ""
    value: Optional[str] = None


# ── run results ─────────────────────────────────────────────────────


@dataclass
class RunHistory:
    """Snapshot handed to ``on_changed`` by an Executor."""

    id: int
    pipeline: PipelineDocument
    logs: dict[str, list[str]] = field(default_factory=dict)

    @property
    def pipeline_id(self) -> int:
        if self.pipeline.id is None:
            raise ValidationError("Run history snapshot has no pipeline id")
        return int(self.pipeline.id)

    @property
    def status(self) -> Optional[str]:
        return self.pipeline.status.status if self.pipeline.status else None

    @property
    def start_time(self) -> Optional[int]:
        return self.pipeline.status.start_time if self.pipeline.status else None

    def logs_json(self) -> str:
        return json.dumps(self.logs, ensure_ascii=False)


@dataclass
class PipelineDetail:
    """Read model returned to the presentation layer."""

    entity: PipelineEntity
    pipeline: PipelineDocument
    running: bool = False

    def to_dict(self) -> dict:
        payload = self.entity.to_dict()
        payload["pipeline"] = self.pipeline.to_dict()
        payload["running"] = self.running
        return payload
