"""
Trigger classification and deterministic timer naming.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from pipeline_scheduler.models import PipelineDocument
from pipeline_scheduler.orchestrator.cron import CronRegistry
from pipeline_scheduler.utils import get_logger
from pipeline_scheduler.utils.logging_config import log_event

ONCE_TRIGGER_ID = "once"


class TriggerType(str, Enum):
    MANUAL = "manual"
    TIMER = "timer"
    NONE = "none"


@dataclass(frozen=True)
class TriggerClassification:
    type: TriggerType
    trigger_id: Optional[str] = None

    @property
    def runnable(self) -> bool:
        return self.type is not TriggerType.NONE


def timer_prefix(pipeline_id) -> str:
    return f"pipeline.{pipeline_id}.trigger."


def timer_name(pipeline_id, trigger_id) -> str:
    return f"{timer_prefix(pipeline_id)}{trigger_id}"


def once_timer_name(pipeline_id) -> str:
    return timer_name(pipeline_id, ONCE_TRIGGER_ID)


class TriggerResolver:
    """Map a firing to manual/timer/none, cleaning up timers of deleted triggers."""

    def __init__(self, cron: CronRegistry):
        self.cron = cron
        self.logger = get_logger("triggers")

    def classify(
        self, trigger_id: Optional[str], pipeline: PipelineDocument
    ) -> TriggerClassification:
        if trigger_id is None:
            return TriggerClassification(TriggerType.MANUAL)

        trigger = pipeline.find_trigger(trigger_id)
        if trigger is None:
            # The trigger was deleted after its timer was scheduled
            self.cron.remove(timer_name(pipeline.id, trigger_id))
            log_event(
                self.logger,
                "info",
                "trigger.stale.removed",
                pipeline_id=pipeline.id,
                trigger_id=trigger_id,
            )
            return TriggerClassification(TriggerType.NONE, str(trigger_id))

        log_event(
            self.logger,
            "info",
            "trigger.timer.matched",
            pipeline_id=pipeline.id,
            trigger_id=trigger.id,
            title=trigger.title,
            cron=trigger.cron,
        )
        return TriggerClassification(TriggerType.TIMER, trigger.id)
