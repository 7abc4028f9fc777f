from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

from chat_engine.domain.entities.flow import DeletedEntity, EntityRef, FlowField, TargetMatch
from chat_engine.domain.entities.intent import ActionType, EntityType


class PendingStage(str, Enum):
    collect = "collect"
    confirm = "confirm"
    edit_field = "edit-field"
    edit_value = "edit-value"
    resolve_target = "resolve-target"


@dataclass(frozen=True)
class PendingFlow:
    action: ActionType
    entity: EntityType
    stage: PendingStage
    data: Mapping[str, Any] = field(default_factory=dict)
    fields: tuple[FlowField, ...] = ()
    field_index: int = 0
    step: int = 1  # ordinal of the question currently asked
    target: TargetMatch | None = None
    edit_field_key: str | None = None  # only meaningful in edit-value


@dataclass(frozen=True)
class Session:
    pending: PendingFlow | None = None
    last_entity: EntityRef | None = None
    last_deleted: DeletedEntity | None = None
