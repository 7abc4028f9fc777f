from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class EntityType(str, Enum):
    # Declaration order is the scoring order used by intent detection.
    habit = "habit"
    reminder = "reminder"
    task = "task"
    protocol = "protocol"
    knowledge = "knowledge"
    schedule = "schedule"
    academy = "academy"
    recall = "recall"
    metrics = "metrics"
    library = "library"
    network = "network"
    achievement = "achievement"
    settings = "settings"


class ActionType(str, Enum):
    create = "create"
    edit = "edit"
    complete = "complete"
    delete = "delete"
    view = "view"
    snooze = "snooze"
    export = "export"
    share = "share"
    enroll = "enroll"
    progress = "progress"
    update = "update"


@dataclass(frozen=True)
class DetectedIntent:
    action: ActionType
    entity: EntityType
    raw: str
