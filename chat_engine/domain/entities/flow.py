from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

from chat_engine.domain.entities.intent import EntityType
from chat_engine.domain.entities.message import ChatAction

FieldParser = Callable[[str, Mapping[str, Any]], dict[str, Any]]


@dataclass(frozen=True)
class FlowField:
    key: str
    question: str
    optional: bool = False
    options: tuple[str, ...] = ()
    # Pure: returns a fresh partial update and never touches the data it is given.
    parser: FieldParser | None = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class TargetMatch:
    name: str
    item: Mapping[str, Any]
    id: str | None = None


@dataclass(frozen=True)
class EntityRef:
    type: EntityType
    id: str | None = None
    name: str | None = None
    data: Mapping[str, Any] | None = None


@dataclass(frozen=True)
class DeletedEntity:
    type: EntityType
    data: Mapping[str, Any]


@dataclass(frozen=True)
class ActionResult:
    message: str
    actions: tuple[ChatAction, ...] = ()
    entity: EntityRef | None = None
    deleted: DeletedEntity | None = None
    follow_up: str | None = None
