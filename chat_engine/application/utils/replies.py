from __future__ import annotations

import itertools
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Sequence

from chat_engine.application.utils.message_rules import normalize_text
from chat_engine.domain.entities.flow import ActionResult, FlowField
from chat_engine.domain.entities.message import ActionKind, ChatAction, ChatMessage

IdGenerator = Callable[[], str]
Clock = Callable[[], datetime]


def uuid_ids() -> IdGenerator:
    return lambda: uuid.uuid4().hex


def sequential_ids(prefix: str = "id") -> IdGenerator:
    counter = itertools.count(1)
    return lambda: f"{prefix}-{next(counter)}"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def is_missing(value: Any) -> bool:
    return value is None or value == ""


def find_next_missing_field(fields: Sequence[FlowField], data: Mapping[str, Any]) -> int | None:
    """Index of the first required field with no value in data, or None when all are satisfied."""
    for index, field in enumerate(fields):
        if field.optional:
            continue
        if is_missing(data.get(field.key)):
            return index
    return None


class ReplyBuilder:
    """Assembles assistant messages and quick-reply actions with injected ids and clock."""

    def __init__(self, ids: IdGenerator | None = None, clock: Clock | None = None) -> None:
        self._ids = ids or uuid_ids()
        self._clock = clock or utc_now

    def build_action(
        self,
        label: str,
        value: str,
        kind: ActionKind = ActionKind.reply,
        variant: str = "secondary",
    ) -> ChatAction:
        return ChatAction(
            id=f"{normalize_text(label).replace(' ', '-')}-{self._ids()}",
            label=label,
            value=value,
            kind=kind,
            variant=variant,
        )

    def create_message(self, text: str, actions: Sequence[ChatAction] = (), role: str = "assistant") -> ChatMessage:
        stamped = tuple(action if action.id else self._stamp(action) for action in actions)
        return ChatMessage(
            id=self._ids(),
            role=role,
            text=text,
            created_at=self._clock().isoformat(),
            actions=stamped,
        )

    def from_result(self, result: ActionResult) -> ChatMessage:
        return self.create_message(result.message, result.actions)

    def build_question(self, field: FlowField, step: int) -> str:
        return f"Step {step}. {field.question}"

    def build_options(self, field: FlowField | None) -> tuple[ChatAction, ...]:
        if field is None or not field.options:
            return ()
        return tuple(self.build_action(option, option) for option in field.options)

    def build_confirm_actions(self) -> tuple[ChatAction, ...]:
        return (
            self.build_action("Yes, confirm", "yes", ActionKind.confirm, "primary"),
            self.build_action("Cancel", "no", ActionKind.cancel, "danger"),
        )

    def _stamp(self, action: ChatAction) -> ChatAction:
        return replace(action, id=f"{normalize_text(action.label).replace(' ', '-')}-{self._ids()}")
