from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class ActionKind(str, Enum):
    reply = "reply"
    confirm = "confirm"
    cancel = "cancel"


@dataclass(frozen=True)
class ChatAction:
    label: str
    value: str
    kind: ActionKind = ActionKind.reply
    variant: str = "secondary"  # "primary", "secondary", "danger"
    id: str = ""  # stamped by ReplyBuilder when empty


@dataclass(frozen=True)
class ChatMessage:
    id: str
    role: str  # "user" | "assistant"
    text: str
    created_at: str
    actions: tuple[ChatAction, ...] = field(default_factory=tuple)
