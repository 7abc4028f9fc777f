from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class ActionKindSchema(str, Enum):
    reply = "reply"
    confirm = "confirm"
    cancel = "cancel"


class ChatActionSchema(BaseModel):
    id: str
    label: str
    value: str
    kind: ActionKindSchema = ActionKindSchema.reply
    variant: str = "secondary"


class ChatMessageSchema(BaseModel):
    id: str
    role: str
    text: str
    created_at: str
    actions: list[ChatActionSchema] = Field(default_factory=list)


class ChatRequestSchema(BaseModel):
    session_id: str = Field(min_length=1)
    text: str
    user_id: str | None = None
    user_name: str | None = None


class ChatResponseSchema(BaseModel):
    session_id: str
    messages: list[ChatMessageSchema]
    pending_stage: str | None = None


class HistoryEntrySchema(BaseModel):
    role: str
    text: str
    ts: float | None = None
    meta: dict[str, Any] = Field(default_factory=dict)


class HistoryResponseSchema(BaseModel):
    session_id: str
    entries: list[HistoryEntrySchema]
