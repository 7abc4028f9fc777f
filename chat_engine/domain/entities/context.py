from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class AssistantContext:
    user_id: str | None = None
    user_name: str | None = None
