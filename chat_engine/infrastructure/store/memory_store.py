from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from chat_engine.application.ports.entity_store import EntityStorePort
from chat_engine.application.ports.session_store import SessionStorePort
from chat_engine.domain.entities.session import Session


class MemorySessionStore(SessionStorePort):
    def __init__(self, history_limit: int = 50) -> None:
        self._sessions: dict[str, Session] = {}
        self._threads: dict[str, list[dict[str, Any]]] = {}
        self._history_limit = history_limit

    def get_session(self, session_id: str) -> Session:
        return self._sessions.get(session_id, Session())

    def set_session(self, session_id: str, session: Session) -> None:
        self._sessions[session_id] = session

    def reset(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)
        self._threads.pop(session_id, None)

    def append_message(self, session_id: str, role: str, text: str, meta: dict[str, Any] | None = None) -> None:
        self._threads[session_id] = self._with_entries(session_id, [{"role": role, "text": text, "meta": meta}])

    def commit_turn(self, session_id: str, session: Session, entries: list[dict[str, Any]]) -> None:
        thread = self._with_entries(session_id, entries)
        self._sessions[session_id] = session
        self._threads[session_id] = thread

    def _with_entries(self, session_id: str, entries: list[dict[str, Any]]) -> list[dict[str, Any]]:
        thread = list(self._threads.get(session_id, []))
        for entry in entries:
            thread.append(
                {
                    "role": entry["role"],
                    "text": entry["text"],
                    "ts": datetime.now().timestamp(),
                    "meta": dict(entry.get("meta") or {}),
                }
            )
        return thread[-self._history_limit :]

    def get_history(self, session_id: str, limit: int | None = None) -> list[dict[str, Any]]:
        messages = list(self._threads.get(session_id, []))
        return messages[-limit:] if limit else messages


class MemoryEntityStore(EntityStorePort):
    """Per-user buckets of records, in insertion order."""

    def __init__(self) -> None:
        self._buckets: dict[str, dict[str, dict[str, Any]]] = {}

    async def list(self, user_id: str) -> list[dict[str, Any]]:
        return [dict(record) for record in self._buckets.get(user_id, {}).values()]

    async def find(self, user_id: str, entity_id: str) -> dict[str, Any] | None:
        record = self._buckets.get(user_id, {}).get(entity_id)
        return dict(record) if record is not None else None

    async def create(self, user_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        record = dict(payload)
        record["id"] = record.get("id") or uuid.uuid4().hex
        record.setdefault("created_at", datetime.now(timezone.utc).isoformat())
        self._buckets.setdefault(user_id, {})[record["id"]] = record
        return dict(record)

    async def update(self, user_id: str, entity_id: str, updates: dict[str, Any]) -> dict[str, Any] | None:
        record = self._buckets.get(user_id, {}).get(entity_id)
        if record is None:
            return None
        record.update(updates)
        return dict(record)

    async def remove(self, user_id: str, entity_id: str) -> dict[str, Any] | None:
        return self._buckets.get(user_id, {}).pop(entity_id, None)
