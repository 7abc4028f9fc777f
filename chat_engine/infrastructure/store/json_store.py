from __future__ import annotations

import asyncio
import json
import logging
import re
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from chat_engine.application.exceptions import EntityStoreError
from chat_engine.application.ports.entity_store import EntityStorePort
from chat_engine.application.ports.session_store import SessionStorePort
from chat_engine.domain.entities.flow import DeletedEntity, EntityRef, FlowField, TargetMatch
from chat_engine.domain.entities.intent import ActionType, EntityType
from chat_engine.domain.entities.session import PendingFlow, PendingStage, Session

_UNSAFE_KEY_RE = re.compile(r"[^A-Za-z0-9_.-]")


def _safe_key(key: str) -> str:
    return _UNSAFE_KEY_RE.sub("_", key) or "_"


class _FileLocks:
    def __init__(self) -> None:
        self._locks: dict[str, threading.Lock] = {}
        self._lock_lock = threading.Lock()  # Lock for managing locks dict

    def get(self, key: str) -> threading.Lock:
        """Get or create a lock for a key."""
        with self._lock_lock:
            if key not in self._locks:
                self._locks[key] = threading.Lock()
            return self._locks[key]


def _write_atomic(file_path: Path, data: Any) -> None:
    temp_path = file_path.with_suffix(".json.tmp")
    try:
        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        # Atomic rename
        temp_path.replace(file_path)
    except Exception:
        if temp_path.exists():
            temp_path.unlink(missing_ok=True)
        raise


class JsonSessionStore(SessionStorePort):
    """One JSON file per chat session holding the dialogue state and recent history."""

    def __init__(self, data_dir: str = "./data/sessions", history_limit: int = 50) -> None:
        self._data_dir = Path(data_dir)
        self._data_dir.mkdir(parents=True, exist_ok=True)
        self._history_limit = history_limit
        self._locks = _FileLocks()
        self._logger = logging.getLogger(__name__)

    def _get_file_path(self, session_id: str) -> Path:
        return self._data_dir / f"{_safe_key(session_id)}.json"

    def _default_data(self, session_id: str) -> dict[str, Any]:
        return {
            "session_id": session_id,
            "state": self._serialize_session(Session()),
            "messages": [],
            "version": 1,
        }

    def _load_session_data(self, session_id: str) -> dict[str, Any]:
        """Load session data from JSON file, return default if missing or corrupted."""
        file_path = self._get_file_path(session_id)
        if not file_path.exists():
            return self._default_data(session_id)
        try:
            with open(file_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError):
            self._logger.warning("Corrupt session file, starting fresh", extra={"session_id": session_id})
            return self._default_data(session_id)
        data.setdefault("version", 1)
        data.setdefault("messages", [])
        return data

    def _save_session_data(self, session_id: str, data: dict[str, Any]) -> None:
        _write_atomic(self._get_file_path(session_id), data)

    def _serialize_session(self, session: Session) -> dict[str, Any]:
        return {
            "pending": self._serialize_pending(session.pending) if session.pending else None,
            "last_entity": self._serialize_entity_ref(session.last_entity) if session.last_entity else None,
            "last_deleted": (
                {"type": session.last_deleted.type.value, "data": dict(session.last_deleted.data)}
                if session.last_deleted
                else None
            ),
        }

    def _deserialize_session(self, data: dict[str, Any]) -> Session:
        last_deleted = data.get("last_deleted")
        return Session(
            pending=self._deserialize_pending(data["pending"]) if data.get("pending") else None,
            last_entity=self._deserialize_entity_ref(data["last_entity"]) if data.get("last_entity") else None,
            last_deleted=(
                DeletedEntity(type=EntityType(last_deleted["type"]), data=last_deleted.get("data") or {})
                if last_deleted
                else None
            ),
        )

    def _serialize_pending(self, pending: PendingFlow) -> dict[str, Any]:
        """Parsers are code, not data; the dialogue manager reattaches them on resume."""
        return {
            "action": pending.action.value,
            "entity": pending.entity.value,
            "stage": pending.stage.value,
            "data": dict(pending.data),
            "fields": [
                {
                    "key": field.key,
                    "question": field.question,
                    "optional": field.optional,
                    "options": list(field.options),
                }
                for field in pending.fields
            ],
            "field_index": pending.field_index,
            "step": pending.step,
            "target": (
                {"id": pending.target.id, "name": pending.target.name, "item": dict(pending.target.item)}
                if pending.target
                else None
            ),
            "edit_field_key": pending.edit_field_key,
        }

    def _deserialize_pending(self, data: dict[str, Any]) -> PendingFlow:
        target = data.get("target")
        return PendingFlow(
            action=ActionType(data["action"]),
            entity=EntityType(data["entity"]),
            stage=PendingStage(data["stage"]),
            data=data.get("data") or {},
            fields=tuple(
                FlowField(
                    key=field["key"],
                    question=field["question"],
                    optional=field.get("optional", False),
                    options=tuple(field.get("options") or ()),
                )
                for field in data.get("fields") or []
            ),
            field_index=data.get("field_index", 0),
            step=data.get("step", 1),
            target=TargetMatch(id=target.get("id"), name=target["name"], item=target.get("item") or {}) if target else None,
            edit_field_key=data.get("edit_field_key"),
        )

    def _serialize_entity_ref(self, ref: EntityRef) -> dict[str, Any]:
        return {
            "type": ref.type.value,
            "id": ref.id,
            "name": ref.name,
            "data": dict(ref.data) if ref.data is not None else None,
        }

    def _deserialize_entity_ref(self, data: dict[str, Any]) -> EntityRef:
        return EntityRef(
            type=EntityType(data["type"]),
            id=data.get("id"),
            name=data.get("name"),
            data=data.get("data"),
        )

    def get_session(self, session_id: str) -> Session:
        with self._locks.get(session_id):
            data = self._load_session_data(session_id)
        try:
            return self._deserialize_session(data.get("state") or {})
        except (KeyError, TypeError, ValueError):
            self._logger.warning("Unreadable session state, starting fresh", extra={"session_id": session_id})
            return Session()

    def set_session(self, session_id: str, session: Session) -> None:
        with self._locks.get(session_id):
            data = self._load_session_data(session_id)
            data["state"] = self._serialize_session(session)
            self._save_session_data(session_id, data)

    def reset(self, session_id: str) -> None:
        with self._locks.get(session_id):
            self._get_file_path(session_id).unlink(missing_ok=True)

    def append_message(self, session_id: str, role: str, text: str, meta: dict[str, Any] | None = None) -> None:
        with self._locks.get(session_id):
            data = self._load_session_data(session_id)
            self._append_entries(data, [{"role": role, "text": text, "meta": meta}])
            self._save_session_data(session_id, data)

    def commit_turn(self, session_id: str, session: Session, entries: list[dict[str, Any]]) -> None:
        with self._locks.get(session_id):
            data = self._load_session_data(session_id)
            data["state"] = self._serialize_session(session)
            self._append_entries(data, entries)
            self._save_session_data(session_id, data)

    def _append_entries(self, data: dict[str, Any], entries: list[dict[str, Any]]) -> None:
        messages = data["messages"]
        for entry in entries:
            messages.append(
                {
                    "role": entry["role"],
                    "text": entry["text"],
                    "ts": datetime.now().timestamp(),
                    "meta": dict(entry.get("meta") or {}),
                }
            )
        # Keep last N messages
        data["messages"] = messages[-self._history_limit :]

    def get_history(self, session_id: str, limit: int | None = None) -> list[dict[str, Any]]:
        with self._locks.get(session_id):
            messages = self._load_session_data(session_id)["messages"]
        return messages[-limit:] if limit else messages


class JsonEntityStore(EntityStorePort):
    """One JSON file per (collection, user) holding that user's records in insertion order."""

    def __init__(self, collection: str, data_dir: str = "./data/entities") -> None:
        self._collection = collection
        self._data_dir = Path(data_dir) / _safe_key(collection)
        self._data_dir.mkdir(parents=True, exist_ok=True)
        self._locks = _FileLocks()
        self._logger = logging.getLogger(__name__)

    def _get_file_path(self, user_id: str) -> Path:
        return self._data_dir / f"{_safe_key(user_id)}.json"

    def _load_records(self, user_id: str) -> list[dict[str, Any]]:
        file_path = self._get_file_path(user_id)
        if not file_path.exists():
            return []
        try:
            with open(file_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as exc:
            raise EntityStoreError(f"Cannot read {self._collection} for {user_id}") from exc
        return list(data.get("records", []))

    def _save_records(self, user_id: str, records: list[dict[str, Any]]) -> None:
        try:
            _write_atomic(
                self._get_file_path(user_id),
                {"collection": self._collection, "user_id": user_id, "records": records, "version": 1},
            )
        except OSError as exc:
            raise EntityStoreError(f"Cannot write {self._collection} for {user_id}") from exc

    # File work runs in a worker thread so the event loop keeps serving other sessions.
    async def list(self, user_id: str) -> list[dict[str, Any]]:
        return await asyncio.to_thread(self._list, user_id)

    async def find(self, user_id: str, entity_id: str) -> dict[str, Any] | None:
        return await asyncio.to_thread(self._find, user_id, entity_id)

    async def create(self, user_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        record = await asyncio.to_thread(self._create, user_id, payload)
        self._logger.debug("Record created", extra={"entity": self._collection, "user_id": user_id})
        return record

    async def update(self, user_id: str, entity_id: str, updates: dict[str, Any]) -> dict[str, Any] | None:
        return await asyncio.to_thread(self._update, user_id, entity_id, updates)

    async def remove(self, user_id: str, entity_id: str) -> dict[str, Any] | None:
        return await asyncio.to_thread(self._remove, user_id, entity_id)

    def _list(self, user_id: str) -> list[dict[str, Any]]:
        with self._locks.get(user_id):
            return self._load_records(user_id)

    def _find(self, user_id: str, entity_id: str) -> dict[str, Any] | None:
        records = self._list(user_id)
        return next((record for record in records if record.get("id") == entity_id), None)

    def _create(self, user_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        record = dict(payload)
        record["id"] = record.get("id") or uuid.uuid4().hex
        record.setdefault("created_at", datetime.now(timezone.utc).isoformat())
        with self._locks.get(user_id):
            records = [item for item in self._load_records(user_id) if item.get("id") != record["id"]]
            records.append(record)
            self._save_records(user_id, records)
        return record

    def _update(self, user_id: str, entity_id: str, updates: dict[str, Any]) -> dict[str, Any] | None:
        with self._locks.get(user_id):
            records = self._load_records(user_id)
            for record in records:
                if record.get("id") == entity_id:
                    record.update(updates)
                    self._save_records(user_id, records)
                    return record
        return None

    def _remove(self, user_id: str, entity_id: str) -> dict[str, Any] | None:
        with self._locks.get(user_id):
            records = self._load_records(user_id)
            removed = next((record for record in records if record.get("id") == entity_id), None)
            if removed is None:
                return None
            self._save_records(user_id, [record for record in records if record is not removed])
        return removed
