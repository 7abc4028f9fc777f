"""
Tests for durable session and entity persistence.
"""

from __future__ import annotations

import asyncio
import json
import tempfile
import threading
from pathlib import Path

import pytest

from chat_engine.application.exceptions import EntityStoreError
from chat_engine.domain.entities.flow import DeletedEntity, EntityRef, FlowField, TargetMatch
from chat_engine.domain.entities.intent import ActionType, EntityType
from chat_engine.domain.entities.session import PendingFlow, PendingStage, Session
from chat_engine.infrastructure.store.json_store import JsonEntityStore, JsonSessionStore
from chat_engine.infrastructure.store.memory_store import MemorySessionStore


def _pending_edit() -> PendingFlow:
    return PendingFlow(
        action=ActionType.edit,
        entity=EntityType.habit,
        stage=PendingStage.edit_value,
        data={"time24": "07:00"},
        fields=(
            FlowField(key="title", question="New habit name?"),
            FlowField(key="time", question="New time?", options=("7:00 AM",)),
        ),
        field_index=1,
        step=2,
        target=TargetMatch(id="h1", name="Meditate", item={"id": "h1", "title": "Meditate"}),
        edit_field_key="time",
    )


def test_json_session_store_persistence():
    """Test that the JSON store persists and retrieves the whole session."""
    with tempfile.TemporaryDirectory() as tmpdir:
        store = JsonSessionStore(data_dir=tmpdir)
        session = Session(
            pending=_pending_edit(),
            last_entity=EntityRef(type=EntityType.habit, id="h1", name="Meditate", data={"title": "Meditate"}),
            last_deleted=DeletedEntity(type=EntityType.task, data={"id": "t1", "title": "Buy milk"}),
        )

        store.set_session("thread_1", session)
        retrieved = store.get_session("thread_1")

        assert retrieved == session
        assert retrieved.pending.stage is PendingStage.edit_value
        assert retrieved.pending.target.name == "Meditate"
        assert retrieved.pending.fields[1].options == ("7:00 AM",)
        assert retrieved.last_deleted.type is EntityType.task


def test_json_session_store_survives_restart():
    """A new store instance on the same directory sees the same state."""
    with tempfile.TemporaryDirectory() as tmpdir:
        JsonSessionStore(data_dir=tmpdir).set_session("thread_2", Session(pending=_pending_edit()))

        reopened = JsonSessionStore(data_dir=tmpdir)

        assert reopened.get_session("thread_2").pending.edit_field_key == "time"


def test_missing_and_corrupt_sessions_start_fresh():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = JsonSessionStore(data_dir=tmpdir)
        assert store.get_session("nobody") == Session()

        Path(tmpdir, "broken.json").write_text("{not json", encoding="utf-8")
        assert store.get_session("broken") == Session()


def test_history_is_capped_and_limited():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = JsonSessionStore(data_dir=tmpdir, history_limit=3)
        for index in range(5):
            store.append_message("thread_3", role="user", text=f"message {index}")

        history = store.get_history("thread_3")
        assert [entry["text"] for entry in history] == ["message 2", "message 3", "message 4"]
        assert [entry["text"] for entry in store.get_history("thread_3", limit=1)] == ["message 4"]


def test_history_and_state_share_a_file():
    """Appending history does not clobber the stored session state."""
    with tempfile.TemporaryDirectory() as tmpdir:
        store = JsonSessionStore(data_dir=tmpdir)
        store.set_session("thread_4", Session(pending=_pending_edit()))
        store.append_message("thread_4", role="assistant", text="New time?", meta={"message_id": "m-1"})

        assert store.get_session("thread_4").pending is not None
        data = json.loads(Path(tmpdir, "thread_4.json").read_text(encoding="utf-8"))
        assert data["messages"][0]["meta"] == {"message_id": "m-1"}
        assert data["version"] == 1


def test_reset_removes_session():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = JsonSessionStore(data_dir=tmpdir)
        store.set_session("thread_5", Session(pending=_pending_edit()))
        store.append_message("thread_5", role="user", text="hi")

        store.reset("thread_5")

        assert store.get_session("thread_5") == Session()
        assert store.get_history("thread_5") == []


def test_session_ids_are_sanitized_for_file_names():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = JsonSessionStore(data_dir=tmpdir)
        store.set_session("../escape/attempt", Session(pending=_pending_edit()))

        assert store.get_session("../escape/attempt").pending is not None
        assert [path.name for path in Path(tmpdir).iterdir()] == [".._escape_attempt.json"]


def test_memory_session_store_matches_contract():
    store = MemorySessionStore(history_limit=2)
    store.set_session("s", Session(pending=_pending_edit()))
    for text in ("a", "b", "c"):
        store.append_message("s", role="user", text=text)

    assert store.get_session("s").pending.step == 2
    assert [entry["text"] for entry in store.get_history("s")] == ["b", "c"]

    store.reset("s")
    assert store.get_session("s") == Session()


async def test_json_entity_store_crud():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = JsonEntityStore("habits", data_dir=tmpdir)

        created = await store.create("u1", {"title": "Meditate"})
        assert created["id"]
        assert created["created_at"]

        updated = await store.update("u1", created["id"], {"streak": 1})
        assert updated["streak"] == 1
        assert (await store.find("u1", created["id"]))["streak"] == 1
        assert await store.update("u1", "missing", {"streak": 2}) is None

        # Other users never see the record.
        assert await store.list("u2") == []

        removed = await store.remove("u1", created["id"])
        assert removed["title"] == "Meditate"
        assert await store.list("u1") == []
        assert await store.remove("u1", created["id"]) is None


async def test_json_entity_store_restore_keeps_id():
    """Re-creating a removed record with its id replaces rather than duplicates."""
    with tempfile.TemporaryDirectory() as tmpdir:
        store = JsonEntityStore("tasks", data_dir=tmpdir)
        created = await store.create("u1", {"title": "Buy milk"})

        await store.create("u1", dict(created))
        await store.create("u1", dict(created))

        records = await JsonEntityStore("tasks", data_dir=tmpdir).list("u1")
        assert [record["id"] for record in records] == [created["id"]]


async def test_json_entity_store_corrupt_file_raises():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = JsonEntityStore("notes", data_dir=tmpdir)
        Path(tmpdir, "notes", "u1.json").write_text("[oops", encoding="utf-8")

        with pytest.raises(EntityStoreError):
            await store.list("u1")


def test_hand_edited_state_with_wrong_types_starts_fresh():
    """A state whose fields are not a list is treated like a corrupt file."""
    with tempfile.TemporaryDirectory() as tmpdir:
        state = {"pending": {"action": "create", "entity": "habit", "stage": "collect", "fields": 5}}
        Path(tmpdir, "edited.json").write_text(json.dumps({"state": state, "messages": []}), encoding="utf-8")

        store = JsonSessionStore(data_dir=tmpdir)

        assert store.get_session("edited") == Session()


def test_commit_turn_writes_state_and_history_once(monkeypatch):
    with tempfile.TemporaryDirectory() as tmpdir:
        store = JsonSessionStore(data_dir=tmpdir, history_limit=3)
        store.append_message("thread_6", role="user", text="earlier")
        saves = []
        original_save = store._save_session_data

        def counting_save(session_id, data):
            saves.append(session_id)
            original_save(session_id, data)

        monkeypatch.setattr(store, "_save_session_data", counting_save)

        store.commit_turn(
            "thread_6",
            Session(pending=_pending_edit()),
            [
                {"role": "user", "text": "edit meditate"},
                {"role": "assistant", "text": "New time?", "meta": {"message_id": "m-2"}},
                {"role": "assistant", "text": "Step 1.", "meta": {"message_id": "m-3"}},
            ],
        )

        assert saves == ["thread_6"]
        assert store.get_session("thread_6").pending.edit_field_key == "time"
        history = store.get_history("thread_6")
        assert [entry["text"] for entry in history] == ["edit meditate", "New time?", "Step 1."]
        assert history[1]["meta"] == {"message_id": "m-2"}
        assert history[0]["meta"] == {}


async def test_json_entity_store_io_runs_off_the_event_loop(monkeypatch):
    with tempfile.TemporaryDirectory() as tmpdir:
        store = JsonEntityStore("habits", data_dir=tmpdir)
        loop_thread = threading.get_ident()
        io_threads = []
        original_load = store._load_records

        def tracking_load(user_id):
            io_threads.append(threading.get_ident())
            return original_load(user_id)

        monkeypatch.setattr(store, "_load_records", tracking_load)

        await store.create("u1", {"title": "Meditate"})
        assert [record["title"] for record in await store.list("u1")] == ["Meditate"]

        assert io_threads
        assert loop_thread not in io_threads


async def test_json_entity_store_concurrent_creates_keep_every_record():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = JsonEntityStore("tasks", data_dir=tmpdir)

        await asyncio.gather(*(store.create("u1", {"title": f"Task {index}"}) for index in range(10)))

        titles = sorted(record["title"] for record in await store.list("u1"))
        assert titles == sorted(f"Task {index}" for index in range(10))
