"""
Tests for the multi-turn dialogue manager: slot filling, confirmation, target resolution and undo.
"""

from __future__ import annotations

import tempfile
from datetime import datetime
from zoneinfo import ZoneInfo

from chat_engine.application.handlers.academy import CATALOG_BUCKET
from chat_engine.application.handlers.base import GUEST_USER_ID
from chat_engine.application.handlers.metrics import MetricsExporter
from chat_engine.application.handlers.registry import build_handlers
from chat_engine.application.use_cases.dialogue import HELP_MESSAGE, DialogueManager
from chat_engine.application.utils.replies import ReplyBuilder, sequential_ids
from chat_engine.domain.entities.context import AssistantContext
from chat_engine.domain.entities.flow import EntityRef
from chat_engine.domain.entities.intent import ActionType, EntityType
from chat_engine.domain.entities.session import PendingStage, Session
from chat_engine.infrastructure.export.mock_exporter import MockMetricsExporter
from chat_engine.infrastructure.store.json_store import JsonSessionStore
from chat_engine.infrastructure.store.memory_store import MemoryEntityStore

UTC = ZoneInfo("UTC")
NOW = datetime(2026, 2, 9, 8, 0, tzinfo=UTC)

USER = AssistantContext(user_id="u1", user_name="Ana")
GUEST = AssistantContext()


def _clock() -> datetime:
    return NOW


def _engine(exporter_port: MockMetricsExporter | None = None):
    """Dialogue manager over in-memory stores, with deterministic ids and clock."""
    stores: dict[str, MemoryEntityStore] = {}

    def store_for(name: str) -> MemoryEntityStore:
        return stores.setdefault(name, MemoryEntityStore())

    handlers = build_handlers(store_for, timezone=UTC, clock=_clock)
    exporter = None
    if exporter_port is not None:
        exporter = MetricsExporter(store=store_for("metrics"), port=exporter_port)
    manager = DialogueManager(
        handlers=handlers,
        exporter=exporter,
        replies=ReplyBuilder(ids=sequential_ids("m"), clock=_clock),
    )
    return manager, stores


async def _say(manager: DialogueManager, session: Session, *texts: str, ctx: AssistantContext = USER):
    result = None
    for text in texts:
        result = await manager.handle_input(text, session, ctx)
        session = result.session
    return result


async def test_create_habit_asks_first_question():
    """"create habit" with no details opens a collect flow on the name."""
    manager, _ = _engine()

    result = await manager.handle_input("create habit", Session(), USER)

    assert len(result.messages) == 1
    message = result.messages[0]
    assert message.text == "Step 1. What should I call this habit?"
    assert message.actions == ()
    assert message.id == "m-1"
    assert message.created_at == NOW.isoformat()
    assert result.session.pending.stage is PendingStage.collect
    assert result.session.pending.field_index == 0
    assert result.session.pending.entity is EntityType.habit


async def test_reminder_skips_fields_already_parsed():
    """Title and time come from the utterance, so frequency is asked first."""
    manager, stores = _engine()

    result = await manager.handle_input("remind me to call mom at 5pm", Session(), USER)

    pending = result.session.pending
    assert result.messages[0].text == "Step 1. How often should it repeat?"
    assert [action.label for action in result.messages[0].actions] == ["Daily", "Weekdays", "Weekends", "Weekly"]
    assert pending.data["title"] == "Call Mom"
    assert pending.data["time24"] == "17:00"
    assert pending.field_index == 2

    result = await manager.handle_input("daily", result.session, USER)
    assert result.messages[0].text == "Step 2. Preferred notification type?"
    assert result.session.pending.field_index == 3

    result = await manager.handle_input("push", result.session, USER)
    assert result.session.pending.stage is PendingStage.confirm
    assert "CALL MOM REMINDER" in result.messages[0].text

    result = await manager.handle_input("yes", result.session, USER)
    assert "CREATED!" in result.messages[0].text
    assert result.session.pending is None
    assert result.session.last_entity.type is EntityType.reminder
    assert result.session.last_entity.name == "Call Mom"

    reminders = await stores["reminders"].list("u1")
    assert len(reminders) == 1
    assert reminders[0]["time24"] == "17:00"
    assert reminders[0]["notification_type"] == "push"


async def test_collect_is_monotonic_until_confirm():
    """Each answer moves to a strictly later required field, then to confirm."""
    manager, stores = _engine()
    session = Session()
    indices = []

    result = await manager.handle_input("create habit", session, USER)
    indices.append(result.session.pending.field_index)
    for answer in ("Morning run", "7am", "health", "daily"):
        result = await manager.handle_input(answer, result.session, USER)
        assert result.session.pending.stage is PendingStage.collect
        indices.append(result.session.pending.field_index)

    assert indices == sorted(set(indices))
    assert result.messages[0].text == "Step 5. Set a reminder?"

    result = await manager.handle_input("no", result.session, USER)
    assert result.session.pending.stage is PendingStage.confirm
    assert result.session.pending.data["reminder"] is False

    result = await manager.handle_input("yes", result.session, USER)
    assert "SUCCESS!" in result.messages[0].text
    habits = await stores["habits"].list("u1")
    assert [habit["title"] for habit in habits] == ["Morning Run"]
    assert habits[0]["time24"] == "07:00"
    assert habits[0]["category"] == "health"
    # Declined reminder: nothing linked.
    assert await stores["reminders"].list("u1") == []


async def test_pending_flow_intercepts_new_intents():
    """While a flow is open, a new command is read as the answer."""
    manager, _ = _engine()

    result = await _say(manager, Session(), "create habit", "delete task groceries")

    pending = result.session.pending
    assert pending.entity is EntityType.habit
    assert pending.action is ActionType.create
    assert pending.field_index == 1


async def test_confirm_no_cancels_delete():
    """Answering "no" at confirm drops the flow and keeps the task."""
    manager, stores = _engine()
    await stores["tasks"].create(GUEST_USER_ID, {"title": "Buy milk"})

    result = await manager.handle_input("delete task buy milk", Session(), GUEST)
    assert result.session.pending.stage is PendingStage.confirm
    assert result.session.pending.target.name == "Buy milk"

    result = await manager.handle_input("no", result.session, GUEST)
    assert result.messages[0].text == "Okay, canceled."
    assert result.session.pending is None
    assert len(await stores["tasks"].list(GUEST_USER_ID)) == 1


async def test_ambiguous_confirm_answer_reprompts_without_changes():
    """"maybe" at confirm leaves the pending flow exactly as it was."""
    manager, stores = _engine()
    await stores["tasks"].create(GUEST_USER_ID, {"title": "Buy milk"})
    first = await manager.handle_input("delete task buy milk", Session(), GUEST)

    result = await manager.handle_input("maybe", first.session, GUEST)

    assert result.messages[0].text == "Please confirm with yes or no."
    assert result.session.pending == first.session.pending
    assert result.session == first.session


async def test_exact_name_beats_substring_match():
    manager, stores = _engine()
    await stores["tasks"].create(GUEST_USER_ID, {"title": "Read book"})
    await stores["tasks"].create(GUEST_USER_ID, {"title": "Read"})

    result = await manager.handle_input("delete task read", Session(), GUEST)

    assert result.session.pending.target.name == "Read"


async def test_complete_without_target_asks_which_one():
    """No name and no remembered habit: ask for the target, then resume."""
    manager, stores = _engine()
    await stores["habits"].create("u1", {"title": "Meditate", "streak": 2, "completions": []})

    result = await manager.handle_input("complete habit", Session(), USER)
    assert result.messages[0].text == "Which habit should I complete?"
    assert result.session.pending.stage is PendingStage.resolve_target

    missing = await manager.handle_input("juggling", result.session, USER)
    assert missing.messages[0].text == "I could not find that habit. Try again?"
    assert missing.session == result.session

    result = await manager.handle_input("meditate", result.session, USER)
    assert result.session.pending.stage is PendingStage.confirm
    assert result.session.pending.target.name == "Meditate"

    result = await manager.handle_input("yes", result.session, USER)
    assert "COMPLETED!" in result.messages[0].text
    habit = (await stores["habits"].list("u1"))[0]
    assert habit["completions"] == ["2026-02-09"]
    assert habit["streak"] == 3


async def test_complete_all_habits():
    manager, stores = _engine()
    await stores["habits"].create("u1", {"title": "Meditate", "completions": []})
    await stores["habits"].create("u1", {"title": "Stretch", "completions": []})

    result = await manager.handle_input("complete all habits", Session(), USER)
    assert result.messages[0].text == "Mark all of today's habits as complete?"

    result = await manager.handle_input("yes", result.session, USER)
    assert "All habits marked complete for today." in result.messages[0].text
    for habit in await stores["habits"].list("u1"):
        assert habit["completions"] == ["2026-02-09"]


async def test_delete_then_undo_once():
    """Exactly one undo restores the deleted reminder; the next one has nothing to do."""
    manager, stores = _engine()
    await stores["reminders"].create("u1", {"title": "Drink water", "time24": "09:00"})

    result = await _say(manager, Session(), "delete alert drink water", "yes")
    assert "DELETED!" in result.messages[0].text
    assert result.session.last_deleted.type is EntityType.reminder
    assert await stores["reminders"].list("u1") == []

    result = await manager.handle_input("undo", result.session, USER)
    assert "Drink water reminder restored." in result.messages[0].text
    assert result.session.last_deleted is None
    assert [item["title"] for item in await stores["reminders"].list("u1")] == ["Drink water"]

    result = await manager.handle_input("undo", result.session, USER)
    assert result.messages[0].text == "ℹ️ Nothing to undo."
    assert len(await stores["reminders"].list("u1")) == 1


async def test_undo_bypasses_an_open_flow():
    manager, stores = _engine()
    await stores["tasks"].create(GUEST_USER_ID, {"title": "Buy milk"})

    result = await _say(manager, Session(), "delete task buy milk", "yes", "create habit", ctx=GUEST)
    assert result.session.pending.entity is EntityType.habit

    result = await manager.handle_input("undo", result.session, GUEST)
    assert "Buy milk restored." in result.messages[0].text
    assert result.session.pending.entity is EntityType.habit
    assert result.session.last_deleted is None


async def test_dark_mode_goes_straight_to_confirm():
    """Settings has no target; decoded data skips the question loop."""
    manager, stores = _engine()

    result = await manager.handle_input("dark mode", Session(), USER)
    pending = result.session.pending
    assert pending.action is ActionType.edit
    assert pending.entity is EntityType.settings
    assert pending.stage is PendingStage.confirm
    assert dict(pending.data) == {"theme": "dark"}
    assert "Theme: dark" in result.messages[0].text

    result = await manager.handle_input("yes", result.session, USER)
    assert "UPDATED!" in result.messages[0].text
    preferences = await stores["preferences"].find("u1", "preferences")
    assert preferences["theme"] == "dark"
    assert preferences["language"] == "en-US"


async def test_edit_field_picker_then_value():
    manager, stores = _engine()
    await stores["habits"].create("u1", {"title": "Meditate", "time24": "06:00"})

    result = await manager.handle_input("edit habit meditate", Session(), USER)
    assert result.messages[0].text == "Found Meditate. What would you like to change?"
    assert [action.label for action in result.messages[0].actions] == ["title", "time", "category", "frequency"]
    assert result.session.pending.stage is PendingStage.edit_field

    result = await manager.handle_input("time", result.session, USER)
    assert result.messages[0].text == "New time?"
    assert result.session.pending.stage is PendingStage.edit_value
    assert result.session.pending.edit_field_key == "time"

    result = await manager.handle_input("7am", result.session, USER)
    assert result.session.pending.stage is PendingStage.confirm

    result = await manager.handle_input("yes", result.session, USER)
    assert "UPDATED!" in result.messages[0].text
    habit = (await stores["habits"].list("u1"))[0]
    assert habit["time24"] == "07:00"
    assert habit["time_of_day"] == "morning"


async def test_edit_without_target_asks_which_one():
    manager, _ = _engine()

    result = await manager.handle_input("edit habit", Session(), USER)

    assert result.messages[0].text == "Which habit should I update?"
    assert result.session.pending.stage is PendingStage.resolve_target


async def test_snooze_always_collects_minutes():
    """Minutes in the utterance still go through the single minutes question."""
    manager, stores = _engine()
    await stores["reminders"].create("u1", {"title": "Water", "time24": "07:00"})

    result = await manager.handle_input("snooze water 30", Session(), USER)
    assert result.messages[0].text == "Step 1. Snooze for how long? (e.g., 15 minutes)"
    assert result.session.pending.stage is PendingStage.collect
    assert result.session.pending.target.name == "Water"

    result = await manager.handle_input("30", result.session, USER)
    assert result.messages[0].text == "Snooze Water for 30 minutes?"

    result = await manager.handle_input("yes", result.session, USER)
    assert "Water snoozed until 8:30 AM." in result.messages[0].text
    assert (await stores["reminders"].list("u1"))[0]["time24"] == "08:30"


async def test_snooze_asks_for_minutes():
    manager, stores = _engine()
    await stores["reminders"].create("u1", {"title": "Water", "time24": "07:00"})

    result = await manager.handle_input("snooze water", Session(), USER)
    assert result.messages[0].text == "Step 1. Snooze for how long? (e.g., 15 minutes)"
    assert [action.value for action in result.messages[0].actions] == ["5", "15", "30", "60"]

    result = await manager.handle_input("15", result.session, USER)
    assert result.messages[0].text == "Snooze Water for 15 minutes?"


async def test_snooze_without_target_resumes_into_minutes_question():
    manager, stores = _engine()
    await stores["reminders"].create("u1", {"title": "Water", "time24": "07:00"})

    result = await manager.handle_input("snooze reminder", Session(), USER)
    assert result.messages[0].text == "Which reminder should I snooze?"
    assert result.session.pending.stage is PendingStage.resolve_target

    result = await manager.handle_input("water", result.session, USER)
    assert result.messages[0].text == "Step 1. Snooze for how long? (e.g., 15 minutes)"
    assert result.session.pending.stage is PendingStage.collect
    assert result.session.pending.target.name == "Water"

    result = await manager.handle_input("5", result.session, USER)
    assert result.messages[0].text == "Snooze Water for 5 minutes?"


async def test_delete_without_target_resumes_into_confirm():
    manager, stores = _engine()
    await stores["tasks"].create(GUEST_USER_ID, {"title": "Buy milk"})

    result = await manager.handle_input("delete task", Session(), GUEST)
    assert result.messages[0].text == "Which task should I delete?"
    assert result.session.pending.stage is PendingStage.resolve_target

    result = await manager.handle_input("buy milk", result.session, GUEST)
    pending = result.session.pending
    assert pending.stage is PendingStage.confirm
    assert pending.action is ActionType.delete
    assert pending.target.name == "Buy milk"

    result = await manager.handle_input("yes", result.session, GUEST)
    assert "DELETED!" in result.messages[0].text
    assert await stores["tasks"].list(GUEST_USER_ID) == []


async def test_edit_with_parsed_updates_goes_straight_to_confirm():
    """The remembered habit is the target and the utterance already carries the change."""
    manager, stores = _engine()
    habit = await stores["habits"].create("u1", {"title": "Meditate", "time24": "06:00"})
    session = Session(last_entity=EntityRef(type=EntityType.habit, id=habit["id"], name="Meditate", data=habit))

    result = await manager.handle_input("change habit time to 7pm", session, USER)
    pending = result.session.pending
    assert pending.stage is PendingStage.confirm
    assert pending.target.name == "Meditate"
    assert pending.data["time24"] == "19:00"

    result = await manager.handle_input("yes", result.session, USER)
    assert "UPDATED!" in result.messages[0].text
    assert (await stores["habits"].find("u1", habit["id"]))["time24"] == "19:00"


async def test_edit_field_picker_accepts_a_free_text_change():
    manager, stores = _engine()
    await stores["habits"].create("u1", {"title": "Meditate", "time24": "06:00"})

    result = await manager.handle_input("edit habit meditate", Session(), USER)
    assert result.session.pending.stage is PendingStage.edit_field

    result = await manager.handle_input("move it to 7pm", result.session, USER)
    pending = result.session.pending
    assert pending.stage is PendingStage.confirm
    assert pending.data["time24"] == "19:00"
    assert pending.target.name == "Meditate"


async def test_settings_without_changes_asks_for_theme():
    manager, stores = _engine()

    result = await manager.handle_input("open settings", Session(), USER)
    pending = result.session.pending
    assert pending.entity is EntityType.settings
    assert pending.stage is PendingStage.collect
    assert result.messages[0].text == "Step 1. Theme preference?"
    assert [action.label for action in result.messages[0].actions] == ["Light", "Dark", "Auto"]

    result = await manager.handle_input("Dark", result.session, USER)
    assert result.session.pending.stage is PendingStage.confirm
    assert "Theme: dark" in result.messages[0].text

    result = await manager.handle_input("yes", result.session, USER)
    assert "UPDATED!" in result.messages[0].text
    assert (await stores["preferences"].find("u1", "preferences"))["theme"] == "dark"


async def test_share_offers_copy_link():
    manager, _ = _engine()

    result = await manager.handle_input("share my notes", Session(), USER)

    message = result.messages[0]
    assert message.text == "✅ Share link created."
    assert [(action.label, action.value) for action in message.actions] == [("Copy link", "copy link")]
    assert result.session.pending is None


async def test_enroll_confirms_then_joins_the_course():
    manager, stores = _engine()
    await stores["courses"].create(CATALOG_BUCKET, {"title": "Python", "enrolled": []})

    result = await manager.handle_input("enroll in python course", Session(), USER)
    pending = result.session.pending
    assert pending.action is ActionType.enroll
    assert pending.stage is PendingStage.confirm
    assert pending.target.name == "Python"

    result = await manager.handle_input("yes", result.session, USER)
    assert "You are enrolled in Python." in result.messages[0].text
    assert (await stores["courses"].list(CATALOG_BUCKET))[0]["enrolled"] == ["u1"]


async def test_progress_lists_courses():
    manager, stores = _engine()
    await stores["courses"].create(CATALOG_BUCKET, {"title": "Python", "enrolled": ["u1"]})

    result = await manager.handle_input("my course progress", Session(), USER)

    assert "- Python (enrolled)" in result.messages[0].text
    assert result.session.pending is None


async def test_unsupported_verb_is_reported_immediately():
    manager, _ = _engine()

    result = await manager.handle_input("add achievement", Session(), USER)

    assert result.messages[0].text == "⚠️ That action is not supported yet."
    assert result.session.pending is None


async def test_export_uses_the_collaborator():
    port = MockMetricsExporter()
    manager, stores = _engine(port)
    await stores["metrics"].create(GUEST_USER_ID, {"metric": "meditation", "value": 30, "unit": "minutes"})

    result = await manager.handle_input("export my data", Session(), GUEST)

    assert "Export started" in result.messages[0].text
    assert result.session.pending is None
    assert len(port.exports) == 1
    user_id, records = port.exports[0]
    assert user_id == GUEST_USER_ID
    assert records[0]["metric"] == "meditation"


async def test_export_without_collaborator_is_unsupported():
    manager, _ = _engine()

    result = await manager.handle_input("export my data", Session(), GUEST)

    assert result.messages[0].text == "⚠️ That action is not supported yet."


async def test_unknown_text_and_empty_text():
    manager, _ = _engine()
    session = Session()

    result = await manager.handle_input("hello there", session, USER)
    assert result.messages[0].text == HELP_MESSAGE

    result = await manager.handle_input("   ", session, USER)
    assert result.messages == []
    assert result.session is session


async def test_flow_resumes_after_json_round_trip():
    """Parsers are not stored; they are reattached by field key on the next turn."""
    manager, _ = _engine()
    with tempfile.TemporaryDirectory() as tmpdir:
        store = JsonSessionStore(data_dir=tmpdir)

        first = await manager.handle_input("create habit", Session(), USER)
        store.set_session("s1", first.session)

        loaded = store.get_session("s1")
        assert loaded.pending.fields[0].parser is None

        result = await manager.handle_input("morning run", loaded, USER)

        assert result.session.pending.data["title"] == "Morning Run"
        assert result.messages[0].text.startswith("Step 2. What time do you want to do this?")
