"""
Tests for the entity handlers against in-memory stores.
"""

from __future__ import annotations

from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

from chat_engine.application.exceptions import UnsupportedActionError
from chat_engine.application.handlers.academy import CATALOG_BUCKET, AcademyHandler
from chat_engine.application.handlers.achievement import AchievementHandler
from chat_engine.application.handlers.base import GUEST_USER_ID, Capability, match_by_name
from chat_engine.application.handlers.habit import HabitHandler
from chat_engine.application.handlers.knowledge import KnowledgeHandler
from chat_engine.application.handlers.library import LibraryHandler
from chat_engine.application.handlers.metrics import MetricsExporter, MetricsHandler, parse_measurement, value_field
from chat_engine.application.handlers.network import NetworkHandler
from chat_engine.application.handlers.protocol import ProtocolHandler, durations_field
from chat_engine.application.handlers.recall import RecallHandler
from chat_engine.application.handlers.registry import COLLECTIONS, build_handlers
from chat_engine.application.handlers.reminder import ReminderHandler
from chat_engine.application.handlers.schedule import ScheduleHandler
from chat_engine.application.handlers.settings import PREFERENCES_ID, SettingsHandler
from chat_engine.application.handlers.task import TaskHandler
from chat_engine.application.ports.metrics_exporter import MetricsExporterPort
from chat_engine.domain.entities.context import AssistantContext
from chat_engine.domain.entities.flow import TargetMatch
from chat_engine.domain.entities.intent import EntityType
from chat_engine.infrastructure.store.memory_store import MemoryEntityStore

UTC = ZoneInfo("UTC")
NOW = datetime(2026, 2, 9, 8, 0, tzinfo=UTC)

USER = AssistantContext(user_id="u1")
GUEST = AssistantContext()


def _clock() -> datetime:
    return NOW


async def _target(store: MemoryEntityStore, user_id: str, payload: dict) -> TargetMatch:
    record = await store.create(user_id, payload)
    return TargetMatch(id=record["id"], name=record.get("title") or record.get("name"), item=record)


def test_match_by_name_prefers_exact():
    items = [{"title": "Read book"}, {"title": "Read"}]
    assert match_by_name(items, "READ!")["title"] == "Read"
    assert match_by_name(items, "book")["title"] == "Read book"
    assert match_by_name(items, "   ") is None


def test_registry_builds_every_entity_and_shares_reminders():
    created = []

    def store_for(name: str) -> MemoryEntityStore:
        created.append(name)
        return MemoryEntityStore()

    handlers = build_handlers(store_for, timezone=UTC, clock=_clock)

    assert set(handlers) == set(EntityType)
    assert created.count(COLLECTIONS[EntityType.reminder]) == 1
    assert handlers[EntityType.habit]._reminders is handlers[EntityType.reminder]._store


async def test_habit_create_links_a_reminder():
    habits, reminders = MemoryEntityStore(), MemoryEntityStore()
    handler = HabitHandler(habits, reminders, UTC, _clock)

    result = await handler.create({"title": "Meditate", "time24": "07:00", "time_label": "7:00 AM"}, USER)

    assert "SUCCESS!" in result.message
    habit = (await habits.list("u1"))[0]
    assert habit["time_of_day"] == "morning"
    assert habit["frequency"] == [0, 1, 2, 3, 4, 5, 6]
    linked = (await reminders.list("u1"))[0]
    assert linked["habit_id"] == habit["id"]
    assert linked["title"] == "Meditate Reminder"
    assert result.entity.name == "Meditate"


async def test_habit_requires_sign_in():
    handler = HabitHandler(MemoryEntityStore(), MemoryEntityStore(), UTC, _clock)

    result = await handler.create({"title": "Meditate"}, GUEST)

    assert result.message == "⚠️ Please sign in to create habits."


async def test_habit_time_update_moves_linked_reminder():
    habits, reminders = MemoryEntityStore(), MemoryEntityStore()
    handler = HabitHandler(habits, reminders, UTC, _clock)
    await handler.create({"title": "Meditate", "time24": "07:00"}, USER)
    habit = (await habits.list("u1"))[0]
    target = TargetMatch(id=habit["id"], name="Meditate", item=habit)

    updates = handler.parse_update("change time to 7pm", USER)
    await handler.update(target, updates, USER)

    assert updates["time24"] == "19:00"
    assert (await habits.find("u1", habit["id"]))["time24"] == "19:00"
    assert (await reminders.list("u1"))[0]["time24"] == "19:00"


def test_habit_parse_update_rename():
    handler = HabitHandler(MemoryEntityStore(), MemoryEntityStore(), UTC, _clock)
    assert handler.parse_update("rename to evening walk", USER) == {"title": "evening walk"}


def test_reminder_snooze_parse_keeps_minutes_out_of_the_name():
    handler = ReminderHandler(MemoryEntityStore(), UTC, _clock)
    assert handler.parse_input("snooze water 30", USER) == {"minutes": 30, "title": "Water"}


async def test_reminder_snooze_uses_clock_and_default_minutes():
    store = MemoryEntityStore()
    handler = ReminderHandler(store, UTC, _clock)
    target = await _target(store, "u1", {"title": "Water", "time24": "07:00"})

    result = await handler.snooze(target, {}, USER)

    assert "snoozed until 8:15 AM" in result.message
    assert (await store.find("u1", target.id))["time24"] == "08:15"


async def test_task_guest_create_and_complete():
    store = MemoryEntityStore()
    handler = TaskHandler(store, UTC, _clock)

    data = handler.parse_input("add task pay rent tomorrow urgent", GUEST)
    assert data["due_date"] == "2026-02-10"
    assert data["priority"] == "high"

    result = await handler.create({"title": "Pay rent"}, GUEST)
    task = (await store.list(GUEST_USER_ID))[0]
    assert task["priority"] == "medium"
    assert task["completed"] is False

    target = TargetMatch(id=task["id"], name=task["title"], item=task)
    result = await handler.complete(target, GUEST)
    assert "Pay rent marked complete." in result.message
    done = await store.find(GUEST_USER_ID, task["id"])
    assert done["completed"] is True
    assert done["completed_at"] == NOW.isoformat()


async def test_protocol_durations_pair_with_steps():
    """The n-th number lands on the n-th step; unmatched steps keep their value."""
    steps = [{"label": "Stretch", "minutes": None}, {"label": "Breathe", "minutes": None}, {"label": "Walk", "minutes": 20}]

    update = durations_field("10m, 5m", {"steps": steps})

    assert [step["minutes"] for step in update["steps"]] == [10, 5, 20]
    assert steps[0]["minutes"] is None

    store = MemoryEntityStore()
    handler = ProtocolHandler(store, UTC, _clock)
    result = await handler.create({"title": "Morning", **update}, USER)
    assert "35 min" in result.message
    assert (await store.list("u1"))[0]["total_minutes"] == 35


async def test_knowledge_default_title():
    store = MemoryEntityStore()
    handler = KnowledgeHandler(store, UTC, _clock)

    result = await handler.create({"content": "Magnesium helps with sleep quality"}, USER)

    note = (await store.list("u1"))[0]
    assert note["title"] == "Note: Magnesium helps with"
    assert note["category"] == "general"
    assert "SAVED!" in result.message


def test_schedule_parse_input():
    handler = ScheduleHandler(MemoryEntityStore(), UTC, _clock)

    data = handler.parse_input("schedule dentist tomorrow at 3pm", USER)

    assert data["title"] == "Dentist"
    assert data["date"] == "2026-02-10"
    assert data["time24"] == "15:00"


async def test_academy_create_enroll_and_view():
    catalog, drafts = MemoryEntityStore(), MemoryEntityStore()
    handler = AcademyHandler(catalog, drafts, UTC, _clock)

    denied = await handler.create({"title": "Python"}, GUEST)
    assert "sign in" in denied.message

    created = await handler.create({"title": "Python", "lessons": 4, "lesson_duration": 30}, USER)
    assert "CREATED!" in created.message
    assert (await drafts.list("u1"))[0]["lessons"] == 4

    target = await handler.find_target("python", USER)
    enrolled = await handler.complete(target, USER)
    assert "You are enrolled in Python." in enrolled.message
    assert (await catalog.list(CATALOG_BUCKET))[0]["enrolled"] == ["u1"]

    listing = await handler.view(None, USER)
    assert "- Python (enrolled)" in listing.message


async def test_recall_guest_memory():
    store = MemoryEntityStore()
    handler = RecallHandler(store, UTC, _clock)

    result = await handler.create({"content": "Grandma's lemon cake recipe uses zest"}, GUEST)

    assert "REMEMBERED!" in result.message
    assert result.entity.name == "Grandma's lemon cake rec"
    target = await handler.find_target("lemon cake", GUEST)
    assert target.name == "Grandma's lemon cake rec"


def test_metrics_measurement_parsing():
    assert parse_measurement("track 30 minutes meditation") == {"value": 30, "unit": "minutes", "metric": "meditation"}
    assert parse_measurement("log 5.5 km") == {"value": 5.5, "unit": "km"}
    assert value_field("12", {}) == {"value": 12, "unit": "units"}
    assert value_field("lots", {}) == {}


async def test_metrics_view_lists_entries():
    store = MemoryEntityStore()
    handler = MetricsHandler(store, UTC, _clock)
    await handler.create({"metric": "steps", "value": 8000, "unit": "steps"}, GUEST)

    result = await handler.list_entries(GUEST)

    assert "- steps: 8000 steps" in result.message
    assert (await store.list(GUEST_USER_ID))[0]["date"] == "2026-02-09"


class _LinkExporter(MetricsExporterPort):
    def __init__(self) -> None:
        self.calls = []

    async def export(self, user_id, records):
        self.calls.append((user_id, records))
        return "https://files.example.test/export.csv"


async def test_metrics_exporter_reports_location():
    store = MemoryEntityStore()
    await store.create("u1", {"metric": "sleep", "value": 7, "unit": "hours"})
    port = _LinkExporter()

    result = await MetricsExporter(store, port).export_metrics(USER)

    assert result.message.endswith("https://files.example.test/export.csv")
    assert port.calls[0][0] == "u1"


async def test_library_requires_user_and_network_allows_guest():
    library = LibraryHandler(MemoryEntityStore(), UTC, _clock)
    network_store = MemoryEntityStore()
    network = NetworkHandler(network_store, UTC, _clock)

    assert "sign in" in (await library.create({"title": "Deep Work"}, GUEST)).message
    assert library.parse_input("save resource deep work", USER) == {"title": "Save Deep Work"}

    result = await network.create({"name": "Sam"}, GUEST)
    assert "CONNECTED!" in result.message
    assert (await network_store.list(GUEST_USER_ID))[0]["relationship"] == "Friend"


async def test_achievements_are_view_only():
    store = MemoryEntityStore()
    await store.create("u1", {"name": "First Step", "unlocked_at": "2026-01-01"})
    await store.create("u1", {"name": "Week Streak"})
    handler = AchievementHandler(store, UTC, _clock)

    result = await handler.view(None, USER)

    assert "Unlocked:\n- First Step" in result.message
    assert "In Progress:\n- Week Streak" in result.message
    assert not handler.supports(Capability.create)
    with pytest.raises(UnsupportedActionError):
        await handler.create({}, USER)


async def test_settings_parse_update_and_view():
    store = MemoryEntityStore()
    handler = SettingsHandler(store, UTC, _clock)

    data = handler.parse_input("turn notifications off and switch to spanish", USER)
    assert data == {"language": "es", "notify": False}

    await handler.update(None, data, USER)
    saved = await store.find("u1", PREFERENCES_ID)
    assert saved["notify_push"] is False
    assert saved["theme"] == "auto"

    result = await handler.view(None, USER)
    assert "Notifications: Off" in result.message
    assert "Time Zone: UTC" in result.message
