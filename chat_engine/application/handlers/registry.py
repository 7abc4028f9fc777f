from __future__ import annotations

from datetime import datetime
from typing import Callable
from zoneinfo import ZoneInfo

from chat_engine.application.handlers.academy import AcademyHandler
from chat_engine.application.handlers.achievement import AchievementHandler
from chat_engine.application.handlers.base import EntityHandler
from chat_engine.application.handlers.habit import HabitHandler
from chat_engine.application.handlers.knowledge import KnowledgeHandler
from chat_engine.application.handlers.library import LibraryHandler
from chat_engine.application.handlers.metrics import MetricsHandler
from chat_engine.application.handlers.network import NetworkHandler
from chat_engine.application.handlers.protocol import ProtocolHandler
from chat_engine.application.handlers.recall import RecallHandler
from chat_engine.application.handlers.reminder import ReminderHandler
from chat_engine.application.handlers.schedule import ScheduleHandler
from chat_engine.application.handlers.settings import SettingsHandler
from chat_engine.application.handlers.task import TaskHandler
from chat_engine.application.ports.entity_store import EntityStorePort
from chat_engine.domain.entities.intent import EntityType

StoreFactory = Callable[[str], EntityStorePort]

# Collection names double as JSON file prefixes.
COLLECTIONS = {
    EntityType.habit: "habits",
    EntityType.reminder: "reminders",
    EntityType.task: "tasks",
    EntityType.protocol: "protocols",
    EntityType.knowledge: "notes",
    EntityType.schedule: "events",
    EntityType.academy: "courses",
    EntityType.recall: "memories",
    EntityType.metrics: "metrics",
    EntityType.library: "library",
    EntityType.network: "network",
    EntityType.achievement: "achievements",
    EntityType.settings: "preferences",
}
COURSE_DRAFTS = "course_drafts"


def build_handlers(
    store_for: StoreFactory,
    timezone: ZoneInfo | None = None,
    clock: Callable[[], datetime] | None = None,
) -> dict[EntityType, EntityHandler]:
    """One handler per entity kind; habit and reminder handlers share the reminder store."""
    stores: dict[str, EntityStorePort] = {}

    def store(name: str) -> EntityStorePort:
        if name not in stores:
            stores[name] = store_for(name)
        return stores[name]

    def collection(entity: EntityType) -> EntityStorePort:
        return store(COLLECTIONS[entity])

    handlers: list[EntityHandler] = [
        HabitHandler(collection(EntityType.habit), collection(EntityType.reminder), timezone, clock),
        ReminderHandler(collection(EntityType.reminder), timezone, clock),
        TaskHandler(collection(EntityType.task), timezone, clock),
        ProtocolHandler(collection(EntityType.protocol), timezone, clock),
        KnowledgeHandler(collection(EntityType.knowledge), timezone, clock),
        ScheduleHandler(collection(EntityType.schedule), timezone, clock),
        AcademyHandler(collection(EntityType.academy), store(COURSE_DRAFTS), timezone, clock),
        RecallHandler(collection(EntityType.recall), timezone, clock),
        MetricsHandler(collection(EntityType.metrics), timezone, clock),
        LibraryHandler(collection(EntityType.library), timezone, clock),
        NetworkHandler(collection(EntityType.network), timezone, clock),
        AchievementHandler(collection(EntityType.achievement), timezone, clock),
        SettingsHandler(collection(EntityType.settings), timezone, clock),
    ]
    return {handler.entity: handler for handler in handlers}
