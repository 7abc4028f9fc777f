import logging
from functools import lru_cache
from pathlib import Path
from zoneinfo import ZoneInfo

from chat_engine.application.handlers.metrics import MetricsExporter
from chat_engine.application.handlers.registry import COLLECTIONS, build_handlers
from chat_engine.application.ports.entity_store import EntityStorePort
from chat_engine.application.ports.metrics_exporter import MetricsExporterPort
from chat_engine.application.ports.session_store import SessionStorePort
from chat_engine.application.use_cases.dialogue import DialogueManager
from chat_engine.application.use_cases.handle_chat_turn import HandleChatTurnUseCase
from chat_engine.core.config import settings
from chat_engine.domain.entities.intent import EntityType
from chat_engine.infrastructure.export.http_exporter import HttpMetricsExporter
from chat_engine.infrastructure.export.mock_exporter import MockMetricsExporter
from chat_engine.infrastructure.store.json_store import JsonEntityStore, JsonSessionStore
from chat_engine.infrastructure.store.memory_store import MemoryEntityStore, MemorySessionStore


_session_store: SessionStorePort | None = None
_entity_stores: dict[str, EntityStorePort] = {}


def _use_json_stores() -> bool:
    return settings.ENV.lower() in {"dev", "local"}


def get_timezone() -> ZoneInfo:
    try:
        return ZoneInfo(settings.TIMEZONE)
    except (KeyError, ValueError):
        logging.getLogger(__name__).warning("Unknown TIMEZONE, using UTC", extra={"reason": settings.TIMEZONE})
        return ZoneInfo("UTC")


def get_session_store() -> SessionStorePort:
    global _session_store
    if _session_store is None:
        if _use_json_stores():
            _session_store = JsonSessionStore(
                data_dir=str(Path(settings.DATA_DIR) / "sessions"),
                history_limit=settings.HISTORY_LIMIT,
            )
        else:
            _session_store = MemorySessionStore(history_limit=settings.HISTORY_LIMIT)
    return _session_store


def get_entity_store(collection: str) -> EntityStorePort:
    if collection not in _entity_stores:
        if _use_json_stores():
            _entity_stores[collection] = JsonEntityStore(collection, data_dir=str(Path(settings.DATA_DIR) / "entities"))
        else:
            _entity_stores[collection] = MemoryEntityStore()
    return _entity_stores[collection]


def get_metrics_exporter_port() -> MetricsExporterPort:
    if not settings.EXPORT_ENDPOINT or _use_json_stores():
        return MockMetricsExporter()
    return HttpMetricsExporter()


@lru_cache
def get_dialogue_manager() -> DialogueManager:
    timezone = get_timezone()
    handlers = build_handlers(get_entity_store, timezone=timezone)
    exporter = MetricsExporter(
        store=get_entity_store(COLLECTIONS[EntityType.metrics]),
        port=get_metrics_exporter_port(),
    )
    return DialogueManager(handlers=handlers, exporter=exporter)


def get_chat_turn_use_case() -> HandleChatTurnUseCase:
    return HandleChatTurnUseCase(store=get_session_store(), dialogue=get_dialogue_manager())
