"""
HTTP tests for the chat API.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from chat_engine.application.exceptions import EntityStoreError
from chat_engine.application.handlers.registry import build_handlers
from chat_engine.application.use_cases.dialogue import DialogueManager
from chat_engine.application.use_cases.handle_chat_turn import HandleChatTurnUseCase
from chat_engine.application.utils.replies import ReplyBuilder, sequential_ids
from chat_engine.infrastructure.store.memory_store import MemoryEntityStore, MemorySessionStore
from chat_engine.main import app
from chat_engine.wiring.dependencies import get_chat_turn_use_case


class BrokenUseCase:
    async def execute(self, session_id, text, ctx):
        raise EntityStoreError("store offline")


class CrashingUseCase:
    async def execute(self, session_id, text, ctx):
        raise RuntimeError("boom")


def _memory_use_case() -> HandleChatTurnUseCase:
    dialogue = DialogueManager(
        handlers=build_handlers(lambda name: MemoryEntityStore()),
        replies=ReplyBuilder(ids=sequential_ids("m")),
    )
    return HandleChatTurnUseCase(store=MemorySessionStore(), dialogue=dialogue)


@pytest_asyncio.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    """HTTP client over an in-memory object graph"""
    use_case = _memory_use_case()
    app.dependency_overrides[get_chat_turn_use_case] = lambda: use_case
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http:
        yield http
    app.dependency_overrides.clear()


async def test_health(client: AsyncClient):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


async def test_chat_turn_returns_messages_and_stage(client: AsyncClient):
    response = await client.post("/api/v1/chat", json={"session_id": "web-1", "text": "create habit"})

    assert response.status_code == 200
    body = response.json()
    assert body["session_id"] == "web-1"
    assert body["pending_stage"] == "collect"
    assert body["messages"][0]["text"] == "Step 1. What should I call this habit?"
    assert body["messages"][0]["role"] == "assistant"


async def test_confirm_actions_are_serialized(client: AsyncClient):
    response = await client.post("/api/v1/chat", json={"session_id": "web-2", "text": "dark mode", "user_id": "u1"})

    body = response.json()
    assert body["pending_stage"] == "confirm"
    actions = body["messages"][0]["actions"]
    assert [(action["label"], action["value"], action["kind"]) for action in actions] == [
        ("Yes, confirm", "yes", "confirm"),
        ("Cancel", "no", "cancel"),
    ]
    assert all(action["id"] for action in actions)


async def test_history_and_reset(client: AsyncClient):
    await client.post("/api/v1/chat", json={"session_id": "web-3", "text": "create habit"})

    history = await client.get("/api/v1/chat/web-3/history")
    assert history.status_code == 200
    assert [entry["role"] for entry in history.json()["entries"]] == ["user", "assistant"]

    limited = await client.get("/api/v1/chat/web-3/history", params={"limit": 1})
    assert [entry["role"] for entry in limited.json()["entries"]] == ["assistant"]

    reset = await client.delete("/api/v1/chat/web-3")
    assert reset.status_code == 204

    history = await client.get("/api/v1/chat/web-3/history")
    assert history.json()["entries"] == []


async def test_empty_session_id_is_rejected(client: AsyncClient):
    response = await client.post("/api/v1/chat", json={"session_id": "", "text": "hi"})
    assert response.status_code == 422


async def test_store_failure_maps_to_bad_gateway(client: AsyncClient):
    app.dependency_overrides[get_chat_turn_use_case] = lambda: BrokenUseCase()

    response = await client.post("/api/v1/chat", json={"session_id": "web-4", "text": "add task x"})

    assert response.status_code == 502
    assert response.json() == {"detail": "Something went wrong"}


async def test_unexpected_failure_maps_to_server_error(client: AsyncClient):
    app.dependency_overrides[get_chat_turn_use_case] = lambda: CrashingUseCase()

    response = await client.post("/api/v1/chat", json={"session_id": "web-5", "text": "add task x"})

    assert response.status_code == 500
    assert response.json() == {"detail": "Something went wrong"}
