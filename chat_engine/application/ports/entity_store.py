from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class EntityStorePort(ABC):
    """CRUD collaborator for one entity kind. Records are plain dicts carrying at least `id`."""

    @abstractmethod
    async def list(self, user_id: str) -> list[dict[str, Any]]:
        raise NotImplementedError

    @abstractmethod
    async def find(self, user_id: str, entity_id: str) -> dict[str, Any] | None:
        raise NotImplementedError

    @abstractmethod
    async def create(self, user_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        """
        Persist a new record and return it with `id` and `created_at` set.
        An `id` already present in the payload is kept (used by undo).
        """
        raise NotImplementedError

    @abstractmethod
    async def update(self, user_id: str, entity_id: str, updates: dict[str, Any]) -> dict[str, Any] | None:
        raise NotImplementedError

    @abstractmethod
    async def remove(self, user_id: str, entity_id: str) -> dict[str, Any] | None:
        raise NotImplementedError
