from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from chat_engine.domain.entities.session import Session


class SessionStorePort(ABC):
    @abstractmethod
    def get_session(self, session_id: str) -> Session:
        """Return the stored session, or an empty one when the id is unknown."""
        raise NotImplementedError

    @abstractmethod
    def set_session(self, session_id: str, session: Session) -> None:
        raise NotImplementedError

    @abstractmethod
    def reset(self, session_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def append_message(self, session_id: str, role: str, text: str, meta: dict[str, Any] | None = None) -> None:
        raise NotImplementedError

    @abstractmethod
    def commit_turn(self, session_id: str, session: Session, entries: list[dict[str, Any]]) -> None:
        """
        Store the new session and append the turn's history entries in one write.
        Each entry carries `role`, `text` and optional `meta`.
        """
        raise NotImplementedError

    @abstractmethod
    def get_history(self, session_id: str, limit: int | None = None) -> list[dict[str, Any]]:
        """
        Get recent history entries for a session.
        Returns the last `limit` entries, or all kept entries when limit is None.
        """
        raise NotImplementedError
