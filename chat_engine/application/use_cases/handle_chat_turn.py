from __future__ import annotations

import logging
from dataclasses import dataclass

from chat_engine.application.ports.session_store import SessionStorePort
from chat_engine.application.use_cases.dialogue import DialogueManager
from chat_engine.domain.entities.context import AssistantContext
from chat_engine.domain.entities.message import ChatMessage
from chat_engine.domain.entities.session import Session


@dataclass(frozen=True)
class ChatTurn:
    session_id: str
    messages: list[ChatMessage]
    session: Session


class HandleChatTurnUseCase:
    def __init__(self, store: SessionStorePort, dialogue: DialogueManager) -> None:
        self._store = store
        self._dialogue = dialogue
        self._logger = logging.getLogger(__name__)

    async def execute(self, session_id: str, text: str, ctx: AssistantContext) -> ChatTurn:
        """
        Run one turn and commit it as a unit.
        The stored session is only replaced after the dialogue manager returns,
        so a failing collaborator leaves the previous session untouched.
        """
        session = self._store.get_session(session_id)
        try:
            result = await self._dialogue.handle_input(text, session, ctx)
        except Exception:
            self._logger.exception(
                "Chat turn failed",
                extra={"session_id": session_id, "user_id": ctx.user_id},
            )
            raise

        entries = [{"role": "user", "text": text, "meta": {"user_id": ctx.user_id}}]
        entries.extend(
            {
                "role": message.role,
                "text": message.text,
                "meta": {"message_id": message.id, "actions": [action.value for action in message.actions]},
            }
            for message in result.messages
        )
        self._store.commit_turn(session_id, result.session, entries)

        pending = result.session.pending
        self._logger.info(
            "Chat turn handled",
            extra={
                "session_id": session_id,
                "stage": pending.stage.value if pending else None,
                "reason": f"{len(result.messages)} replies",
            },
        )
        return ChatTurn(session_id=session_id, messages=result.messages, session=result.session)

    def history(self, session_id: str, limit: int | None = None) -> list[dict]:
        return self._store.get_history(session_id, limit=limit)

    def reset(self, session_id: str) -> None:
        self._store.reset(session_id)
        self._logger.info("Session reset", extra={"session_id": session_id})
