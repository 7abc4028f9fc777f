import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Response

from chat_engine.api.v1.schemas import (
    ChatActionSchema,
    ChatMessageSchema,
    ChatRequestSchema,
    ChatResponseSchema,
    HistoryEntrySchema,
    HistoryResponseSchema,
)
from chat_engine.application.exceptions import EntityStoreError, ExportError
from chat_engine.application.use_cases.handle_chat_turn import HandleChatTurnUseCase
from chat_engine.domain.entities.context import AssistantContext
from chat_engine.domain.entities.message import ChatMessage
from chat_engine.wiring.dependencies import get_chat_turn_use_case

router = APIRouter()
logger = logging.getLogger(__name__)


def _message_schema(message: ChatMessage) -> ChatMessageSchema:
    return ChatMessageSchema(
        id=message.id,
        role=message.role,
        text=message.text,
        created_at=message.created_at,
        actions=[
            ChatActionSchema(
                id=action.id,
                label=action.label,
                value=action.value,
                kind=action.kind.value,
                variant=action.variant,
            )
            for action in message.actions
        ],
    )


@router.post("/chat", response_model=ChatResponseSchema)
async def chat(
    req: ChatRequestSchema,
    uc: HandleChatTurnUseCase = Depends(get_chat_turn_use_case),
):
    ctx = AssistantContext(user_id=req.user_id, user_name=req.user_name)
    try:
        turn = await uc.execute(req.session_id, req.text, ctx)
    except (EntityStoreError, ExportError):
        raise HTTPException(status_code=502, detail="Something went wrong")
    except Exception:
        logger.exception("Unhandled chat failure", extra={"session_id": req.session_id})
        raise HTTPException(status_code=500, detail="Something went wrong")

    pending = turn.session.pending
    return ChatResponseSchema(
        session_id=turn.session_id,
        messages=[_message_schema(message) for message in turn.messages],
        pending_stage=pending.stage.value if pending else None,
    )


@router.get("/chat/{session_id}/history", response_model=HistoryResponseSchema)
def history(
    session_id: str,
    limit: int | None = Query(None, ge=1),
    uc: HandleChatTurnUseCase = Depends(get_chat_turn_use_case),
):
    entries = uc.history(session_id, limit=limit)
    return HistoryResponseSchema(
        session_id=session_id,
        entries=[
            HistoryEntrySchema(
                role=entry.get("role", ""),
                text=entry.get("text", ""),
                ts=entry.get("ts"),
                meta=entry.get("meta") or {},
            )
            for entry in entries
        ],
    )


@router.delete("/chat/{session_id}", status_code=204)
def reset(
    session_id: str,
    uc: HandleChatTurnUseCase = Depends(get_chat_turn_use_case),
) -> Response:
    uc.reset(session_id)
    return Response(status_code=204)
