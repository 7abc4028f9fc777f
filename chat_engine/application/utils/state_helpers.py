from __future__ import annotations

from dataclasses import replace

from chat_engine.domain.entities.flow import ActionResult
from chat_engine.domain.entities.session import PendingFlow, Session


def with_pending(session: Session, pending: PendingFlow) -> Session:
    """Replace the in-flight flow; a session never holds more than one."""
    return replace(session, pending=pending)


def clear_pending(session: Session) -> Session:
    return replace(session, pending=None)


def remember(session: Session, result: ActionResult) -> Session:
    """Clear the flow and refresh entity memory, keeping previous values the result does not set."""
    return Session(
        pending=None,
        last_entity=result.entity or session.last_entity,
        last_deleted=result.deleted or session.last_deleted,
    )


def forget_deleted(session: Session, result: ActionResult) -> Session:
    return Session(
        pending=session.pending,
        last_entity=result.entity or session.last_entity,
        last_deleted=None,
    )
