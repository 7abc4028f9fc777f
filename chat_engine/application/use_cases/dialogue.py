from __future__ import annotations

import logging
import re
from dataclasses import dataclass, replace
from typing import Any, Mapping

from chat_engine.application.handlers.base import Capability, EntityHandler
from chat_engine.application.handlers.metrics import MetricsExporter
from chat_engine.application.use_cases.detect_intent import detect_intent
from chat_engine.application.utils.formatting import EMOJI, format_header
from chat_engine.application.utils.message_rules import (
    is_cancel_request,
    is_explicit_confirm,
    is_undo_request,
    normalize_text,
    parse_yes_no,
)
from chat_engine.application.utils.replies import ReplyBuilder, find_next_missing_field
from chat_engine.application.utils.state_helpers import clear_pending, forget_deleted, remember, with_pending
from chat_engine.domain.entities.context import AssistantContext
from chat_engine.domain.entities.flow import ActionResult, FlowField, TargetMatch
from chat_engine.domain.entities.intent import ActionType, DetectedIntent, EntityType
from chat_engine.domain.entities.message import ChatMessage
from chat_engine.domain.entities.session import PendingFlow, PendingStage, Session

DEFAULT_SNOOZE_MINUTES = 15
SNOOZE_OPTIONS = ("5", "15", "30", "60")
ALL_HABITS_ID = "__all__"

HELP_MESSAGE = (
    f"{format_header('HOW CAN I HELP?')}\n\n"
    "Try:\n"
    "- Create habit\n"
    "- Set reminder at 7am\n"
    "- Add task finish project\n"
    "- Show my schedule\n"
    "- Add note about meditation\n\n"
    'You can also say "show my stats" or "dark mode".'
)

# Verb each flow ends in; checked before a flow starts and again before it executes.
REQUIRED_CAPABILITY = {
    ActionType.create: Capability.create,
    ActionType.edit: Capability.update,
    ActionType.update: Capability.update,
    ActionType.delete: Capability.remove,
    ActionType.complete: Capability.complete,
    ActionType.enroll: Capability.complete,
    ActionType.snooze: Capability.snooze,
}


def snooze_minutes_field() -> FlowField:
    def parser(text: str, data: Mapping[str, Any]) -> dict[str, Any]:
        match = re.search(r"\d+", text)
        return {"minutes": int(match.group(0)) if match else DEFAULT_SNOOZE_MINUTES}

    return FlowField(
        key="minutes",
        question="Snooze for how long? (e.g., 15 minutes)",
        options=SNOOZE_OPTIONS,
        parser=parser,
    )


def default_edit_fields() -> tuple[FlowField, ...]:
    return (
        FlowField(key="time", question="What time should it be?"),
        FlowField(key="name", question="What should the new name be?"),
        FlowField(key="category", question="Which category?"),
        FlowField(key="frequency", question="How often?"),
    )


def wants_all_habits(text: str) -> bool:
    """"complete all habits" / "done with today's habits"."""
    words = set(normalize_text(text).split())
    if "all" in words and words & {"habit", "habits"}:
        return True
    return bool(words & {"today", "todays"}) and "habits" in words


@dataclass(frozen=True)
class TurnResult:
    messages: list[ChatMessage]
    session: Session


class DialogueManager:
    """
    Drives one chat turn: undo shortcut, pending-flow resume, or fresh intent.
    Sessions are treated as values; every turn returns a new Session and never
    mutates the one it was given.
    """

    def __init__(
        self,
        handlers: Mapping[EntityType, EntityHandler],
        exporter: MetricsExporter | None = None,
        replies: ReplyBuilder | None = None,
    ) -> None:
        self._handlers = dict(handlers)
        self._exporter = exporter
        self._replies = replies or ReplyBuilder()
        self._logger = logging.getLogger(__name__)

    async def handle_input(self, text: str, session: Session, ctx: AssistantContext) -> TurnResult:
        text = text.strip()
        if not text:
            return TurnResult(messages=[], session=session)

        if is_undo_request(text):
            restored = await self._try_undo(session, ctx)
            if restored is not None:
                return restored

        if session.pending is not None:
            return await self._handle_pending(text, session, ctx)

        intent = detect_intent(text)
        if intent is None:
            if is_undo_request(text):
                return self._reply(f"{EMOJI['info']} Nothing to undo.", session)
            return self._help(session)
        return await self._handle_intent(intent, text, session, ctx)

    async def _try_undo(self, session: Session, ctx: AssistantContext) -> TurnResult | None:
        deleted = session.last_deleted
        if deleted is None:
            return None
        handler = self._handlers.get(deleted.type)
        if handler is None or not handler.supports(Capability.restore):
            return None
        result = await handler.restore(deleted.data, ctx)
        self._logger.info("Entity restored", extra={"entity": deleted.type.value})
        return self._result(result, forget_deleted(session, result))

    async def _handle_intent(
        self,
        intent: DetectedIntent,
        text: str,
        session: Session,
        ctx: AssistantContext,
    ) -> TurnResult:
        handler = self._handlers.get(intent.entity)
        if handler is None:
            return self._help(session)
        self._logger.info(
            "Intent detected",
            extra={"entity": intent.entity.value, "action": intent.action.value},
        )

        required = REQUIRED_CAPABILITY.get(intent.action)
        if required is not None and not handler.supports(required):
            return self._unsupported(session, handler, intent.action)

        data = handler.parse_input(text, ctx)
        action = intent.action
        if action is ActionType.create:
            return self._start_create(handler, data, session, ctx)
        if action in (ActionType.edit, ActionType.update):
            return await self._start_edit(handler, data, session, ctx, text)
        if action is ActionType.delete:
            return await self._start_delete(handler, data, session, ctx)
        if action in (ActionType.complete, ActionType.enroll):
            return await self._start_complete(handler, data, session, ctx, text)
        if action in (ActionType.view, ActionType.progress):
            return await self._start_view(handler, data, session, ctx)
        if action is ActionType.snooze:
            return await self._start_snooze(handler, data, session, ctx)
        if action is ActionType.export:
            return await self._export(session, ctx)
        if action is ActionType.share:
            return self._reply(
                f"{EMOJI['success']} Share link created.",
                session,
                (self._replies.build_action("Copy link", "copy link"),),
            )
        return self._help(session)

    def _start_create(
        self,
        handler: EntityHandler,
        data: Mapping[str, Any],
        session: Session,
        ctx: AssistantContext,
    ) -> TurnResult:
        fields = tuple(handler.get_create_fields(data, ctx))
        next_index = find_next_missing_field(fields, data)
        if next_index is not None:
            pending = PendingFlow(
                action=ActionType.create,
                entity=handler.entity,
                stage=PendingStage.collect,
                data=dict(data),
                fields=fields,
                field_index=next_index,
            )
            return self._ask(pending, session)

        pending = PendingFlow(
            action=ActionType.create,
            entity=handler.entity,
            stage=PendingStage.confirm,
            data=dict(data),
            fields=fields,
        )
        return self._confirm(pending, session, handler.build_summary(ActionType.create, data, None, ctx))

    async def _start_edit(
        self,
        handler: EntityHandler,
        data: Mapping[str, Any],
        session: Session,
        ctx: AssistantContext,
        raw_text: str,
        target: TargetMatch | None = None,
    ) -> TurnResult:
        if not handler.requires_target:
            # Singleton entity: nothing to resolve.
            if not data:
                fields = tuple(handler.get_create_fields(data, ctx))
                pending = PendingFlow(
                    action=ActionType.edit,
                    entity=handler.entity,
                    stage=PendingStage.collect,
                    data={},
                    fields=fields,
                    field_index=0,
                )
                return self._ask(pending, session)
            pending = PendingFlow(
                action=ActionType.edit,
                entity=handler.entity,
                stage=PendingStage.confirm,
                data=dict(data),
            )
            return self._confirm(pending, session, handler.build_summary(ActionType.edit, data, None, ctx))

        if target is None:
            target = await self._resolve_target(handler, data, session, ctx)
        if target is None:
            pending = PendingFlow(
                action=ActionType.edit,
                entity=handler.entity,
                stage=PendingStage.resolve_target,
                data=dict(data),
            )
            self._log_stage(pending)
            return self._reply(
                f"Which {handler.label.lower()} should I update?",
                with_pending(session, pending),
            )

        updates = handler.parse_update(raw_text, ctx) if handler.supports(Capability.parse_update) else {}
        if updates:
            pending = PendingFlow(
                action=ActionType.edit,
                entity=handler.entity,
                stage=PendingStage.confirm,
                data=updates,
                target=target,
            )
            return self._confirm(pending, session, handler.build_summary(ActionType.edit, updates, target, ctx))

        fields = self._edit_fields(handler, target, ctx)
        pending = PendingFlow(
            action=ActionType.edit,
            entity=handler.entity,
            stage=PendingStage.edit_field,
            data={},
            fields=fields,
            target=target,
        )
        self._log_stage(pending)
        return self._reply(
            f"Found {target.name}. What would you like to change?",
            with_pending(session, pending),
            tuple(self._replies.build_action(field.key, field.key) for field in fields),
        )

    async def _start_delete(
        self,
        handler: EntityHandler,
        data: Mapping[str, Any],
        session: Session,
        ctx: AssistantContext,
    ) -> TurnResult:
        target = await self._resolve_target(handler, data, session, ctx)
        if target is None:
            return self._ask_target(handler, ActionType.delete, data, session, "delete")
        pending = PendingFlow(
            action=ActionType.delete,
            entity=handler.entity,
            stage=PendingStage.confirm,
            data=dict(data),
            target=target,
        )
        return self._confirm(pending, session, handler.build_summary(ActionType.delete, data, target, ctx))

    async def _start_complete(
        self,
        handler: EntityHandler,
        data: Mapping[str, Any],
        session: Session,
        ctx: AssistantContext,
        raw_text: str,
    ) -> TurnResult:
        if handler.entity is EntityType.habit and wants_all_habits(raw_text):
            pending = PendingFlow(
                action=ActionType.complete,
                entity=handler.entity,
                stage=PendingStage.confirm,
                data={"complete_all": True},
                target=TargetMatch(id=ALL_HABITS_ID, name="All habits", item={"all": True}),
            )
            return self._confirm(pending, session, "Mark all of today's habits as complete?")

        target = await self._resolve_target(handler, data, session, ctx)
        if target is None:
            return self._ask_target(handler, ActionType.complete, data, session, "complete")
        pending = PendingFlow(
            action=ActionType.complete,
            entity=handler.entity,
            stage=PendingStage.confirm,
            data=dict(data),
            target=target,
        )
        return self._confirm(pending, session, handler.build_summary(ActionType.complete, data, target, ctx))

    async def _start_view(
        self,
        handler: EntityHandler,
        data: Mapping[str, Any],
        session: Session,
        ctx: AssistantContext,
    ) -> TurnResult:
        if handler.supports(Capability.view):
            # No last-entity fallback: a bare "show habits" lists.
            target = await self._resolve_target(handler, data, session, ctx, allow_fallback=False)
            result = await handler.view(target, ctx, data)
            return self._result(result, replace(session, last_entity=result.entity or session.last_entity))
        if handler.supports(Capability.list):
            result = await handler.list_entries(ctx)
            return self._result(result, session)
        return self._help(session)

    async def _start_snooze(
        self,
        handler: EntityHandler,
        data: Mapping[str, Any],
        session: Session,
        ctx: AssistantContext,
    ) -> TurnResult:
        target = await self._resolve_target(handler, data, session, ctx)
        if target is None:
            return self._ask_target(handler, ActionType.snooze, data, session, "snooze")
        pending = PendingFlow(
            action=ActionType.snooze,
            entity=handler.entity,
            stage=PendingStage.collect,
            data=dict(data),
            fields=(snooze_minutes_field(),),
            field_index=0,
            target=target,
        )
        return self._ask(pending, session)

    async def _export(self, session: Session, ctx: AssistantContext) -> TurnResult:
        if self._exporter is None:
            return self._reply(self._unsupported_message(), session)
        result = await self._exporter.export_metrics(ctx)
        return self._result(result, session)

    async def _handle_pending(self, text: str, session: Session, ctx: AssistantContext) -> TurnResult:
        pending = session.pending
        handler = self._handlers.get(pending.entity)
        if handler is None:
            return self._help(clear_pending(session))
        pending = replace(pending, fields=self._with_parsers(handler, pending, ctx))

        if pending.stage is PendingStage.resolve_target:
            return await self._resume_target(text, handler, pending, session, ctx)
        if pending.stage is PendingStage.edit_field:
            return self._choose_edit_field(text, handler, pending, session, ctx)
        if pending.stage is PendingStage.edit_value:
            return self._apply_edit_value(text, handler, pending, session, ctx)
        if pending.stage is PendingStage.collect:
            return self._collect(text, handler, pending, session, ctx)
        if pending.stage is PendingStage.confirm:
            return await self._answer_confirm(text, handler, pending, session, ctx)
        return self._help(clear_pending(session))

    async def _resume_target(
        self,
        text: str,
        handler: EntityHandler,
        pending: PendingFlow,
        session: Session,
        ctx: AssistantContext,
    ) -> TurnResult:
        target = await handler.find_target(text, ctx) if handler.supports(Capability.find_target) else None
        if target is None:
            return self._reply(f"I could not find that {handler.label.lower()}. Try again?", session)

        if pending.action is ActionType.edit:
            return await self._start_edit(handler, {}, clear_pending(session), ctx, text, target=target)
        if pending.action is ActionType.snooze:
            pending = replace(
                pending,
                stage=PendingStage.collect,
                fields=(snooze_minutes_field(),),
                field_index=0,
                step=1,
                target=target,
            )
            return self._ask(pending, session)
        pending = replace(pending, stage=PendingStage.confirm, target=target)
        return self._confirm(pending, session, handler.build_summary(pending.action, pending.data, target, ctx))

    def _choose_edit_field(
        self,
        text: str,
        handler: EntityHandler,
        pending: PendingFlow,
        session: Session,
        ctx: AssistantContext,
    ) -> TurnResult:
        choice = normalize_text(text)
        field = None
        if choice:
            field = next(
                (
                    candidate
                    for candidate in pending.fields
                    if normalize_text(candidate.key) == choice or choice in normalize_text(candidate.question)
                ),
                None,
            )
        if field is not None:
            pending = replace(pending, stage=PendingStage.edit_value, edit_field_key=field.key)
            self._log_stage(pending)
            return self._reply(field.question, with_pending(session, pending), self._replies.build_options(field))

        updates = handler.parse_update(text, ctx) if handler.supports(Capability.parse_update) else {}
        if updates:
            pending = replace(pending, stage=PendingStage.confirm, data=updates)
            return self._confirm(pending, session, handler.build_summary(ActionType.edit, updates, pending.target, ctx))
        return self._reply("Tell me what you want to update (e.g., time, name, category).", session)

    def _apply_edit_value(
        self,
        text: str,
        handler: EntityHandler,
        pending: PendingFlow,
        session: Session,
        ctx: AssistantContext,
    ) -> TurnResult:
        key = pending.edit_field_key or "value"
        field = next((candidate for candidate in pending.fields if candidate.key == key), None)
        parsed = self._parse(field, text, pending.data) if field is not None else {key: text.strip()}
        data = {**pending.data, **parsed}
        pending = replace(pending, stage=PendingStage.confirm, data=data)
        return self._confirm(pending, session, handler.build_summary(ActionType.edit, data, pending.target, ctx))

    def _collect(
        self,
        text: str,
        handler: EntityHandler,
        pending: PendingFlow,
        session: Session,
        ctx: AssistantContext,
    ) -> TurnResult:
        if not 0 <= pending.field_index < len(pending.fields):
            return self._help(clear_pending(session))
        field = pending.fields[pending.field_index]
        data = {**pending.data, **self._parse(field, text, pending.data)}

        next_index = find_next_missing_field(pending.fields, data)
        if next_index is not None:
            # The same field stays open when the answer did not fill it.
            step = pending.step + 1 if next_index != pending.field_index else pending.step
            pending = replace(pending, data=data, field_index=next_index, step=step)
            return self._ask(pending, session)

        pending = replace(pending, stage=PendingStage.confirm, data=data)
        if pending.action is ActionType.snooze and pending.target is not None:
            return self._confirm_snooze(pending, session)
        return self._confirm(pending, session, handler.build_summary(pending.action, data, pending.target, ctx))

    async def _answer_confirm(
        self,
        text: str,
        handler: EntityHandler,
        pending: PendingFlow,
        session: Session,
        ctx: AssistantContext,
    ) -> TurnResult:
        answer = parse_yes_no(text)
        if answer is False or is_cancel_request(text):
            self._logger.info(
                "Flow canceled",
                extra={"entity": pending.entity.value, "action": pending.action.value},
            )
            return self._reply("Okay, canceled.", clear_pending(session))
        if answer is None and not is_explicit_confirm(text):
            return self._reply("Please confirm with yes or no.", session)

        result = await self._execute(handler, pending, ctx)
        return self._result(result, remember(session, result))

    async def _execute(self, handler: EntityHandler, pending: PendingFlow, ctx: AssistantContext) -> ActionResult:
        required = REQUIRED_CAPABILITY.get(pending.action)
        if required is None or not handler.supports(required):
            self._log_unsupported(handler, pending.action)
            return ActionResult(message=self._unsupported_message())

        self._logger.info(
            "Executing flow",
            extra={"entity": handler.entity.value, "action": pending.action.value},
        )
        if pending.action is ActionType.create:
            return await handler.create(pending.data, ctx)
        if pending.action in (ActionType.edit, ActionType.update):
            if pending.target is None and handler.requires_target:
                return ActionResult(message=self._unsupported_message())
            return await handler.update(pending.target, pending.data, ctx)

        if pending.target is None:
            return ActionResult(message=self._unsupported_message())
        if pending.action is ActionType.delete:
            return await handler.remove(pending.target, ctx)
        if pending.action in (ActionType.complete, ActionType.enroll):
            return await handler.complete(pending.target, ctx)
        return await handler.snooze(pending.target, pending.data, ctx)

    async def _resolve_target(
        self,
        handler: EntityHandler,
        data: Mapping[str, Any],
        session: Session,
        ctx: AssistantContext,
        allow_fallback: bool = True,
    ) -> TargetMatch | None:
        name = data.get("title") or data.get("name") or data.get("query")
        if name and handler.supports(Capability.find_target):
            match = await handler.find_target(str(name), ctx)
            if match is not None:
                return match

        last = session.last_entity
        if allow_fallback and last is not None and last.type is handler.entity:
            return TargetMatch(
                id=last.id,
                name=last.name or handler.label,
                item=dict(last.data) if last.data else {"id": last.id, "name": last.name},
            )
        return None

    def _edit_fields(self, handler: EntityHandler, target: TargetMatch, ctx: AssistantContext) -> tuple[FlowField, ...]:
        if handler.supports(Capability.edit_fields):
            return tuple(handler.get_edit_fields(target, ctx))
        return default_edit_fields()

    def _with_parsers(self, handler: EntityHandler, pending: PendingFlow, ctx: AssistantContext) -> tuple[FlowField, ...]:
        """Reattach parsers to fields that came back from storage without them."""
        if all(field.parser is not None for field in pending.fields):
            return pending.fields

        if pending.action is ActionType.snooze:
            schedule: tuple[FlowField, ...] = (snooze_minutes_field(),)
        elif pending.action is ActionType.create or not handler.requires_target:
            schedule = tuple(handler.get_create_fields(pending.data, ctx))
        elif pending.target is not None:
            schedule = self._edit_fields(handler, pending.target, ctx)
        else:
            schedule = ()

        by_key = {field.key: field for field in schedule}
        return tuple(
            field if field.parser is not None or field.key not in by_key else replace(field, parser=by_key[field.key].parser)
            for field in pending.fields
        )

    def _parse(self, field: FlowField, text: str, data: Mapping[str, Any]) -> dict[str, Any]:
        if field.parser is None:
            return {field.key: text.strip()}
        return field.parser(text, data) or {}

    def _ask(self, pending: PendingFlow, session: Session) -> TurnResult:
        field = pending.fields[pending.field_index]
        self._log_stage(pending)
        return self._reply(
            self._replies.build_question(field, pending.step),
            with_pending(session, pending),
            self._replies.build_options(field),
        )

    def _ask_target(
        self,
        handler: EntityHandler,
        action: ActionType,
        data: Mapping[str, Any],
        session: Session,
        verb: str,
    ) -> TurnResult:
        pending = PendingFlow(
            action=action,
            entity=handler.entity,
            stage=PendingStage.resolve_target,
            data=dict(data),
        )
        self._log_stage(pending)
        return self._reply(f"Which {handler.label.lower()} should I {verb}?", with_pending(session, pending))

    def _confirm(self, pending: PendingFlow, session: Session, summary: str) -> TurnResult:
        pending = replace(pending, stage=PendingStage.confirm)
        self._log_stage(pending)
        return self._reply(summary, with_pending(session, pending), self._replies.build_confirm_actions())

    def _confirm_snooze(self, pending: PendingFlow, session: Session) -> TurnResult:
        minutes = pending.data.get("minutes") or DEFAULT_SNOOZE_MINUTES
        return self._confirm(pending, session, f"Snooze {pending.target.name} for {minutes} minutes?")

    def _reply(self, text: str, session: Session, actions: tuple = ()) -> TurnResult:
        return TurnResult(messages=[self._replies.create_message(text, actions)], session=session)

    def _result(self, result: ActionResult, session: Session) -> TurnResult:
        return TurnResult(messages=[self._replies.from_result(result)], session=session)

    def _help(self, session: Session) -> TurnResult:
        return self._reply(HELP_MESSAGE, session)

    def _unsupported(self, session: Session, handler: EntityHandler, action: ActionType) -> TurnResult:
        self._log_unsupported(handler, action)
        return self._reply(self._unsupported_message(), clear_pending(session))

    def _unsupported_message(self) -> str:
        return f"{EMOJI['warning']} That action is not supported yet."

    def _log_unsupported(self, handler: EntityHandler, action: ActionType) -> None:
        self._logger.info(
            "Unsupported action",
            extra={"entity": handler.entity.value, "action": action.value, "reason": "unsupported"},
        )

    def _log_stage(self, pending: PendingFlow) -> None:
        self._logger.info(
            "Flow stage",
            extra={
                "entity": pending.entity.value,
                "action": pending.action.value,
                "stage": pending.stage.value,
            },
        )
