from __future__ import annotations

import re
from typing import Any, Mapping

from chat_engine.application.handlers import field_parsers
from chat_engine.application.handlers.base import Capability, EntityHandler, banner, reply_action, summary_card
from chat_engine.application.utils.date_parser import format_date_label, parse_date, parse_time
from chat_engine.application.utils.formatting import EMOJI, format_details_block
from chat_engine.application.utils.message_rules import extract_name
from chat_engine.domain.entities.context import AssistantContext
from chat_engine.domain.entities.flow import ActionResult, DeletedEntity, EntityRef, FlowField, TargetMatch
from chat_engine.domain.entities.intent import ActionType, EntityType

SCHEDULE_KEYWORDS = ("schedule", "event", "events", "meeting", "meetings", "calendar")

_RENAME_RE = re.compile(r"to\s+(.+)", re.IGNORECASE)


class ScheduleHandler(EntityHandler):
    entity = EntityType.schedule
    label = "Event"
    keywords = SCHEDULE_KEYWORDS
    capabilities = frozenset(
        {
            Capability.parse_update,
            Capability.edit_fields,
            Capability.find_target,
            Capability.create,
            Capability.update,
            Capability.remove,
            Capability.view,
            Capability.restore,
        }
    )

    def parse_input(self, text: str, ctx: AssistantContext) -> dict[str, Any]:
        data: dict[str, Any] = {}
        title = extract_name(text, self.keywords)
        if title:
            data["title"] = title
        event_date = parse_date(text, self._local_date())
        if event_date:
            data["date"] = event_date
        parsed_time = parse_time(text)
        if parsed_time and parsed_time.time24:
            data["time24"] = parsed_time.time24
            data["time_label"] = parsed_time.label
        return data

    def parse_update(self, text: str, ctx: AssistantContext) -> dict[str, Any]:
        updates: dict[str, Any] = {}
        event_date = parse_date(text, self._local_date())
        if event_date:
            updates["date"] = event_date
        parsed_time = parse_time(text)
        if parsed_time and parsed_time.time24:
            updates["time24"] = parsed_time.time24
            updates["time_label"] = parsed_time.label
        if "rename" in text.lower():
            match = _RENAME_RE.search(text)
            if match:
                updates["title"] = match.group(1).strip()
        return updates

    def get_create_fields(self, data: Mapping[str, Any], ctx: AssistantContext) -> list[FlowField]:
        return [
            FlowField(key="title", question="What should I add to your schedule?", parser=field_parsers.raw_text("title")),
            FlowField(key="date", question="Which date?", parser=field_parsers.calendar_date("date", self._local_date)),
            FlowField(key="time_label", question="What time?", parser=field_parsers.clock_time()),
        ]

    def get_edit_fields(self, target: TargetMatch, ctx: AssistantContext) -> list[FlowField]:
        return [
            FlowField(key="title", question="New event title?", parser=field_parsers.raw_text("title")),
            FlowField(key="date", question="New date?", parser=field_parsers.calendar_date("date", self._local_date)),
            FlowField(key="time", question="New time?", parser=field_parsers.clock_time()),
        ]

    def build_summary(
        self,
        action: ActionType,
        data: Mapping[str, Any],
        target: TargetMatch | None = None,
        ctx: AssistantContext | None = None,
    ) -> str:
        item = target.item if target else {}
        name = data.get("title") or (target.name if target else None)
        event_date = data.get("date") or item.get("event_date")
        details = [
            ("Event", name or "Untitled"),
            ("Date", format_date_label(event_date) if event_date else "Not set"),
            ("Time", data.get("time_label") or item.get("time_label") or "Not set"),
        ]
        return summary_card(action, f"{(name or 'Event').upper()} EVENT", details, "Confirm this schedule item?")

    async def create(self, data: Mapping[str, Any], ctx: AssistantContext) -> ActionResult:
        if not ctx.user_id:
            return self._sign_in("add events")
        event = await self._store.create(
            ctx.user_id,
            {
                "title": data["title"],
                "event_date": data.get("date"),
                "event_time": data.get("time24"),
                "time_label": data.get("time_label"),
            },
        )
        details = [
            ("Date", format_date_label(event["event_date"]) if event.get("event_date") else "Not set"),
            ("Time", event.get("time_label") or "Not set"),
        ]
        return ActionResult(
            message=banner(f"{EMOJI['success']} SCHEDULED!", format_details_block(event["title"].upper(), details)),
            actions=(reply_action("View schedule", "show my schedule"),),
            entity=self._ref(event),
        )

    async def update(self, target: TargetMatch | None, updates: Mapping[str, Any], ctx: AssistantContext) -> ActionResult:
        if target is None or not target.id or not ctx.user_id:
            return ActionResult(message=f"{EMOJI['warning']} Event not found.")
        payload = {
            key: value
            for key, value in (
                ("title", updates.get("title")),
                ("event_date", updates.get("date")),
                ("event_time", updates.get("time24")),
                ("time_label", updates.get("time_label")),
            )
            if value
        }
        await self._store.update(ctx.user_id, target.id, payload)
        name = updates.get("title") or target.name
        return ActionResult(
            message=banner(f"{EMOJI['success']} UPDATED!", f"{name} updated."),
            actions=(reply_action("View schedule", "show my schedule"),),
            entity=EntityRef(type=self.entity, id=target.id, name=name),
        )

    async def remove(self, target: TargetMatch, ctx: AssistantContext) -> ActionResult:
        if not target.id or not ctx.user_id:
            return ActionResult(message=f"{EMOJI['warning']} Event not found.")
        removed = await self._store.remove(ctx.user_id, target.id)
        return ActionResult(
            message=banner(f"{EMOJI['success']} DELETED!", f"{target.name} removed from schedule."),
            actions=(reply_action("Undo delete", "undo delete"),),
            deleted=DeletedEntity(type=self.entity, data=dict(removed or target.item)),
        )

    async def view(
        self,
        target: TargetMatch | None,
        ctx: AssistantContext,
        data: Mapping[str, Any] | None = None,
    ) -> ActionResult:
        if not ctx.user_id:
            return self._sign_in("view your schedule")
        events = await self._store.list(ctx.user_id)
        if not events:
            return ActionResult(message=f"{EMOJI['info']} No scheduled events yet.")
        lines = []
        for event in events[:8]:
            when = format_date_label(event["event_date"]) if event.get("event_date") else "Date"
            lines.append(f"- {event['title']} ({when} {event.get('time_label') or 'Time'})")
        return ActionResult(
            message=banner("\U0001F4C5 YOUR SCHEDULE", "\n".join(lines)),
            actions=(reply_action("Add event", "schedule event", "primary"),),
        )

    async def restore(self, data: Mapping[str, Any], ctx: AssistantContext) -> ActionResult:
        if not ctx.user_id:
            return self._sign_in("restore")
        event = await self._store.create(ctx.user_id, dict(data))
        return ActionResult(
            message=banner(f"{EMOJI['success']} RESTORED", f"{event['title']} restored."),
            entity=self._ref(event, with_data=False),
        )
