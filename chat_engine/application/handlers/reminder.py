from __future__ import annotations

import re
from datetime import timedelta
from typing import Any, Mapping

from chat_engine.application.handlers import field_parsers
from chat_engine.application.handlers.base import (
    ALL_DAYS,
    DEFAULT_FREQUENCIES,
    Capability,
    EntityHandler,
    banner,
    reply_action,
    summary_card,
)
from chat_engine.application.utils.date_parser import day_label, format_time_label, parse_frequency, parse_time
from chat_engine.application.utils.formatting import EMOJI, format_details_block
from chat_engine.application.utils.message_rules import extract_name
from chat_engine.domain.entities.context import AssistantContext
from chat_engine.domain.entities.flow import ActionResult, DeletedEntity, EntityRef, FlowField, TargetMatch
from chat_engine.domain.entities.intent import ActionType, EntityType

REMINDER_KEYWORDS = ("reminder", "reminders", "alert", "alerts", "notify", "snooze", "minutes", "mins")
NOTIFICATION_TYPES = ("push", "email", "sms")
DEFAULT_SNOOZE_MINUTES = 15

_BARE_CLOCK_RE = re.compile(r"\b\d{1,2}(:\d{2})?\s*(am|pm)?\b")
_RENAME_RE = re.compile(r"to\s+(.+)", re.IGNORECASE)
_TRAILING_MINUTES_RE = re.compile(r"(\d+)\s*(?:m|min|mins|minutes?)?\s*$", re.IGNORECASE)


def detect_notification_type(text: str) -> str | None:
    lowered = text.lower()
    for kind in NOTIFICATION_TYPES:
        if kind in lowered:
            return kind
    return None


def notification_type(text: str, data: Mapping[str, Any]) -> dict[str, Any]:
    return {"notification_type": detect_notification_type(text) or text.strip().lower()}


class ReminderHandler(EntityHandler):
    entity = EntityType.reminder
    label = "Reminder"
    keywords = REMINDER_KEYWORDS
    capabilities = frozenset(
        {
            Capability.parse_update,
            Capability.edit_fields,
            Capability.find_target,
            Capability.create,
            Capability.update,
            Capability.remove,
            Capability.view,
            Capability.snooze,
            Capability.restore,
        }
    )

    def parse_input(self, text: str, ctx: AssistantContext) -> dict[str, Any]:
        data: dict[str, Any] = {}
        lowered = text.lower()
        # "snooze water 30" carries minutes, not a clock time.
        snoozing = "snooze" in lowered
        if snoozing:
            minutes = _TRAILING_MINUTES_RE.search(text.strip())
            if minutes:
                data["minutes"] = int(minutes.group(1))
                text = text.strip()[: minutes.start()]

        name = extract_name(text, self.keywords)
        if name:
            data["title"] = name
        parsed_time = None if snoozing else parse_time(text)
        if parsed_time and parsed_time.time24:
            data["time24"] = parsed_time.time24
            data["time_label"] = parsed_time.label
        parsed_frequency = parse_frequency(text)
        if parsed_frequency:
            data["frequency"] = list(parsed_frequency.days)
            data["frequency_label"] = parsed_frequency.label
        kind = detect_notification_type(text)
        if kind:
            data["notification_type"] = kind
        return data

    def parse_update(self, text: str, ctx: AssistantContext) -> dict[str, Any]:
        updates: dict[str, Any] = {}
        lowered = text.lower()

        if "time" in lowered or _BARE_CLOCK_RE.search(lowered):
            parsed_time = parse_time(text)
            if parsed_time and parsed_time.time24:
                updates["time24"] = parsed_time.time24
                updates["time_label"] = parsed_time.label

        if any(word in lowered for word in ("daily", "weekly", "weekday", "weekend")):
            parsed_frequency = parse_frequency(text)
            if parsed_frequency:
                updates["frequency"] = list(parsed_frequency.days)
                updates["frequency_label"] = parsed_frequency.label

        kind = detect_notification_type(text)
        if kind:
            updates["notification_type"] = kind

        if "rename" in lowered or "title" in lowered:
            match = _RENAME_RE.search(text)
            if match:
                updates["title"] = match.group(1).strip()

        return updates

    def get_create_fields(self, data: Mapping[str, Any], ctx: AssistantContext) -> list[FlowField]:
        return [
            FlowField(key="title", question="What should I remind you about?", parser=field_parsers.name_text()),
            FlowField(key="time_label", question="What time should I remind you?", parser=field_parsers.clock_time()),
            FlowField(
                key="frequency_label",
                question="How often should it repeat?",
                options=DEFAULT_FREQUENCIES,
                parser=field_parsers.frequency,
            ),
            FlowField(
                key="notification_type",
                question="Preferred notification type?",
                options=("Push", "Email", "SMS"),
                parser=notification_type,
            ),
        ]

    def get_edit_fields(self, target: TargetMatch, ctx: AssistantContext) -> list[FlowField]:
        return [
            FlowField(key="title", question="New reminder title?", parser=field_parsers.raw_text("title")),
            FlowField(key="time", question="New reminder time?", parser=field_parsers.clock_time()),
            FlowField(
                key="frequency",
                question="New frequency?",
                options=DEFAULT_FREQUENCIES,
                parser=field_parsers.frequency,
            ),
            FlowField(
                key="notification_type",
                question="Notification type?",
                options=("Push", "Email", "SMS"),
                parser=notification_type,
            ),
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
        time24 = data.get("time24") or item.get("time24")
        time_text = data.get("time_label") or (format_time_label(time24) if time24 else "Not set")
        kind = data.get("notification_type") or item.get("notification_type") or "push"
        details = [
            ("Title", name or "Untitled"),
            ("Time", time_text),
            ("Frequency", data.get("frequency_label") or _days_text(item.get("days"))),
            ("Type", kind.upper()),
        ]
        return summary_card(action, f"{(name or 'Reminder').upper()} REMINDER", details, "Confirm this reminder?")

    async def create(self, data: Mapping[str, Any], ctx: AssistantContext) -> ActionResult:
        if not ctx.user_id:
            return self._sign_in("create reminders")

        reminder = await self._store.create(
            ctx.user_id,
            {
                "title": data["title"],
                "time24": data.get("time24") or "09:00",
                "days": data.get("frequency") or ALL_DAYS,
                "is_enabled": True,
                "notification_type": data.get("notification_type") or "push",
            },
        )
        details = [
            ("Time", data.get("time_label") or format_time_label(reminder["time24"])),
            ("Frequency", data.get("frequency_label") or "Daily"),
            ("Status", "Enabled"),
        ]
        title = reminder["title"]
        return ActionResult(
            message=banner(f"{EMOJI['success']} CREATED!", format_details_block(title.upper(), details)),
            actions=(
                reply_action("Snooze", f"snooze {title}"),
                reply_action("Edit reminder", f"edit {title}"),
            ),
            entity=self._ref(reminder),
        )

    async def update(self, target: TargetMatch | None, updates: Mapping[str, Any], ctx: AssistantContext) -> ActionResult:
        if target is None or not target.id:
            return ActionResult(message=f"{EMOJI['warning']} Choose a reminder to update.")
        if not ctx.user_id:
            return self._sign_in("update reminders")

        payload = {
            key: value
            for key, value in (
                ("title", updates.get("title")),
                ("time24", updates.get("time24")),
                ("days", updates.get("frequency")),
                ("notification_type", updates.get("notification_type")),
            )
            if value
        }
        await self._store.update(ctx.user_id, target.id, payload)
        return ActionResult(
            message=banner(f"{EMOJI['success']} UPDATED!", f"{target.name} reminder updated."),
            actions=(reply_action("View reminders", "show reminders"),),
            entity=EntityRef(type=self.entity, id=target.id, name=updates.get("title") or target.name),
        )

    async def remove(self, target: TargetMatch, ctx: AssistantContext) -> ActionResult:
        if not target.id:
            return ActionResult(message=f"{EMOJI['warning']} Choose a reminder to delete.")
        if not ctx.user_id:
            return self._sign_in("delete reminders")
        removed = await self._store.remove(ctx.user_id, target.id)
        return ActionResult(
            message=banner(f"{EMOJI['success']} DELETED!", f"{target.name} reminder deleted."),
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
            return self._sign_in("view reminders")

        if target is not None and target.id:
            item = target.item
            details = [
                ("Time", format_time_label(item["time24"]) if item.get("time24") else "Not set"),
                ("Days", _days_text(item.get("days"))),
                ("Status", "Enabled" if item.get("is_enabled") else "Disabled"),
            ]
            return ActionResult(
                message=banner("\U0001F4CA REMINDER DETAILS", format_details_block(target.name.upper(), details)),
                actions=(
                    reply_action("Edit", f"edit {target.name}"),
                    reply_action("Snooze 15m", f"snooze {target.name} 15"),
                ),
                entity=EntityRef(type=self.entity, id=target.id, name=target.name),
            )

        reminders = await self._store.list(ctx.user_id)
        if not reminders:
            return ActionResult(message=f"{EMOJI['info']} No reminders yet.")
        lines = [
            f"- {reminder['title']} @ {format_time_label(reminder['time24']) if reminder.get('time24') else 'Anytime'}"
            for reminder in reminders[:6]
        ]
        return ActionResult(
            message=banner("\U0001F4CA REMINDERS", "\n".join(lines)),
            actions=(reply_action("Create reminder", "create reminder", "primary"),),
        )

    async def snooze(self, target: TargetMatch, data: Mapping[str, Any], ctx: AssistantContext) -> ActionResult:
        if not target.id:
            return ActionResult(message=f"{EMOJI['warning']} Choose a reminder to snooze.")
        if not ctx.user_id:
            return self._sign_in("snooze reminders")

        minutes = int(data.get("minutes") or DEFAULT_SNOOZE_MINUTES)
        snoozed = self._now() + timedelta(minutes=minutes)
        time24 = snoozed.strftime("%H:%M")
        await self._store.update(ctx.user_id, target.id, {"time24": time24})
        self._logger.info(
            "Reminder snoozed",
            extra={"entity": self.entity.value, "user_id": ctx.user_id, "reason": f"{minutes}m"},
        )
        return ActionResult(
            message=banner(f"{EMOJI['success']} Snoozed!", f"{target.name} snoozed until {format_time_label(time24)}."),
            actions=(reply_action("Snooze 30m", f"snooze {target.name} 30"),),
            entity=EntityRef(type=self.entity, id=target.id, name=target.name),
        )

    async def restore(self, data: Mapping[str, Any], ctx: AssistantContext) -> ActionResult:
        if not ctx.user_id:
            return self._sign_in("restore")
        restored = await self._store.create(
            ctx.user_id,
            {
                **data,
                "days": data.get("days") or ALL_DAYS,
                "is_enabled": True,
                "notification_type": data.get("notification_type") or "push",
            },
        )
        return ActionResult(
            message=banner(f"{EMOJI['success']} RESTORED", f"{restored['title']} reminder restored."),
            entity=self._ref(restored, with_data=False),
        )


def _days_text(days: Any) -> str:
    if not days or list(days) == ALL_DAYS:
        return "Daily"
    return ", ".join(day_label(day) for day in days)
