from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Callable, Mapping
from zoneinfo import ZoneInfo

from chat_engine.application.handlers import field_parsers
from chat_engine.application.handlers.base import (
    ALL_DAYS,
    DEFAULT_CATEGORIES,
    DEFAULT_FREQUENCIES,
    Capability,
    EntityHandler,
    banner,
    reply_action,
    summary_card,
)
from chat_engine.application.ports.entity_store import EntityStorePort
from chat_engine.application.utils.date_parser import day_label, format_time_label, parse_frequency, parse_time, to_time_of_day
from chat_engine.application.utils.formatting import EMOJI, format_details_block
from chat_engine.application.utils.message_rules import (
    capitalize_words,
    extract_category,
    extract_name,
    normalize_text,
    parse_yes_no,
)
from chat_engine.domain.entities.context import AssistantContext
from chat_engine.domain.entities.flow import ActionResult, DeletedEntity, EntityRef, FlowField, TargetMatch
from chat_engine.domain.entities.intent import ActionType, EntityType

HABIT_KEYWORDS = ("habit", "habits", "habbit", "hibbit", "ritual", "rituals", "routine", "routines")

_BARE_CLOCK_RE = re.compile(r"\b\d{1,2}(:\d{2})?\s*(am|pm)?\b")
_RENAME_RE = re.compile(r"to\s+(.+)", re.IGNORECASE)


def map_category(category: str | None) -> str:
    lowered = (category or "").lower()
    if lowered in ("health", "fitness"):
        return "health"
    if lowered in ("mindfulness", "wellness"):
        return "mindfulness"
    if lowered in ("learning", "study"):
        return "learning"
    if lowered == "social":
        return "social"
    return "work"


def summarize_time(data: Mapping[str, Any]) -> str:
    if data.get("time_label"):
        return data["time_label"]
    if data.get("time24"):
        return format_time_label(data["time24"])
    if data.get("time_of_day"):
        return data["time_of_day"].capitalize()
    return "Anytime"


class HabitHandler(EntityHandler):
    entity = EntityType.habit
    label = "Habit"
    keywords = HABIT_KEYWORDS
    capabilities = frozenset(
        {
            Capability.parse_update,
            Capability.edit_fields,
            Capability.find_target,
            Capability.create,
            Capability.update,
            Capability.complete,
            Capability.remove,
            Capability.view,
            Capability.restore,
        }
    )

    def __init__(
        self,
        store: EntityStorePort,
        reminders: EntityStorePort,
        timezone: ZoneInfo | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        super().__init__(store, timezone, clock)
        self._reminders = reminders

    def parse_input(self, text: str, ctx: AssistantContext) -> dict[str, Any]:
        data: dict[str, Any] = {}
        name = extract_name(text, self.keywords)
        if name:
            data["title"] = name
        parsed_time = parse_time(text)
        if parsed_time:
            data.update(
                {
                    key: value
                    for key, value in (
                        ("time24", parsed_time.time24),
                        ("time_label", parsed_time.label),
                        ("time_of_day", parsed_time.time_of_day),
                    )
                    if value
                }
            )
        parsed_frequency = parse_frequency(text)
        if parsed_frequency:
            data["frequency"] = list(parsed_frequency.days)
            data["frequency_label"] = parsed_frequency.label
        category = extract_category(text)
        if category:
            data["category"] = category
        reminder = parse_yes_no(text)
        if reminder is not None:
            data["reminder"] = reminder
        return data

    def parse_update(self, text: str, ctx: AssistantContext) -> dict[str, Any]:
        lowered = text.lower()
        updates: dict[str, Any] = {}

        if "time" in lowered or _BARE_CLOCK_RE.search(lowered):
            parsed_time = parse_time(text)
            if parsed_time and parsed_time.time24:
                updates["time24"] = parsed_time.time24
                updates["time_label"] = parsed_time.label
                updates["time_of_day"] = parsed_time.time_of_day

        if "category" in lowered:
            category = extract_category(text)
            if category:
                updates["category"] = category

        if "frequency" in lowered or "daily" in lowered or "weekly" in lowered:
            parsed_frequency = parse_frequency(text)
            if parsed_frequency:
                updates["frequency"] = list(parsed_frequency.days)
                updates["frequency_label"] = parsed_frequency.label

        if "rename" in lowered or "name" in lowered:
            match = _RENAME_RE.search(text)
            if match:
                updates["title"] = match.group(1).strip()

        if "reminder" in lowered:
            reminder = parse_yes_no(text)
            if reminder is not None:
                updates["reminder"] = reminder

        return updates

    def get_create_fields(self, data: Mapping[str, Any], ctx: AssistantContext) -> list[FlowField]:
        return [
            FlowField(key="title", question="What should I call this habit?", parser=field_parsers.name_text()),
            FlowField(
                key="time_label",
                question="What time do you want to do this? (e.g., 7:00 AM, morning, anytime)",
                parser=field_parsers.clock_time(with_time_of_day=True),
            ),
            FlowField(
                key="category",
                question="Which category fits best?",
                options=DEFAULT_CATEGORIES,
                parser=field_parsers.category,
            ),
            FlowField(
                key="frequency_label",
                question="How often should I schedule this?",
                options=DEFAULT_FREQUENCIES,
                parser=field_parsers.frequency,
            ),
            FlowField(
                key="reminder",
                question="Set a reminder?",
                options=("Yes", "No"),
                parser=field_parsers.yes_no("reminder", default=True),
            ),
        ]

    def get_edit_fields(self, target: TargetMatch, ctx: AssistantContext) -> list[FlowField]:
        return [
            FlowField(key="title", question="New habit name?", parser=field_parsers.raw_text("title")),
            FlowField(key="time", question="New time?", parser=field_parsers.clock_time(with_time_of_day=True)),
            FlowField(
                key="category",
                question="New category?",
                options=DEFAULT_CATEGORIES,
                parser=field_parsers.category,
            ),
            FlowField(
                key="frequency",
                question="New frequency?",
                options=DEFAULT_FREQUENCIES,
                parser=field_parsers.frequency,
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
        category = data.get("category") or item.get("category")
        has_time = any(data.get(key) for key in ("time_label", "time24", "time_of_day"))
        details = [
            ("Name", name or "Untitled"),
            ("Time", summarize_time(data if has_time else item)),
            ("Category", capitalize_words(category) if category else "General"),
            ("Frequency", data.get("frequency_label") or self._frequency_text(item.get("frequency"))),
            ("Reminder", "No" if data.get("reminder") is False else "Yes"),
        ]
        return summary_card(action, f"{(name or 'Habit').upper()} HABIT", details, "Does this look right?")

    async def create(self, data: Mapping[str, Any], ctx: AssistantContext) -> ActionResult:
        if not ctx.user_id:
            return self._sign_in("create habits")

        payload = {
            "title": data["title"],
            "category": map_category(data.get("category")),
            "time_of_day": data.get("time_of_day") or to_time_of_day(data.get("time24")),
            "time24": data.get("time24"),
            "frequency": data.get("frequency") or ALL_DAYS,
            "type": "habit",
            "goal_duration": 15,
            "priority": "medium",
            "order": 0,
            "streak": 0,
            "completions": [],
        }
        created = await self._store.create(ctx.user_id, payload)

        reminder_info = "Not set"
        if data.get("reminder") is not False:
            reminder_time = data.get("time24") or "09:00"
            await self._reminders.create(
                ctx.user_id,
                {
                    "title": f"{payload['title']} Reminder",
                    "time24": reminder_time,
                    "days": payload["frequency"],
                    "is_enabled": True,
                    "notification_type": "push",
                    "habit_id": created["id"],
                },
            )
            reminder_info = data.get("time_label") or format_time_label(reminder_time)
        self._logger.info("Habit created", extra={"entity": self.entity.value, "user_id": ctx.user_id})

        details = [
            ("Time", summarize_time(data)),
            ("Streak", "0 days (start today!)"),
            ("Category", capitalize_words(payload["category"])),
            ("Status", "Ready to track"),
            ("Reminder", reminder_info),
        ]
        title = payload["title"]
        return ActionResult(
            message=banner(f"{EMOJI['success']} SUCCESS!", format_details_block(title.upper(), details)),
            actions=(
                reply_action("Complete it now", f"complete {title}", "primary"),
                reply_action("Change reminder", f"edit {title} reminder"),
                reply_action("View stats", f"show {title} stats"),
            ),
            entity=self._ref(created),
        )

    async def update(self, target: TargetMatch | None, updates: Mapping[str, Any], ctx: AssistantContext) -> ActionResult:
        if not ctx.user_id or target is None or not target.id:
            return self._sign_in("update habits")

        payload: dict[str, Any] = {}
        if updates.get("title"):
            payload["title"] = updates["title"]
        if updates.get("category"):
            payload["category"] = map_category(updates["category"])
        if updates.get("frequency"):
            payload["frequency"] = updates["frequency"]
        if updates.get("time24") or updates.get("time_of_day"):
            payload["time_of_day"] = updates.get("time_of_day") or to_time_of_day(updates.get("time24"))
        if updates.get("time24"):
            payload["time24"] = updates["time24"]

        await self._store.update(ctx.user_id, target.id, payload)

        if updates.get("time24"):
            reminders = await self._reminders.list(ctx.user_id)
            linked = next(
                (
                    reminder
                    for reminder in reminders
                    if reminder.get("habit_id") == target.id
                    or normalize_text(target.name) in normalize_text(reminder.get("title", ""))
                ),
                None,
            )
            if linked:
                await self._reminders.update(ctx.user_id, linked["id"], {"time24": updates["time24"]})

        changed = ", ".join(key.replace("_", " ") for key in payload) or "Details"
        details = [("Updated", changed), ("Status", "Saved")]
        return ActionResult(
            message=banner(f"{EMOJI['success']} UPDATED!", format_details_block(target.name.upper(), details)),
            actions=(
                reply_action("Edit again", f"edit {target.name}"),
                reply_action("View details", f"show {target.name}"),
            ),
            entity=EntityRef(type=self.entity, id=target.id, name=updates.get("title") or target.name),
        )

    async def complete(self, target: TargetMatch, ctx: AssistantContext) -> ActionResult:
        if not ctx.user_id or not target.id:
            return self._sign_in("complete habits")

        today = self._today()
        if target.item.get("all"):
            habits = await self._store.list(ctx.user_id)
            for habit in habits:
                await self._mark_done(ctx.user_id, habit, today)
            return ActionResult(
                message=banner(f"{EMOJI['success']} COMPLETED!", "All habits marked complete for today."),
                actions=(reply_action("View stats", "show my stats"),),
            )

        habit = await self._store.find(ctx.user_id, target.id)
        if habit is None:
            return ActionResult(message=f"{EMOJI['warning']} Habit not found.")
        updated = await self._mark_done(ctx.user_id, habit, today)

        details = [
            ("Streak", f"{updated.get('streak') or 1} days {EMOJI['fire']}"),
            ("Status", "Completed today"),
            ("Time", self._now().strftime("%H:%M")),
        ]
        return ActionResult(
            message=banner(
                f"{EMOJI['success']} COMPLETED!",
                f"{format_details_block(target.name.upper(), details)}\n\nGreat job!",
            ),
            actions=(
                reply_action("Complete another", "today's habits", "primary"),
                reply_action("View stats", "show my stats"),
            ),
            entity=EntityRef(type=self.entity, id=target.id, name=target.name),
        )

    async def remove(self, target: TargetMatch, ctx: AssistantContext) -> ActionResult:
        if not ctx.user_id or not target.id:
            return ActionResult(message=f"{EMOJI['warning']} Please select a habit to delete.")
        removed = await self._store.remove(ctx.user_id, target.id)
        details = [("Habit", target.name), ("Status", "Deleted")]
        return ActionResult(
            message=banner(f"{EMOJI['success']} DELETED!", format_details_block("HABIT REMOVED", details)),
            actions=(
                reply_action("Undo delete", "undo delete"),
                reply_action("Create new", "create habit", "primary"),
            ),
            deleted=DeletedEntity(type=self.entity, data=dict(removed or target.item)),
        )

    async def view(
        self,
        target: TargetMatch | None,
        ctx: AssistantContext,
        data: Mapping[str, Any] | None = None,
    ) -> ActionResult:
        if not ctx.user_id:
            return self._sign_in("view habits")

        if target is not None and target.id:
            habit = target.item
            details = [
                ("Time", (habit.get("time_of_day") or "anytime").capitalize()),
                ("Category", capitalize_words(habit.get("category") or "General")),
                ("Frequency", self._frequency_text(habit.get("frequency"))),
                ("Streak", f"{habit.get('streak') or 0} days"),
            ]
            return ActionResult(
                message=banner("\U0001F4CA HABIT DETAILS", format_details_block(target.name.upper(), details)),
                actions=(
                    reply_action("Edit habit", f"edit {target.name}"),
                    reply_action("Complete", f"complete {target.name}", "primary"),
                ),
                entity=EntityRef(type=self.entity, id=target.id, name=target.name),
            )

        habits = await self._store.list(ctx.user_id)
        if not habits:
            return ActionResult(message=f"{EMOJI['info']} You do not have any habits yet.")

        today = self._today()
        lines = [
            f"{'[x]' if today in (habit.get('completions') or []) else '[ ]'} {habit['title']}" for habit in habits[:6]
        ]
        return ActionResult(
            message=banner("\U0001F4CA TODAY'S HABITS", "\n".join(lines)),
            actions=(
                reply_action("Complete one", f"complete {habits[0]['title']}", "primary"),
                reply_action("Create habit", "create habit"),
            ),
        )

    async def restore(self, data: Mapping[str, Any], ctx: AssistantContext) -> ActionResult:
        if not ctx.user_id:
            return self._sign_in("restore")
        restored = await self._store.create(
            ctx.user_id,
            {
                **data,
                "time_of_day": data.get("time_of_day") or "anytime",
                "frequency": data.get("frequency") or ALL_DAYS,
                "type": data.get("type") or "habit",
                "goal_duration": data.get("goal_duration") or 15,
                "priority": data.get("priority") or "medium",
                "order": data.get("order") or 0,
            },
        )
        return ActionResult(
            message=banner(f"{EMOJI['success']} RESTORED", f"{restored['title']} has been restored."),
            entity=self._ref(restored, with_data=False),
        )

    async def _mark_done(self, user_id: str, habit: Mapping[str, Any], today: str) -> dict[str, Any]:
        completions = list(habit.get("completions") or [])
        if today in completions:
            return dict(habit)
        completions.append(today)
        updated = await self._store.update(
            user_id,
            habit["id"],
            {"completions": completions, "streak": (habit.get("streak") or 0) + 1},
        )
        return updated or dict(habit)

    @staticmethod
    def _frequency_text(days: Any) -> str:
        if not days or list(days) == ALL_DAYS:
            return "Daily"
        return ", ".join(day_label(day) for day in days)
