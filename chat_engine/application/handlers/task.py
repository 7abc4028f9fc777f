from __future__ import annotations

import re
from typing import Any, Mapping

from chat_engine.application.handlers import field_parsers
from chat_engine.application.handlers.base import Capability, EntityHandler, banner, reply_action, summary_card
from chat_engine.application.utils.date_parser import format_date_label, parse_date
from chat_engine.application.utils.formatting import EMOJI, format_details_block
from chat_engine.application.utils.message_rules import extract_name, extract_priority
from chat_engine.domain.entities.context import AssistantContext
from chat_engine.domain.entities.flow import ActionResult, DeletedEntity, EntityRef, FlowField, TargetMatch
from chat_engine.domain.entities.intent import ActionType, EntityType

TASK_KEYWORDS = ("task", "tasks", "todo", "todos")
PRIORITY_OPTIONS = ("High", "Medium", "Low")

_RENAME_RE = re.compile(r"to\s+(.+)", re.IGNORECASE)


class TaskHandler(EntityHandler):
    entity = EntityType.task
    label = "Task"
    keywords = TASK_KEYWORDS
    allow_guest = True
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

    def parse_input(self, text: str, ctx: AssistantContext) -> dict[str, Any]:
        data: dict[str, Any] = {}
        title = extract_name(text, self.keywords)
        if title:
            data["title"] = title
        due_date = parse_date(text, self._local_date())
        if due_date:
            data["due_date"] = due_date
        priority = extract_priority(text)
        if priority:
            data["priority"] = priority
        return data

    def parse_update(self, text: str, ctx: AssistantContext) -> dict[str, Any]:
        updates: dict[str, Any] = {}
        due_date = parse_date(text, self._local_date())
        if due_date:
            updates["due_date"] = due_date
        priority = extract_priority(text)
        if priority:
            updates["priority"] = priority
        if "rename" in text.lower():
            match = _RENAME_RE.search(text)
            if match:
                updates["title"] = match.group(1).strip()
        return updates

    def get_create_fields(self, data: Mapping[str, Any], ctx: AssistantContext) -> list[FlowField]:
        return [
            FlowField(key="title", question="What is the task?", parser=field_parsers.raw_text("title")),
            FlowField(
                key="due_date",
                question="Any due date? (e.g., tomorrow, 2026-02-10)",
                parser=field_parsers.calendar_date("due_date", self._local_date),
            ),
            FlowField(
                key="priority",
                question="Priority level?",
                options=PRIORITY_OPTIONS,
                parser=field_parsers.priority,
            ),
            FlowField(
                key="notes",
                question="Any notes to add? (optional)",
                optional=True,
                parser=field_parsers.raw_text("notes"),
            ),
        ]

    def get_edit_fields(self, target: TargetMatch, ctx: AssistantContext) -> list[FlowField]:
        return [
            FlowField(key="title", question="New task name?", parser=field_parsers.raw_text("title")),
            FlowField(
                key="due_date",
                question="New due date?",
                parser=field_parsers.calendar_date("due_date", self._local_date),
            ),
            FlowField(key="priority", question="Update priority?", options=PRIORITY_OPTIONS, parser=field_parsers.priority),
            FlowField(
                key="notes",
                question="Update notes? (optional)",
                optional=True,
                parser=field_parsers.raw_text("notes"),
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
        due_date = data.get("due_date") or item.get("due_date")
        priority = data.get("priority") or item.get("priority") or "medium"
        details = [
            ("Task", name or "Untitled"),
            ("Due", format_date_label(due_date) if due_date else "Not set"),
            ("Priority", priority.upper()),
            ("Notes", data.get("notes") or item.get("notes") or "None"),
        ]
        return summary_card(action, f"{(name or 'Task').upper()} TASK", details, "Confirm this task?")

    async def create(self, data: Mapping[str, Any], ctx: AssistantContext) -> ActionResult:
        task = await self._store.create(
            self._owner(ctx),
            {
                "title": data["title"],
                "due_date": data.get("due_date"),
                "priority": data.get("priority") or "medium",
                "notes": data.get("notes"),
                "completed": False,
            },
        )
        details = [
            ("Due", format_date_label(task["due_date"]) if task.get("due_date") else "Not set"),
            ("Priority", task["priority"].upper()),
            ("Status", "Open"),
        ]
        title = task["title"]
        return ActionResult(
            message=banner(f"{EMOJI['success']} CREATED!", format_details_block(title.upper(), details)),
            actions=(
                reply_action("Complete", f"complete task {title}", "primary"),
                reply_action("Edit", f"edit task {title}"),
            ),
            entity=self._ref(task),
        )

    async def update(self, target: TargetMatch | None, updates: Mapping[str, Any], ctx: AssistantContext) -> ActionResult:
        if target is None or not target.id:
            return ActionResult(message=f"{EMOJI['warning']} Task not found.")
        updated = await self._store.update(self._owner(ctx), target.id, dict(updates))
        name = (updated or {}).get("title") or target.name
        return ActionResult(
            message=banner(f"{EMOJI['success']} UPDATED!", f"{name} updated."),
            actions=(reply_action("View tasks", "show tasks"),),
            entity=EntityRef(type=self.entity, id=target.id, name=name),
        )

    async def complete(self, target: TargetMatch, ctx: AssistantContext) -> ActionResult:
        if not target.id:
            return ActionResult(message=f"{EMOJI['warning']} Task not found.")
        await self._store.update(
            self._owner(ctx),
            target.id,
            {"completed": True, "completed_at": self._now().isoformat()},
        )
        return ActionResult(
            message=banner(f"{EMOJI['success']} COMPLETED!", f"{target.name} marked complete."),
            actions=(reply_action("View tasks", "show tasks"),),
            entity=EntityRef(type=self.entity, id=target.id, name=target.name),
        )

    async def remove(self, target: TargetMatch, ctx: AssistantContext) -> ActionResult:
        if not target.id:
            return ActionResult(message=f"{EMOJI['warning']} Task not found.")
        removed = await self._store.remove(self._owner(ctx), target.id)
        return ActionResult(
            message=banner(f"{EMOJI['success']} DELETED!", f"{target.name} deleted."),
            actions=(reply_action("Undo delete", "undo delete"),),
            deleted=DeletedEntity(type=self.entity, data=dict(removed or target.item)),
        )

    async def view(
        self,
        target: TargetMatch | None,
        ctx: AssistantContext,
        data: Mapping[str, Any] | None = None,
    ) -> ActionResult:
        tasks = await self._store.list(self._owner(ctx))
        if not tasks:
            return ActionResult(message=f"{EMOJI['info']} No tasks yet.")
        lines = []
        for task in tasks[:8]:
            due = f" (due {format_date_label(task['due_date'])})" if task.get("due_date") else ""
            lines.append(f"{'[x]' if task.get('completed') else '[ ]'} {task['title']}{due}")
        return ActionResult(
            message=banner("\U0001F4CA TASK LIST", "\n".join(lines)),
            actions=(reply_action("Add task", "add task", "primary"),),
        )

    async def restore(self, data: Mapping[str, Any], ctx: AssistantContext) -> ActionResult:
        task = await self._store.create(self._owner(ctx), dict(data))
        return ActionResult(
            message=banner(f"{EMOJI['success']} RESTORED", f"{task['title']} restored."),
            entity=self._ref(task, with_data=False),
        )
