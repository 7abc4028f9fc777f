from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Mapping
from zoneinfo import ZoneInfo

from chat_engine.application.handlers import field_parsers
from chat_engine.application.handlers.base import (
    Capability,
    EntityHandler,
    banner,
    match_by_name,
    reply_action,
    summary_card,
)
from chat_engine.application.ports.entity_store import EntityStorePort
from chat_engine.application.utils.formatting import EMOJI, format_details_block
from chat_engine.application.utils.message_rules import extract_name
from chat_engine.domain.entities.context import AssistantContext
from chat_engine.domain.entities.flow import ActionResult, EntityRef, FlowField, TargetMatch
from chat_engine.domain.entities.intent import ActionType, EntityType

ACADEMY_KEYWORDS = ("course", "courses", "academy", "lesson", "lessons", "enroll", "join")
CATALOG_BUCKET = "catalog"


class AcademyHandler(EntityHandler):
    """Courses live in a shared catalog; per-user drafts keep the planning details."""

    entity = EntityType.academy
    label = "Course"
    keywords = ACADEMY_KEYWORDS
    allow_guest = True
    capabilities = frozenset(
        {
            Capability.find_target,
            Capability.create,
            Capability.complete,
            Capability.view,
            Capability.restore,
        }
    )

    def __init__(
        self,
        store: EntityStorePort,
        drafts: EntityStorePort,
        timezone: ZoneInfo | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        super().__init__(store, timezone, clock)
        self._drafts = drafts

    def parse_input(self, text: str, ctx: AssistantContext) -> dict[str, Any]:
        title = extract_name(text, self.keywords)
        return {"title": title} if title else {}

    def get_create_fields(self, data: Mapping[str, Any], ctx: AssistantContext) -> list[FlowField]:
        return [
            FlowField(key="title", question="Course name?", parser=field_parsers.raw_text("title")),
            FlowField(
                key="description",
                question="Short description?",
                optional=True,
                parser=field_parsers.raw_text("description"),
            ),
            FlowField(key="lessons", question="How many lessons?", parser=field_parsers.whole_number("lessons")),
            FlowField(
                key="lesson_duration",
                question="How long per lesson (minutes)?",
                parser=field_parsers.whole_number("lesson_duration"),
            ),
            FlowField(
                key="frequency",
                question="How often will lessons happen? (e.g., weekly)",
                optional=True,
                parser=field_parsers.raw_text("frequency"),
            ),
        ]

    def build_summary(
        self,
        action: ActionType,
        data: Mapping[str, Any],
        target: TargetMatch | None = None,
        ctx: AssistantContext | None = None,
    ) -> str:
        name = data.get("title") or (target.name if target else None)
        details = [
            ("Title", name or "Untitled"),
            ("Lessons", str(data["lessons"]) if data.get("lessons") else "Not set"),
            ("Duration", f"{data['lesson_duration']} min" if data.get("lesson_duration") else "Not set"),
            ("Frequency", data.get("frequency") or "Weekly"),
        ]
        return summary_card(action, f"{(name or 'Course').upper()} COURSE", details, "Confirm this course?")

    async def find_target(self, name: str, ctx: AssistantContext) -> TargetMatch | None:
        courses = await self._store.list(CATALOG_BUCKET)
        match = match_by_name(courses, name, self.name_keys)
        if match is None:
            return None
        return TargetMatch(id=match.get("id"), name=match["title"], item=dict(match))

    async def create(self, data: Mapping[str, Any], ctx: AssistantContext) -> ActionResult:
        if not ctx.user_id:
            return self._sign_in("create courses")
        course = await self._store.create(CATALOG_BUCKET, {"title": data["title"], "enrolled": []})
        await self._drafts.create(
            self._owner(ctx),
            {
                "course_id": course["id"],
                "title": course["title"],
                "description": data.get("description"),
                "lessons": data.get("lessons"),
                "lesson_duration": data.get("lesson_duration"),
                "frequency": data.get("frequency"),
            },
        )
        details = [
            ("Lessons", str(data["lessons"]) if data.get("lessons") else "Not set"),
            ("Duration", f"{data['lesson_duration']} min" if data.get("lesson_duration") else "Not set"),
            ("Status", "Ready to start"),
        ]
        title = course["title"]
        return ActionResult(
            message=banner(f"{EMOJI['success']} CREATED!", format_details_block(title.upper(), details)),
            actions=(
                reply_action("Start course", f"start {title} course", "primary"),
                reply_action("View courses", "show courses"),
            ),
            entity=self._ref(course),
        )

    async def complete(self, target: TargetMatch, ctx: AssistantContext) -> ActionResult:
        if not ctx.user_id or not target.id:
            return self._sign_in("enroll")
        course = await self._store.find(CATALOG_BUCKET, target.id)
        enrolled = list((course or target.item).get("enrolled") or [])
        if ctx.user_id not in enrolled:
            enrolled.append(ctx.user_id)
            await self._store.update(CATALOG_BUCKET, target.id, {"enrolled": enrolled})
        return ActionResult(
            message=banner(f"{EMOJI['success']} ENROLLED!", f"You are enrolled in {target.name}."),
            actions=(reply_action("View progress", "my course progress"),),
            entity=EntityRef(type=self.entity, id=target.id, name=target.name),
        )

    async def view(
        self,
        target: TargetMatch | None,
        ctx: AssistantContext,
        data: Mapping[str, Any] | None = None,
    ) -> ActionResult:
        courses = await self._store.list(CATALOG_BUCKET)
        if not courses:
            return ActionResult(message=f"{EMOJI['info']} No courses found.")
        lines = []
        for course in courses[:6]:
            marker = " (enrolled)" if ctx.user_id and ctx.user_id in (course.get("enrolled") or []) else ""
            lines.append(f"- {course['title']}{marker}")
        return ActionResult(
            message=banner("\U0001F393 COURSES", "\n".join(lines)),
            actions=(reply_action("Create course", "create course", "primary"),),
        )

    async def restore(self, data: Mapping[str, Any], ctx: AssistantContext) -> ActionResult:
        restored = await self._drafts.create(self._owner(ctx), dict(data))
        return ActionResult(
            message=banner(f"{EMOJI['success']} RESTORED", f"{restored['title']} restored."),
            entity=EntityRef(type=self.entity, id=restored.get("course_id"), name=restored["title"]),
        )
