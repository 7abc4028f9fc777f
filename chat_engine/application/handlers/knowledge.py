from __future__ import annotations

from typing import Any, Mapping

from chat_engine.application.handlers import field_parsers
from chat_engine.application.handlers.base import Capability, EntityHandler, banner, reply_action, summary_card
from chat_engine.application.utils.formatting import EMOJI, format_details_block
from chat_engine.application.utils.message_rules import extract_name
from chat_engine.domain.entities.context import AssistantContext
from chat_engine.domain.entities.flow import ActionResult, DeletedEntity, EntityRef, FlowField, TargetMatch
from chat_engine.domain.entities.intent import ActionType, EntityType

KNOWLEDGE_KEYWORDS = ("note", "notes", "knowledge", "fact", "facts", "guide")
NOTE_CATEGORIES = ("General", "Learning", "Personal", "Work")
DEFAULT_COLOR = "#f5f5f0"


class KnowledgeHandler(EntityHandler):
    entity = EntityType.knowledge
    label = "Note"
    keywords = KNOWLEDGE_KEYWORDS
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
        data: dict[str, Any] = {"content": text.strip()}
        title = extract_name(text, self.keywords)
        if title:
            data["title"] = title
        return data

    def parse_update(self, text: str, ctx: AssistantContext) -> dict[str, Any]:
        updates: dict[str, Any] = {}
        lowered = text.lower()
        if "category" in lowered:
            category = lowered.rsplit("category", 1)[-1].strip()
            if category:
                updates["category"] = category
        return updates

    def get_create_fields(self, data: Mapping[str, Any], ctx: AssistantContext) -> list[FlowField]:
        return [
            FlowField(
                key="content",
                question="What should I save in your knowledge base?",
                parser=field_parsers.raw_text("content"),
            ),
            FlowField(
                key="category",
                question="Which category fits best?",
                options=NOTE_CATEGORIES,
                parser=field_parsers.raw_text("category", lower=True),
            ),
            FlowField(
                key="title",
                question="Give it a short title (optional)",
                optional=True,
                parser=field_parsers.raw_text("title"),
            ),
        ]

    def get_edit_fields(self, target: TargetMatch, ctx: AssistantContext) -> list[FlowField]:
        return [
            FlowField(key="title", question="New title?", parser=field_parsers.raw_text("title")),
            FlowField(key="content", question="Updated content?", parser=field_parsers.raw_text("content")),
            FlowField(key="category", question="Update category?", parser=field_parsers.raw_text("category", lower=True)),
        ]

    def build_summary(
        self,
        action: ActionType,
        data: Mapping[str, Any],
        target: TargetMatch | None = None,
        ctx: AssistantContext | None = None,
    ) -> str:
        item = target.item if target else {}
        content = data.get("content") or item.get("content") or ""
        details = [
            ("Title", data.get("title") or (target.name if target else None) or "Knowledge Note"),
            ("Category", (data.get("category") or item.get("category") or "general").upper()),
            ("Content", content[:120] or "..."),
        ]
        return summary_card(action, "KNOWLEDGE ENTRY", details, "Save this note?")

    async def create(self, data: Mapping[str, Any], ctx: AssistantContext) -> ActionResult:
        if not ctx.user_id:
            return self._sign_in("save notes")
        content = data.get("content") or ""
        note = await self._store.create(
            ctx.user_id,
            {
                "title": data.get("title") or f"Note: {content[:20]}",
                "content": content,
                "category": data.get("category") or "general",
                "color": DEFAULT_COLOR,
                "is_pinned": False,
            },
        )
        details = [
            ("Category", note["category"].upper()),
            ("Status", "Saved"),
        ]
        return ActionResult(
            message=banner(f"{EMOJI['success']} SAVED!", format_details_block(note["title"].upper(), details)),
            actions=(reply_action("View knowledge base", "show knowledge base"),),
            entity=self._ref(note),
        )

    async def update(self, target: TargetMatch | None, updates: Mapping[str, Any], ctx: AssistantContext) -> ActionResult:
        if target is None or not target.id or not ctx.user_id:
            return ActionResult(message=f"{EMOJI['warning']} Note not found.")
        await self._store.update(
            ctx.user_id,
            target.id,
            {
                "title": updates.get("title") or target.name,
                "content": updates.get("content") or target.item.get("content"),
                "category": updates.get("category") or target.item.get("category"),
            },
        )
        return ActionResult(
            message=banner(f"{EMOJI['success']} UPDATED!", f"{target.name} updated."),
            actions=(reply_action("View notes", "show knowledge base"),),
            entity=EntityRef(type=self.entity, id=target.id, name=updates.get("title") or target.name),
        )

    async def remove(self, target: TargetMatch, ctx: AssistantContext) -> ActionResult:
        if not target.id or not ctx.user_id:
            return ActionResult(message=f"{EMOJI['warning']} Note not found.")
        removed = await self._store.remove(ctx.user_id, target.id)
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
        if not ctx.user_id:
            return self._sign_in("view notes")
        if target is not None and target.id:
            return ActionResult(
                message=banner("\U0001F4CA NOTE", f"{target.name}\n{target.item.get('content', '')}"),
                actions=(reply_action("Edit note", f"edit note {target.name}"),),
                entity=EntityRef(type=self.entity, id=target.id, name=target.name),
            )
        notes = await self._store.list(ctx.user_id)
        listing = "\n".join(f"- {note['title']}" for note in notes[:6])
        return ActionResult(
            message=banner("\U0001F4CA KNOWLEDGE BASE", listing or "No notes yet."),
            actions=(reply_action("Add note", "add note", "primary"),),
        )

    async def restore(self, data: Mapping[str, Any], ctx: AssistantContext) -> ActionResult:
        if not ctx.user_id:
            return self._sign_in("restore")
        note = await self._store.create(
            ctx.user_id,
            {
                **data,
                "category": data.get("category") or "general",
                "color": data.get("color") or DEFAULT_COLOR,
                "is_pinned": data.get("is_pinned") or False,
            },
        )
        return ActionResult(
            message=banner(f"{EMOJI['success']} RESTORED", f"{note['title']} restored."),
            entity=self._ref(note, with_data=False),
        )
