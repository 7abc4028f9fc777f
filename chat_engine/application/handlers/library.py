from __future__ import annotations

from typing import Any, Mapping

from chat_engine.application.handlers import field_parsers
from chat_engine.application.handlers.base import Capability, EntityHandler, banner, reply_action, summary_card
from chat_engine.application.utils.formatting import EMOJI, format_details_block
from chat_engine.application.utils.message_rules import extract_name
from chat_engine.domain.entities.context import AssistantContext
from chat_engine.domain.entities.flow import ActionResult, DeletedEntity, FlowField, TargetMatch
from chat_engine.domain.entities.intent import ActionType, EntityType

LIBRARY_KEYWORDS = ("library", "resource", "resources", "bookmark", "bookmarks", "item")


class LibraryHandler(EntityHandler):
    entity = EntityType.library
    label = "Library"
    keywords = LIBRARY_KEYWORDS
    capabilities = frozenset(
        {
            Capability.find_target,
            Capability.create,
            Capability.remove,
            Capability.view,
            Capability.restore,
        }
    )

    def parse_input(self, text: str, ctx: AssistantContext) -> dict[str, Any]:
        title = extract_name(text, self.keywords)
        return {"title": title} if title else {}

    def get_create_fields(self, data: Mapping[str, Any], ctx: AssistantContext) -> list[FlowField]:
        return [
            FlowField(key="title", question="What resource should I save?", parser=field_parsers.raw_text("title")),
            FlowField(
                key="url",
                question="Any link to attach? (optional)",
                optional=True,
                parser=field_parsers.raw_text("url"),
            ),
            FlowField(key="category", question="Category?", optional=True, parser=field_parsers.raw_text("category")),
        ]

    def build_summary(
        self,
        action: ActionType,
        data: Mapping[str, Any],
        target: TargetMatch | None = None,
        ctx: AssistantContext | None = None,
    ) -> str:
        item = target.item if target else {}
        details = [
            ("Title", data.get("title") or (target.name if target else None) or "Resource"),
            ("Category", data.get("category") or item.get("category") or "General"),
            ("Link", data.get("url") or item.get("url") or "None"),
        ]
        return summary_card(action, "LIBRARY ITEM", details, "Save this resource?")

    async def create(self, data: Mapping[str, Any], ctx: AssistantContext) -> ActionResult:
        if not ctx.user_id:
            return self._sign_in("save resources")
        item = await self._store.create(
            ctx.user_id,
            {"title": data["title"], "url": data.get("url"), "category": data.get("category") or "general"},
        )
        details = [
            ("Category", item["category"]),
            ("Link", item.get("url") or "None"),
        ]
        return ActionResult(
            message=banner(f"{EMOJI['success']} SAVED!", format_details_block(item["title"].upper(), details)),
            actions=(reply_action("View library", "show library"),),
            entity=self._ref(item),
        )

    async def remove(self, target: TargetMatch, ctx: AssistantContext) -> ActionResult:
        if not target.id or not ctx.user_id:
            return ActionResult(message=f"{EMOJI['warning']} Item not found.")
        removed = await self._store.remove(ctx.user_id, target.id)
        return ActionResult(
            message=banner(f"{EMOJI['success']} DELETED!", f"{target.name} removed from library."),
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
            return self._sign_in("view your library")
        items = await self._store.list(ctx.user_id)
        if not items:
            return ActionResult(message=f"{EMOJI['info']} No library items yet.")
        lines = []
        for item in items[:8]:
            link = f" ({item['url']})" if item.get("url") else ""
            lines.append(f"- {item['title']}{link}")
        return ActionResult(
            message=banner("\U0001F4D6 LIBRARY", "\n".join(lines)),
            actions=(reply_action("Save resource", "save to library", "primary"),),
        )

    async def restore(self, data: Mapping[str, Any], ctx: AssistantContext) -> ActionResult:
        if not ctx.user_id:
            return self._sign_in("restore")
        item = await self._store.create(ctx.user_id, dict(data))
        return ActionResult(
            message=banner(f"{EMOJI['success']} RESTORED", f"{item['title']} restored."),
            entity=self._ref(item, with_data=False),
        )
