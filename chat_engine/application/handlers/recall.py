from __future__ import annotations

from typing import Any, Mapping

from chat_engine.application.handlers import field_parsers
from chat_engine.application.handlers.base import Capability, EntityHandler, banner, reply_action, summary_card
from chat_engine.application.utils.formatting import EMOJI, format_details_block
from chat_engine.domain.entities.context import AssistantContext
from chat_engine.domain.entities.flow import ActionResult, DeletedEntity, FlowField, TargetMatch
from chat_engine.domain.entities.intent import ActionType, EntityType


def preview(content: str | None) -> str:
    return (content or "")[:24]


class RecallHandler(EntityHandler):
    entity = EntityType.recall
    label = "Memory"
    keywords = ("recall", "remember", "memory", "memories", "journal")
    allow_guest = True
    name_keys = ("title", "content")
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
        return {"content": text.strip()}

    def get_create_fields(self, data: Mapping[str, Any], ctx: AssistantContext) -> list[FlowField]:
        return [
            FlowField(key="content", question="What should I remember?", parser=field_parsers.raw_text("content")),
            FlowField(
                key="category",
                question="Optional category?",
                optional=True,
                parser=field_parsers.raw_text("category"),
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
        content = data.get("content") or item.get("content") or ""
        details = [
            ("Memory", content[:120]),
            ("Category", data.get("category") or item.get("category") or "General"),
        ]
        return summary_card(action, "MEMORY", details, "Save this memory?")

    async def find_target(self, name: str, ctx: AssistantContext) -> TargetMatch | None:
        match = await super().find_target(name, ctx)
        if match is None:
            return None
        return TargetMatch(id=match.id, name=match.item.get("title") or preview(match.item.get("content")), item=match.item)

    async def create(self, data: Mapping[str, Any], ctx: AssistantContext) -> ActionResult:
        memory = await self._store.create(
            self._owner(ctx),
            {"content": data.get("content"), "category": data.get("category") or "General"},
        )
        details = [("Saved", "Yes"), ("Category", memory["category"])]
        return ActionResult(
            message=banner(f"{EMOJI['success']} REMEMBERED!", format_details_block("MEMORY SAVED", details)),
            actions=(reply_action("View memories", "show my journal"),),
            entity=self._ref(memory, name=preview(memory.get("content"))),
        )

    async def remove(self, target: TargetMatch, ctx: AssistantContext) -> ActionResult:
        if not target.id:
            return ActionResult(message=f"{EMOJI['warning']} Memory not found.")
        removed = await self._store.remove(self._owner(ctx), target.id)
        return ActionResult(
            message=banner(f"{EMOJI['success']} DELETED!", "Memory removed."),
            actions=(reply_action("Undo delete", "undo delete"),),
            deleted=DeletedEntity(type=self.entity, data=dict(removed or target.item)),
        )

    async def view(
        self,
        target: TargetMatch | None,
        ctx: AssistantContext,
        data: Mapping[str, Any] | None = None,
    ) -> ActionResult:
        entries = await self._store.list(self._owner(ctx))
        if not entries:
            return ActionResult(message=f"{EMOJI['info']} No memories yet.")
        lines = [f"- {entry['content']}" for entry in entries[:6]]
        return ActionResult(
            message=banner("\U0001F4CA JOURNAL", "\n".join(lines)),
            actions=(reply_action("Add memory", "add journal entry", "primary"),),
        )

    async def restore(self, data: Mapping[str, Any], ctx: AssistantContext) -> ActionResult:
        memory = await self._store.create(self._owner(ctx), dict(data))
        return ActionResult(
            message=banner(f"{EMOJI['success']} RESTORED", "Memory restored."),
            entity=self._ref(memory, name=preview(memory.get("content")), with_data=False),
        )
