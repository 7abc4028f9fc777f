from __future__ import annotations

from typing import Any, Mapping

from chat_engine.application.handlers import field_parsers
from chat_engine.application.handlers.base import Capability, EntityHandler, banner, reply_action, summary_card
from chat_engine.application.utils.formatting import EMOJI, format_details_block
from chat_engine.application.utils.message_rules import extract_name
from chat_engine.domain.entities.context import AssistantContext
from chat_engine.domain.entities.flow import ActionResult, DeletedEntity, FlowField, TargetMatch
from chat_engine.domain.entities.intent import ActionType, EntityType

NETWORK_KEYWORDS = ("network", "friend", "friends", "community", "connection", "contact")
DEFAULT_RELATIONSHIP = "Friend"


class NetworkHandler(EntityHandler):
    entity = EntityType.network
    label = "Network"
    keywords = NETWORK_KEYWORDS
    allow_guest = True
    name_keys = ("name",)
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
        name = extract_name(text, self.keywords)
        return {"name": name} if name else {}

    def get_create_fields(self, data: Mapping[str, Any], ctx: AssistantContext) -> list[FlowField]:
        return [
            FlowField(key="name", question="Who do you want to add?", parser=field_parsers.raw_text("name")),
            FlowField(
                key="relationship",
                question="How do you know them?",
                optional=True,
                parser=field_parsers.raw_text("relationship"),
            ),
            FlowField(
                key="shared_habits",
                question="Any shared habits or goals? (optional)",
                optional=True,
                parser=field_parsers.raw_text("shared_habits"),
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
        details = [
            ("Name", data.get("name") or (target.name if target else None) or "Connection"),
            ("Relationship", data.get("relationship") or item.get("relationship") or DEFAULT_RELATIONSHIP),
            ("Shared", data.get("shared_habits") or item.get("shared_habits") or "None"),
        ]
        return summary_card(action, "NETWORK CONNECTION", details, "Add this connection?")

    async def create(self, data: Mapping[str, Any], ctx: AssistantContext) -> ActionResult:
        contact = await self._store.create(
            self._owner(ctx),
            {
                "name": data["name"],
                "relationship": data.get("relationship") or DEFAULT_RELATIONSHIP,
                "shared_habits": data.get("shared_habits") or "",
            },
        )
        details = [
            ("Relationship", contact["relationship"]),
            ("Shared", contact["shared_habits"] or "None"),
        ]
        return ActionResult(
            message=banner(f"{EMOJI['success']} CONNECTED!", format_details_block(contact["name"].upper(), details)),
            actions=(reply_action("View network", "show network"),),
            entity=self._ref(contact),
        )

    async def remove(self, target: TargetMatch, ctx: AssistantContext) -> ActionResult:
        if not target.id:
            return ActionResult(message=f"{EMOJI['warning']} Connection not found.")
        removed = await self._store.remove(self._owner(ctx), target.id)
        return ActionResult(
            message=banner(f"{EMOJI['success']} DELETED!", f"{target.name} removed from network."),
            actions=(reply_action("Undo delete", "undo delete"),),
            deleted=DeletedEntity(type=self.entity, data=dict(removed or target.item)),
        )

    async def view(
        self,
        target: TargetMatch | None,
        ctx: AssistantContext,
        data: Mapping[str, Any] | None = None,
    ) -> ActionResult:
        contacts = await self._store.list(self._owner(ctx))
        if not contacts:
            return ActionResult(message=f"{EMOJI['info']} No connections yet.")
        lines = [f"- {contact['name']} ({contact['relationship']})" for contact in contacts[:8]]
        return ActionResult(
            message=banner("\U0001F465 NETWORK", "\n".join(lines)),
            actions=(reply_action("Add friend", "add friend", "primary"),),
        )

    async def restore(self, data: Mapping[str, Any], ctx: AssistantContext) -> ActionResult:
        contact = await self._store.create(self._owner(ctx), dict(data))
        return ActionResult(
            message=banner(f"{EMOJI['success']} RESTORED", f"{contact['name']} restored."),
            entity=self._ref(contact, with_data=False),
        )
