from __future__ import annotations

from typing import Any, Mapping

from chat_engine.application.handlers.base import Capability, EntityHandler, banner, reply_action
from chat_engine.application.utils.formatting import EMOJI
from chat_engine.domain.entities.context import AssistantContext
from chat_engine.domain.entities.flow import ActionResult, FlowField, TargetMatch
from chat_engine.domain.entities.intent import ActionType, EntityType

LOCKED_PREVIEW = 5


class AchievementHandler(EntityHandler):
    """Achievements unlock on their own; chat can only show them."""

    entity = EntityType.achievement
    label = "Achievements"
    keywords = ("achievement", "achievements", "badge", "badges", "trophy", "milestone")
    name_keys = ("name",)
    capabilities = frozenset({Capability.view})

    def parse_input(self, text: str, ctx: AssistantContext) -> dict[str, Any]:
        return {"query": text.strip()}

    def get_create_fields(self, data: Mapping[str, Any], ctx: AssistantContext) -> list[FlowField]:
        return []

    def build_summary(
        self,
        action: ActionType,
        data: Mapping[str, Any],
        target: TargetMatch | None = None,
        ctx: AssistantContext | None = None,
    ) -> str:
        return f"{EMOJI['info']} Achievements are auto-unlocked."

    async def view(
        self,
        target: TargetMatch | None,
        ctx: AssistantContext,
        data: Mapping[str, Any] | None = None,
    ) -> ActionResult:
        if not ctx.user_id:
            return self._sign_in("view achievements")
        achievements = await self._store.list(ctx.user_id)
        unlocked = [item for item in achievements if item.get("unlocked_at")]
        locked = [item for item in achievements if not item.get("unlocked_at")][:LOCKED_PREVIEW]

        unlocked_list = "\n".join(f"- {item['name']}" for item in unlocked) or "No achievements unlocked yet."
        locked_list = "\n".join(f"- {item['name']}" for item in locked) or "All achievements unlocked!"
        return ActionResult(
            message=banner(
                f"{EMOJI['trophy']} ACHIEVEMENTS",
                f"Unlocked:\n{unlocked_list}\n\nIn Progress:\n{locked_list}",
            ),
            actions=(reply_action("Back", "show dashboard"),),
        )
