from __future__ import annotations

from typing import Any, Mapping

from chat_engine.application.handlers import field_parsers
from chat_engine.application.handlers.base import Capability, EntityHandler, banner, reply_action, summary_card
from chat_engine.application.utils.formatting import EMOJI, format_details_block
from chat_engine.application.utils.message_rules import normalize_text
from chat_engine.domain.entities.context import AssistantContext
from chat_engine.domain.entities.flow import ActionResult, EntityRef, FlowField, TargetMatch
from chat_engine.domain.entities.intent import ActionType, EntityType

PREFERENCES_ID = "preferences"
DEFAULT_PREFERENCES = {"theme": "auto", "language": "en-US", "notify_push": True}

_NOTIFY_TOPICS = ("notification", "reminder", "sound")


def _on_off(value: bool | None, unset: str) -> str:
    if value is None:
        return unset
    return "On" if value else "Off"


class SettingsHandler(EntityHandler):
    """Singleton preferences record; edits never need a target."""

    entity = EntityType.settings
    label = "Settings"
    keywords = ("settings", "preferences", "theme", "mode", "language")
    requires_target = False
    capabilities = frozenset({Capability.update, Capability.view})

    def parse_input(self, text: str, ctx: AssistantContext) -> dict[str, Any]:
        lowered = text.lower()
        words = set(normalize_text(text).split())
        data: dict[str, Any] = {}
        if "dark" in lowered:
            data["theme"] = "dark"
        elif "light" in lowered:
            data["theme"] = "light"
        if "spanish" in lowered:
            data["language"] = "es"
        elif "english" in lowered:
            data["language"] = "en-US"
        if any(topic in lowered for topic in _NOTIFY_TOPICS):
            if words & {"off", "disable"}:
                data["notify"] = False
            elif words & {"on", "enable"}:
                data["notify"] = True
        return data

    def get_create_fields(self, data: Mapping[str, Any], ctx: AssistantContext) -> list[FlowField]:
        return [
            FlowField(
                key="theme",
                question="Theme preference?",
                options=("Light", "Dark", "Auto"),
                parser=field_parsers.raw_text("theme", lower=True),
            )
        ]

    def build_summary(
        self,
        action: ActionType,
        data: Mapping[str, Any],
        target: TargetMatch | None = None,
        ctx: AssistantContext | None = None,
    ) -> str:
        details = [
            ("Theme", data.get("theme") or "No change"),
            ("Language", data.get("language") or "No change"),
            ("Notifications", _on_off(data.get("notify"), "No change")),
        ]
        return summary_card(action, "SETTINGS", details, "Apply these changes?")

    async def update(self, target: TargetMatch | None, updates: Mapping[str, Any], ctx: AssistantContext) -> ActionResult:
        if not ctx.user_id:
            return self._sign_in("update settings")
        changes: dict[str, Any] = {}
        if updates.get("theme"):
            changes["theme"] = updates["theme"]
        if updates.get("language"):
            changes["language"] = updates["language"]
        if updates.get("notify") is not None:
            changes["notify_push"] = updates["notify"]

        current = await self._store.find(ctx.user_id, PREFERENCES_ID)
        if current is None:
            record = await self._store.create(ctx.user_id, {"id": PREFERENCES_ID, **DEFAULT_PREFERENCES, **changes})
        else:
            record = await self._store.update(ctx.user_id, PREFERENCES_ID, changes) or {**current, **changes}
        self._logger.info("Preferences updated", extra={"user_id": ctx.user_id, "fields": sorted(changes)})

        details = [
            ("Theme", changes.get("theme") or "Unchanged"),
            ("Language", changes.get("language") or "Unchanged"),
            ("Notifications", _on_off(changes.get("notify_push"), "Unchanged")),
        ]
        return ActionResult(
            message=banner(f"{EMOJI['success']} UPDATED!", format_details_block("SETTINGS UPDATED", details)),
            actions=(reply_action("View settings", "show settings"),),
            entity=EntityRef(type=self.entity, id=PREFERENCES_ID, name=self.label, data=dict(record)),
        )

    async def view(
        self,
        target: TargetMatch | None,
        ctx: AssistantContext,
        data: Mapping[str, Any] | None = None,
    ) -> ActionResult:
        stored = await self._store.find(ctx.user_id, PREFERENCES_ID) if ctx.user_id else None
        prefs = {**DEFAULT_PREFERENCES, "timezone": self._timezone.key, **(stored or {})}
        details = [
            ("Theme", prefs["theme"]),
            ("Language", prefs["language"]),
            ("Notifications", _on_off(prefs["notify_push"], "Off")),
            ("Time Zone", prefs["timezone"]),
        ]
        return ActionResult(
            message=banner("⚙️ SETTINGS", format_details_block("CURRENT SETTINGS", details)),
            actions=(reply_action("Change settings", "change settings", "primary"),),
        )
