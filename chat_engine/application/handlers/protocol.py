from __future__ import annotations

import re
from typing import Any, Mapping

from chat_engine.application.handlers import field_parsers
from chat_engine.application.handlers.base import Capability, EntityHandler, banner, reply_action, summary_card
from chat_engine.application.utils.formatting import EMOJI, format_details_block
from chat_engine.application.utils.message_rules import extract_name
from chat_engine.domain.entities.context import AssistantContext
from chat_engine.domain.entities.flow import ActionResult, DeletedEntity, EntityRef, FlowField, TargetMatch
from chat_engine.domain.entities.intent import ActionType, EntityType

PROTOCOL_KEYWORDS = ("protocol", "protocols", "routine", "steps")

_RENAME_RE = re.compile(r"to\s+(.+)", re.IGNORECASE)


def parse_steps(text: str) -> list[dict[str, Any]] | None:
    """Comma separated step labels; fewer than two parts is not a step list."""
    parts = [part.strip() for part in text.split(",") if part.strip()]
    if len(parts) < 2:
        return None
    return [{"label": part, "minutes": None} for part in parts]


def steps_field(text: str, data: Mapping[str, Any]) -> dict[str, Any]:
    return {"steps": parse_steps(text) or [{"label": text.strip(), "minutes": None}]}


def durations_field(text: str, data: Mapping[str, Any]) -> dict[str, Any]:
    """Pair the n-th number in the reply with the n-th collected step."""
    numbers = [int(value) for value in re.findall(r"\d+", text)]
    steps = data.get("steps")
    if not numbers or not steps:
        return {}
    paired = []
    for index, step in enumerate(steps):
        minutes = numbers[index] if index < len(numbers) and numbers[index] else step.get("minutes")
        paired.append({**step, "minutes": minutes})
    return {"steps": paired}


def describe_steps(steps: list[Mapping[str, Any]], separator: str) -> str:
    lines = []
    for index, step in enumerate(steps, start=1):
        minutes = step.get("minutes")
        suffix = f" ({minutes}m)" if minutes else ""
        lines.append(f"{index}. {step['label']}{suffix}")
    return separator.join(lines)


class ProtocolHandler(EntityHandler):
    entity = EntityType.protocol
    label = "Protocol"
    keywords = PROTOCOL_KEYWORDS
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
        data: dict[str, Any] = {}
        steps = parse_steps(text)
        if steps:
            data["steps"] = steps
            # Only the text before the first comma can name the protocol.
            text = text.split(",", 1)[0]
        title = extract_name(text, self.keywords)
        if title:
            data["title"] = title
        return data

    def parse_update(self, text: str, ctx: AssistantContext) -> dict[str, Any]:
        updates: dict[str, Any] = {}
        if "rename" in text.lower():
            match = _RENAME_RE.search(text)
            if match:
                updates["title"] = match.group(1).strip()
        steps = parse_steps(text)
        if steps:
            updates["steps"] = steps
        return updates

    def get_create_fields(self, data: Mapping[str, Any], ctx: AssistantContext) -> list[FlowField]:
        return [
            FlowField(key="title", question="What should I name this protocol?", parser=field_parsers.raw_text("title")),
            FlowField(key="steps", question="List the steps (comma separated).", parser=steps_field),
            FlowField(
                key="durations",
                question="Any durations per step? (e.g., 10m, 15m, 5m)",
                optional=True,
                parser=durations_field,
            ),
        ]

    def get_edit_fields(self, target: TargetMatch, ctx: AssistantContext) -> list[FlowField]:
        return [
            FlowField(key="title", question="New protocol name?", parser=field_parsers.raw_text("title")),
            FlowField(key="steps", question="Update steps (comma separated)", parser=steps_field),
        ]

    def build_summary(
        self,
        action: ActionType,
        data: Mapping[str, Any],
        target: TargetMatch | None = None,
        ctx: AssistantContext | None = None,
    ) -> str:
        name = data.get("title") or (target.name if target else None)
        steps = data.get("steps") or (target.item.get("steps") if target else None) or []
        details = [
            ("Name", name or "Untitled"),
            ("Steps", describe_steps(steps, " | ") or "Not set"),
        ]
        return summary_card(action, f"{(name or 'Protocol').upper()} PROTOCOL", details, "Confirm this protocol?")

    async def create(self, data: Mapping[str, Any], ctx: AssistantContext) -> ActionResult:
        if not ctx.user_id:
            return self._sign_in("create protocols")
        steps = list(data.get("steps") or [])
        total = sum(step.get("minutes") or 0 for step in steps)
        protocol = await self._store.create(
            ctx.user_id,
            {"title": data["title"], "steps": steps, "total_minutes": total or None},
        )
        details = [
            ("Steps", str(len(steps))),
            ("Total", f"{total} min" if total else "Not set"),
        ]
        title = protocol["title"]
        return ActionResult(
            message=banner(f"{EMOJI['success']} CREATED!", format_details_block(title.upper(), details)),
            actions=(
                reply_action("View protocol", f"show protocol {title}"),
                reply_action("Edit", f"edit protocol {title}"),
            ),
            entity=self._ref(protocol),
        )

    async def update(self, target: TargetMatch | None, updates: Mapping[str, Any], ctx: AssistantContext) -> ActionResult:
        if target is None or not target.id or not ctx.user_id:
            return ActionResult(message=f"{EMOJI['warning']} Protocol not found.")
        payload = dict(updates)
        if "steps" in payload:
            payload["total_minutes"] = sum(step.get("minutes") or 0 for step in payload["steps"]) or None
        await self._store.update(ctx.user_id, target.id, payload)
        name = updates.get("title") or target.name
        return ActionResult(
            message=banner(f"{EMOJI['success']} UPDATED!", f"{name} updated."),
            actions=(reply_action("View", f"show protocol {name}"),),
            entity=EntityRef(type=self.entity, id=target.id, name=name),
        )

    async def remove(self, target: TargetMatch, ctx: AssistantContext) -> ActionResult:
        if not target.id or not ctx.user_id:
            return ActionResult(message=f"{EMOJI['warning']} Protocol not found.")
        removed = await self._store.remove(ctx.user_id, target.id)
        return ActionResult(
            message=banner(f"{EMOJI['success']} DELETED!", f"{target.name} protocol deleted."),
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
            return self._sign_in("view protocols")
        if target is not None and target.id:
            steps = describe_steps(target.item.get("steps") or [], "\n")
            return ActionResult(
                message=banner("\U0001F4CA PROTOCOL DETAILS", f"{target.name}\n{steps}"),
                actions=(reply_action("Edit", f"edit protocol {target.name}"),),
                entity=EntityRef(type=self.entity, id=target.id, name=target.name),
            )
        protocols = await self._store.list(ctx.user_id)
        if not protocols:
            return ActionResult(message=f"{EMOJI['info']} No protocols yet.")
        lines = [f"- {protocol['title']}" for protocol in protocols[:6]]
        return ActionResult(
            message=banner("\U0001F4CA PROTOCOLS", "\n".join(lines)),
            actions=(reply_action("Create protocol", "create protocol", "primary"),),
        )

    async def restore(self, data: Mapping[str, Any], ctx: AssistantContext) -> ActionResult:
        if not ctx.user_id:
            return self._sign_in("restore")
        protocol = await self._store.create(ctx.user_id, {**data, "steps": data.get("steps") or []})
        return ActionResult(
            message=banner(f"{EMOJI['success']} RESTORED", f"{protocol['title']} restored."),
            entity=self._ref(protocol, with_data=False),
        )
