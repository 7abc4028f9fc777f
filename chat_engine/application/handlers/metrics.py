from __future__ import annotations

import logging
import re
from typing import Any, Mapping

from chat_engine.application.handlers import field_parsers
from chat_engine.application.handlers.base import (
    GUEST_USER_ID,
    Capability,
    EntityHandler,
    banner,
    reply_action,
    summary_card,
)
from chat_engine.application.ports.entity_store import EntityStorePort
from chat_engine.application.ports.metrics_exporter import MetricsExporterPort
from chat_engine.application.utils.formatting import EMOJI, format_details_block
from chat_engine.domain.entities.context import AssistantContext
from chat_engine.domain.entities.flow import ActionResult, FlowField, TargetMatch
from chat_engine.domain.entities.intent import ActionType, EntityType

_MEASURE_RE = re.compile(r"(\d+(?:\.\d+)?)\s*(minutes?|mins?|hours?|hrs?|steps?|km|miles?)", re.IGNORECASE)
_NUMBER_RE = re.compile(r"\d+(?:\.\d+)?")
_VERB_RE = re.compile(r"\b(?:track|log|metrics?)\b", re.IGNORECASE)

DEFAULT_UNIT = "units"


def _number(raw: str) -> int | float:
    value = float(raw)
    return int(value) if value.is_integer() else value


def parse_measurement(text: str) -> dict[str, Any]:
    """Value, unit and the remaining metric name, e.g. "track 30 minutes meditation"."""
    match = _MEASURE_RE.search(text)
    parsed: dict[str, Any] = {}
    remainder = text
    if match:
        parsed["value"] = _number(match.group(1))
        parsed["unit"] = match.group(2).lower()
        remainder = text.replace(match.group(0), "", 1)
    metric = " ".join(_VERB_RE.sub(" ", remainder).split())
    if metric:
        parsed["metric"] = metric
    return parsed


def value_field(text: str, data: Mapping[str, Any]) -> dict[str, Any]:
    parsed = parse_measurement(text)
    if "value" in parsed:
        return {"value": parsed["value"], "unit": parsed["unit"]}
    number = _NUMBER_RE.search(text)
    if number is None:
        return {}
    return {"value": _number(number.group(0)), "unit": DEFAULT_UNIT}


class MetricsHandler(EntityHandler):
    entity = EntityType.metrics
    label = "Metrics"
    keywords = ("metrics", "metric", "stats", "track", "log", "tracking")
    allow_guest = True
    name_keys = ("metric",)
    capabilities = frozenset({Capability.create, Capability.view, Capability.list})

    def parse_input(self, text: str, ctx: AssistantContext) -> dict[str, Any]:
        return parse_measurement(text)

    def get_create_fields(self, data: Mapping[str, Any], ctx: AssistantContext) -> list[FlowField]:
        return [
            FlowField(key="metric", question="Which metric should I track?", parser=field_parsers.raw_text("metric")),
            FlowField(key="value", question="What value should I log?", parser=value_field),
        ]

    def build_summary(
        self,
        action: ActionType,
        data: Mapping[str, Any],
        target: TargetMatch | None = None,
        ctx: AssistantContext | None = None,
    ) -> str:
        value = data.get("value")
        details = [
            ("Metric", data.get("metric") or "Metric"),
            ("Value", f"{value} {data.get('unit') or DEFAULT_UNIT}" if value else "Not set"),
        ]
        return summary_card(action, "METRIC LOG", details, "Log this metric?")

    async def create(self, data: Mapping[str, Any], ctx: AssistantContext) -> ActionResult:
        entry = await self._store.create(
            self._owner(ctx),
            {
                "metric": data.get("metric"),
                "value": data.get("value"),
                "unit": data.get("unit") or DEFAULT_UNIT,
                "date": self._today(),
            },
        )
        details = [
            ("Metric", entry["metric"]),
            ("Value", f"{entry['value']} {entry['unit']}"),
            ("Date", entry["date"]),
        ]
        return ActionResult(
            message=banner(f"{EMOJI['success']} LOGGED!", format_details_block("METRIC SAVED", details)),
            actions=(
                reply_action("View stats", "show my stats"),
                reply_action("Export data", "export my data"),
            ),
            entity=self._ref(entry),
        )

    async def view(
        self,
        target: TargetMatch | None,
        ctx: AssistantContext,
        data: Mapping[str, Any] | None = None,
    ) -> ActionResult:
        entries = await self._store.list(self._owner(ctx))
        if not entries:
            return ActionResult(message=f"{EMOJI['info']} No metrics logged yet.")
        lines = [f"- {entry['metric']}: {entry['value']} {entry['unit']}" for entry in entries[:8]]
        return ActionResult(
            message=banner("\U0001F4CA METRICS", "\n".join(lines)),
            actions=(reply_action("Log metric", "track metric", "primary"),),
        )

    async def list_entries(self, ctx: AssistantContext) -> ActionResult:
        return await self.view(None, ctx)


class MetricsExporter:
    """Hands the caller's logged metrics to the export collaborator."""

    def __init__(self, store: EntityStorePort, port: MetricsExporterPort) -> None:
        self._store = store
        self._port = port
        self._logger = logging.getLogger(__name__)

    async def export_metrics(self, ctx: AssistantContext) -> ActionResult:
        owner = ctx.user_id or GUEST_USER_ID
        records = await self._store.list(owner)
        location = await self._port.export(owner, records)
        self._logger.info(
            "Metrics export requested",
            extra={"user_id": owner, "records": len(records)},
        )
        message = f"{EMOJI['success']} Export started. Your data download should begin shortly."
        if location:
            message = f"{message}\n{location}"
        return ActionResult(message=message)
