from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import date, datetime
from enum import Enum
from typing import Any, Callable, Iterable, Mapping
from zoneinfo import ZoneInfo

from chat_engine.application.exceptions import UnsupportedActionError
from chat_engine.application.ports.entity_store import EntityStorePort
from chat_engine.application.utils.formatting import DIVIDER, EMOJI, format_details_block, format_header
from chat_engine.application.utils.message_rules import normalize_text
from chat_engine.domain.entities.context import AssistantContext
from chat_engine.domain.entities.flow import ActionResult, EntityRef, FlowField, TargetMatch
from chat_engine.domain.entities.intent import ActionType, EntityType
from chat_engine.domain.entities.message import ChatAction

GUEST_USER_ID = "guest"

DEFAULT_CATEGORIES = ("Health", "Wellness", "Fitness", "Learning", "Personal Growth", "Other")
DEFAULT_FREQUENCIES = ("Daily", "Weekdays", "Weekends", "Weekly")
ALL_DAYS = [0, 1, 2, 3, 4, 5, 6]


class Capability(str, Enum):
    parse_update = "parse_update"
    edit_fields = "edit_fields"
    find_target = "find_target"
    create = "create"
    update = "update"
    remove = "remove"
    complete = "complete"
    view = "view"
    list = "list"
    snooze = "snooze"
    restore = "restore"


def reply_action(label: str, value: str, variant: str = "secondary") -> ChatAction:
    """Quick reply without an id; ReplyBuilder stamps one when the message is assembled."""
    return ChatAction(label=label, value=value, variant=variant)


def match_by_name(items: Iterable[Mapping[str, Any]], name: str, keys: tuple[str, ...] = ("title", "name")) -> Mapping[str, Any] | None:
    """Exact normalized match wins over substring containment."""
    target = normalize_text(name)
    if not target:
        return None
    candidates = list(items)

    def display(item: Mapping[str, Any]) -> str:
        for key in keys:
            value = item.get(key)
            if value:
                return normalize_text(str(value))
        return ""

    for item in candidates:
        if display(item) == target:
            return item
    for item in candidates:
        if target in display(item):
            return item
    return None


def banner(headline: str, body: str) -> str:
    return f"{headline}\n{DIVIDER}\n\n{body}"


def summary_card(action: ActionType | str, title: str, details: list[tuple[str, str]], prompt: str) -> str:
    verb = action.value if isinstance(action, ActionType) else action
    return f"{format_header(verb.upper())}\n\n{format_details_block(title, details)}\n\n{prompt}"


class EntityHandler(ABC):
    """
    Uniform protocol every entity kind implements.
    Optional verbs are declared through `capabilities`; the base versions raise
    UnsupportedActionError so callers must check `supports()` first.
    """

    entity: EntityType
    label: str
    keywords: tuple[str, ...] = ()
    capabilities: frozenset[Capability] = frozenset()
    requires_target: bool = True
    allow_guest: bool = False
    name_keys: tuple[str, ...] = ("title", "name")

    def __init__(
        self,
        store: EntityStorePort,
        timezone: ZoneInfo | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._timezone = timezone or ZoneInfo("UTC")
        self._clock = clock or (lambda: datetime.now(self._timezone))
        self._logger = logging.getLogger(type(self).__module__)

    def supports(self, capability: Capability) -> bool:
        return capability in self.capabilities

    @abstractmethod
    def parse_input(self, text: str, ctx: AssistantContext) -> dict[str, Any]:
        raise NotImplementedError

    @abstractmethod
    def get_create_fields(self, data: Mapping[str, Any], ctx: AssistantContext) -> list[FlowField]:
        raise NotImplementedError

    @abstractmethod
    def build_summary(
        self,
        action: ActionType,
        data: Mapping[str, Any],
        target: TargetMatch | None = None,
        ctx: AssistantContext | None = None,
    ) -> str:
        raise NotImplementedError

    def parse_update(self, text: str, ctx: AssistantContext) -> dict[str, Any]:
        raise UnsupportedActionError(f"{self.entity.value} does not parse updates")

    def get_edit_fields(self, target: TargetMatch, ctx: AssistantContext) -> list[FlowField]:
        raise UnsupportedActionError(f"{self.entity.value} has no edit fields")

    async def find_target(self, name: str, ctx: AssistantContext) -> TargetMatch | None:
        if not self.supports(Capability.find_target):
            raise UnsupportedActionError(f"{self.entity.value} cannot look up targets")
        owner = self._owner(ctx)
        if owner is None:
            return None
        records = await self._store.list(owner)
        match = match_by_name(records, name, self.name_keys)
        if match is None:
            return None
        return TargetMatch(id=match.get("id"), name=self._display_name(match), item=dict(match))

    async def create(self, data: Mapping[str, Any], ctx: AssistantContext) -> ActionResult:
        raise UnsupportedActionError(f"{self.entity.value} does not support create")

    async def update(self, target: TargetMatch | None, updates: Mapping[str, Any], ctx: AssistantContext) -> ActionResult:
        raise UnsupportedActionError(f"{self.entity.value} does not support update")

    async def remove(self, target: TargetMatch, ctx: AssistantContext) -> ActionResult:
        raise UnsupportedActionError(f"{self.entity.value} does not support remove")

    async def complete(self, target: TargetMatch, ctx: AssistantContext) -> ActionResult:
        raise UnsupportedActionError(f"{self.entity.value} does not support complete")

    async def view(
        self,
        target: TargetMatch | None,
        ctx: AssistantContext,
        data: Mapping[str, Any] | None = None,
    ) -> ActionResult:
        raise UnsupportedActionError(f"{self.entity.value} does not support view")

    async def list_entries(self, ctx: AssistantContext) -> ActionResult:
        raise UnsupportedActionError(f"{self.entity.value} does not support list")

    async def snooze(self, target: TargetMatch, data: Mapping[str, Any], ctx: AssistantContext) -> ActionResult:
        raise UnsupportedActionError(f"{self.entity.value} does not support snooze")

    async def restore(self, data: Mapping[str, Any], ctx: AssistantContext) -> ActionResult:
        raise UnsupportedActionError(f"{self.entity.value} does not support restore")

    def _owner(self, ctx: AssistantContext) -> str | None:
        if ctx.user_id:
            return ctx.user_id
        return GUEST_USER_ID if self.allow_guest else None

    def _display_name(self, record: Mapping[str, Any]) -> str:
        for key in self.name_keys:
            value = record.get(key)
            if value:
                return str(value)
        return self.label

    def _ref(self, record: Mapping[str, Any], name: str | None = None, with_data: bool = True) -> EntityRef:
        return EntityRef(
            type=self.entity,
            id=record.get("id"),
            name=name or self._display_name(record),
            data=dict(record) if with_data else None,
        )

    def _now(self) -> datetime:
        return self._clock()

    def _local_date(self) -> date:
        return self._clock().date()

    def _today(self) -> str:
        return self._local_date().isoformat()

    def _sign_in(self, what: str) -> ActionResult:
        return ActionResult(message=f"{EMOJI['warning']} Please sign in to {what}.")
