from __future__ import annotations

import re

from chat_engine.domain.entities.intent import ActionType, EntityType

# Table order is significant: the first action with a matching keyword wins.
ACTION_KEYWORDS: dict[ActionType, tuple[str, ...]] = {
    ActionType.create: (
        "create",
        "add",
        "new",
        "start",
        "make",
        "set up",
        "setup",
        "build",
        "log",
        "remind",
        "schedule",
        "plan",
        "track",
    ),
    ActionType.edit: ("edit", "change", "update", "rename", "adjust", "modify"),
    ActionType.complete: ("complete", "done", "finish", "mark", "check", "tick"),
    ActionType.delete: ("delete", "remove", "clear", "erase", "cancel"),
    ActionType.view: ("view", "show", "see", "list", "display", "stats", "details"),
    ActionType.snooze: ("snooze",),
    ActionType.export: ("export", "download"),
    ActionType.share: ("share",),
    ActionType.enroll: ("enroll", "start course", "join"),
    ActionType.progress: ("progress", "status"),
    ActionType.update: ("update",),
}

ENTITY_KEYWORDS: dict[EntityType, tuple[str, ...]] = {
    EntityType.habit: ("habit", "ritual", "routine"),
    EntityType.reminder: ("reminder", "alert", "notify", "notification", "remind"),
    EntityType.task: ("task", "todo", "to-do"),
    EntityType.protocol: ("protocol", "steps", "routine protocol"),
    EntityType.knowledge: ("knowledge", "note", "notes", "fact", "guide"),
    EntityType.schedule: ("schedule", "calendar", "event", "meeting"),
    EntityType.academy: ("academy", "course", "lesson", "learning"),
    EntityType.recall: ("recall", "remember", "memory", "journal"),
    EntityType.metrics: (
        "metrics",
        "stats",
        "tracking",
        "track",
        "log",
        "analytics",
        "data",
        "report",
        "streak",
    ),
    EntityType.library: ("library", "resource", "resources", "bookmark"),
    EntityType.network: ("network", "friend", "community", "share progress"),
    EntityType.achievement: ("achievement", "badge", "trophy", "milestone"),
    EntityType.settings: (
        "settings",
        "preferences",
        "theme",
        "dark mode",
        "light mode",
        "language",
        "notification settings",
    ),
}

STOP_WORDS = frozenset(
    {
        "a",
        "an",
        "the",
        "my",
        "today",
        "todays",
        "tomorrow",
        "yesterday",
        "all",
        "for",
        "with",
        "to",
        "at",
        "in",
        "on",
        "please",
        "me",
        "now",
        "this",
        "that",
        "it",
        "is",
        "are",
        "be",
        "from",
        "of",
        "and",
    }
)

ACTION_WORDS = frozenset(word for words in ACTION_KEYWORDS.values() for word in words)

YES_WORDS = ("yes", "y", "sure", "ok", "okay", "confirm", "do it")
NO_WORDS = ("no", "n", "cancel", "stop", "nope")

_QUOTED_RE = re.compile(r"\"([^\"]+)\"|'([^']+)'")
_CLOCK_RE = re.compile(r"\b\d{1,2}(?::\d{2})?\s*(?:am|pm)\b|\b\d{1,2}:\d{2}\b")


def normalize_text(text: str) -> str:
    normalized = text.lower()
    normalized = re.sub(r"[^a-z0-9:\s]", " ", normalized)
    normalized = re.sub(r"\s+", " ", normalized).strip()
    return normalized


def capitalize_words(value: str) -> str:
    return " ".join(word[:1].upper() + word[1:] for word in value.split(" ") if word)


def contains_phrase(normalized: str, phrase: str) -> bool:
    """Whole-word containment on already normalized text."""
    return f" {phrase} " in f" {normalized} "


def parse_yes_no(text: str) -> bool | None:
    normalized = normalize_text(text)
    if any(contains_phrase(normalized, word) for word in YES_WORDS):
        return True
    if any(contains_phrase(normalized, word) for word in NO_WORDS):
        return False
    return None


def extract_name(text: str, keywords: tuple[str, ...] | list[str] = ()) -> str | None:
    """
    Pull a free-form name out of an utterance.
    Quoted text wins; otherwise stop words, domain keywords, action verbs
    and clock times are dropped and the remainder is title-cased.
    """
    quoted = _QUOTED_RE.search(text)
    if quoted:
        return capitalize_words(quoted.group(1) or quoted.group(2))

    normalized = _CLOCK_RE.sub(" ", text.lower())
    tokens = normalize_text(normalized).split(" ")
    kept = [
        token
        for token in tokens
        if token and token not in STOP_WORDS and token not in keywords and token not in ACTION_WORDS
    ]
    if not kept:
        return None
    return capitalize_words(" ".join(kept))


def extract_priority(text: str) -> str | None:
    lowered = text.lower()
    if "urgent" in lowered or "high" in lowered:
        return "high"
    if "low" in lowered:
        return "low"
    if "medium" in lowered:
        return "medium"
    return None


def extract_category(text: str) -> str | None:
    lowered = text.lower()
    if "health" in lowered:
        return "health"
    if "wellness" in lowered or "mindful" in lowered:
        return "mindfulness"
    if "fitness" in lowered or "exercise" in lowered:
        return "health"
    if "learning" in lowered or "study" in lowered:
        return "learning"
    if "personal" in lowered or "growth" in lowered:
        return "work"
    if "social" in lowered:
        return "social"
    if "work" in lowered:
        return "work"
    return None


def is_undo_request(text: str) -> bool:
    normalized = normalize_text(text)
    return "undo" in normalized or "restore" in normalized


def is_cancel_request(text: str) -> bool:
    return "cancel" in normalize_text(text)


def is_explicit_confirm(text: str) -> bool:
    normalized = normalize_text(text)
    return "confirm" in normalized or "yes" in normalized


def first_number(text: str) -> int | None:
    match = re.search(r"\d+", text)
    return int(match.group(0)) if match else None
