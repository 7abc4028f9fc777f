from __future__ import annotations

from chat_engine.application.utils.message_rules import ACTION_KEYWORDS, ENTITY_KEYWORDS, normalize_text
from chat_engine.domain.entities.intent import ActionType, DetectedIntent, EntityType

_SETTINGS_PHRASES = ("dark mode", "light mode")


def detect_action(normalized: str) -> ActionType | None:
    """First action in table order with any keyword contained in the text."""
    for action, keywords in ACTION_KEYWORDS.items():
        if any(keyword in normalized for keyword in keywords):
            return action
    return None


def detect_entity(normalized: str, action: ActionType | None) -> EntityType | None:
    if action is ActionType.snooze:
        return EntityType.reminder
    if any(phrase in normalized for phrase in _SETTINGS_PHRASES):
        return EntityType.settings

    best: EntityType | None = None
    best_score = 0
    for entity, keywords in ENTITY_KEYWORDS.items():
        # Multi-word keywords weigh more; ties keep the entity scored first.
        score = sum(len(keyword.split(" ")) for keyword in keywords if keyword in normalized)
        if score > best_score:
            best, best_score = entity, score
    return best


def detect_intent(text: str) -> DetectedIntent | None:
    normalized = normalize_text(text)
    if not normalized:
        return None
    action = detect_action(normalized)
    entity = detect_entity(normalized, action)
    if entity is None:
        return None
    if action is None:
        action = ActionType.edit if entity is EntityType.settings else ActionType.view
    return DetectedIntent(action=action, entity=entity, raw=text)
