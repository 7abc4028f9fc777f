"""Reusable FlowField parsers. Each returns a fresh partial update and leaves `data` untouched."""

from __future__ import annotations

from datetime import date
from typing import Any, Callable, Mapping

from chat_engine.application.utils.date_parser import parse_date, parse_frequency, parse_time
from chat_engine.application.utils.message_rules import (
    extract_category,
    extract_name,
    extract_priority,
    first_number,
    parse_yes_no,
)
from chat_engine.domain.entities.flow import FieldParser


def raw_text(key: str, lower: bool = False) -> FieldParser:
    def parser(text: str, data: Mapping[str, Any]) -> dict[str, Any]:
        value = text.strip()
        return {key: value.lower() if lower else value}

    return parser


def name_text(key: str = "title") -> FieldParser:
    def parser(text: str, data: Mapping[str, Any]) -> dict[str, Any]:
        return {key: extract_name(text) or text.strip()}

    return parser


def clock_time(with_time_of_day: bool = False) -> FieldParser:
    def parser(text: str, data: Mapping[str, Any]) -> dict[str, Any]:
        parsed = parse_time(text)
        if parsed is None:
            return {"time_label": text.strip()}
        update: dict[str, Any] = {"time24": parsed.time24, "time_label": parsed.label}
        if with_time_of_day:
            update["time_of_day"] = parsed.time_of_day
        return update

    return parser


def frequency(text: str, data: Mapping[str, Any]) -> dict[str, Any]:
    parsed = parse_frequency(text)
    if parsed is None:
        return {"frequency_label": text.strip()}
    return {"frequency": list(parsed.days), "frequency_label": parsed.label}


def category(text: str, data: Mapping[str, Any]) -> dict[str, Any]:
    return {"category": extract_category(text) or text.strip().lower()}


def priority(text: str, data: Mapping[str, Any]) -> dict[str, Any]:
    return {"priority": extract_priority(text) or text.strip().lower()}


def calendar_date(key: str, today: Callable[[], date]) -> FieldParser:
    def parser(text: str, data: Mapping[str, Any]) -> dict[str, Any]:
        return {key: parse_date(text, today()) or text.strip()}

    return parser


def whole_number(key: str, default: int = 0) -> FieldParser:
    def parser(text: str, data: Mapping[str, Any]) -> dict[str, Any]:
        value = first_number(text)
        return {key: default if value is None else value}

    return parser


def yes_no(key: str, default: bool = True) -> FieldParser:
    def parser(text: str, data: Mapping[str, Any]) -> dict[str, Any]:
        answer = parse_yes_no(text)
        return {key: default if answer is None else answer}

    return parser
