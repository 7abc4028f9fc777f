from __future__ import annotations

EMOJI = {
    "success": "✅",
    "celebration": "\U0001F389",
    "warning": "⚠️",
    "info": "ℹ️",
    "spark": "✨",
    "fire": "\U0001F525",
    "check": "✔️",
    "trophy": "\U0001F3C6",
}

DIVIDER = "-" * 40
BRANCH = "├─"
END = "└─"


def format_header(label: str) -> str:
    return f"{label}\n{DIVIDER}"


def format_details_block(title: str, details: list[tuple[str, str]]) -> str:
    """Render a title followed by a tree of `label: value` lines."""
    lines = []
    for index, (label, value) in enumerate(details):
        prefix = END if index == len(details) - 1 else BRANCH
        lines.append(f"{prefix} {label}: {value}")
    return "\n".join([title, *lines])
