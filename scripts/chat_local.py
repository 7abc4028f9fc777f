#!/usr/bin/env python3
"""
Interactive local chat harness (no HTTP).

Usage:
  python3 scripts/chat_local.py [--user USER_ID]

What it does:
- Keeps a stable session_id for the conversation
- Sends your typed messages through the same HandleChatTurnUseCase the API uses
- Prints the pending stage, the reply text and any quick replies
"""

from __future__ import annotations

import argparse
import asyncio
import sys
import uuid
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from chat_engine.domain.entities.context import AssistantContext  # noqa: E402
from chat_engine.wiring.dependencies import get_chat_turn_use_case  # noqa: E402


def _print_header(session_id: str, user_id: str | None) -> None:
    print("\nLocal Chat Harness")
    print("-" * 60)
    print(f"session_id: {session_id}")
    print(f"user_id: {user_id or '(guest)'}")
    print("Type your message and press Enter.")
    print("Commands: /new (new session), /history, /quit")
    print("-" * 60)


async def _run(user_id: str | None) -> None:
    use_case = get_chat_turn_use_case()
    ctx = AssistantContext(user_id=user_id)
    session_id = f"local-{uuid.uuid4().hex[:8]}"
    _print_header(session_id, user_id)

    while True:
        try:
            text = input("\nyou> ").strip()
        except (EOFError, KeyboardInterrupt):
            print()
            return

        if text == "/quit":
            return
        if text == "/new":
            session_id = f"local-{uuid.uuid4().hex[:8]}"
            _print_header(session_id, user_id)
            continue
        if text == "/history":
            for entry in use_case.history(session_id, limit=20):
                print(f"  [{entry['role']}] {entry['text'].splitlines()[0] if entry['text'] else ''}")
            continue

        turn = await use_case.execute(session_id, text, ctx)
        pending = turn.session.pending
        print(f"[stage: {pending.stage.value if pending else '-'}]")
        for message in turn.messages:
            print(f"bot> {message.text}")
            if message.actions:
                print("     " + " | ".join(f"[{action.label}]" for action in message.actions))


def main() -> None:
    parser = argparse.ArgumentParser(description="Chat with the command engine locally.")
    parser.add_argument("--user", default="local-user", help="user id; pass an empty string to chat as a guest")
    args = parser.parse_args()
    asyncio.run(_run(args.user or None))


if __name__ == "__main__":
    main()
