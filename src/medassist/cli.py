"""
Console client for the MedAssist chat session.

Run:
  python -m src.medassist.cli                 # talk to the functions service
  python -m src.medassist.cli --in-process    # local session store, provider from env

Commands inside the chat: /end (delete the conversation), /quit (leave it for
later), /resync (re-send unsynced messages), /1 /2 /3 (ask a suggested query).
"""
from __future__ import annotations

import argparse
import asyncio
import sys
from dataclasses import replace
from typing import Callable, List, Optional, TextIO

from dotenv import load_dotenv

from .config import ChatSettings
from .domain.chat_models import Message, Notification, TurnStatus
from .domain.errors import ChatSessionError
from .infrastructure.identity_store import JsonFileKeyValueStore
from .infrastructure.session_store import get_session_store
from .services.chat_session import ChatSessionController
from .services.completion_ai import select_completion_provider
from .services.http_transport import http_transport
from .services.identity import SessionIdentity
from .services.notifications import LoggingErrorReporter
from .services.transport import ChatTransportAdapter, InProcessCompletionClient, InProcessSessionStoreClient


class ConsoleNotifier:
    def __init__(self, out: TextIO) -> None:
        self._out = out

    def notify(self, notification: Notification) -> None:
        marker = "!" if notification.variant == "destructive" else "*"
        self._out.write(f"[{marker}] {notification.title}: {notification.description}\n")


def _speaker(message: Message) -> str:
    return "MedAssist" if message.role == "assistant" else "You"


def _print_message(out: TextIO, message: Message) -> None:
    stamp = message.timestamp.astimezone().strftime("%H:%M")
    out.write(f"{_speaker(message)} ({stamp}): {message.content}\n")


def _warn_if_unsynced(controller: ChatSessionController, out: TextIO) -> None:
    if controller.snapshot().unsynced:
        out.write("[!] Some messages could not be saved; use /resync to retry.\n")


def in_process_transport(settings: ChatSettings) -> ChatTransportAdapter:
    return ChatTransportAdapter(
        InProcessSessionStoreClient(get_session_store()),
        InProcessCompletionClient(select_completion_provider(settings)),
    )


def build_controller(settings: ChatSettings, *, in_process: bool, out: TextIO) -> ChatSessionController:
    transport = in_process_transport(settings) if in_process else http_transport(settings)
    identity = SessionIdentity(JsonFileKeyValueStore(settings.identity_path))
    return ChatSessionController(
        identity,
        transport,
        max_turns=settings.max_turns,
        reporter=LoggingErrorReporter(),
        notifier=ConsoleNotifier(out),
    )


async def run_console(
    controller: ChatSessionController,
    read_line: Callable[[str], str],
    out: TextIO,
) -> int:
    for message in await controller.activate():
        _print_message(out, message)
    _warn_if_unsynced(controller, out)

    while True:
        suggestions: List[str] = controller.suggested_queries()
        if suggestions:
            out.write("Try asking about:\n")
            for idx, query in enumerate(suggestions, start=1):
                out.write(f"  /{idx} {query}\n")
        try:
            line = await asyncio.to_thread(read_line, "You: ")
        except EOFError:
            return 0

        command = line.strip()
        if command == "/quit":
            return 0
        if command == "/end":
            await controller.terminate()
            return 0
        if command == "/resync":
            ok = await controller.resync()
            out.write("All messages saved.\n" if ok else "Some messages are still unsaved.\n")
            continue
        if command.startswith("/") and command[1:].isdigit() and suggestions:
            idx = int(command[1:]) - 1
            if 0 <= idx < len(suggestions):
                line = suggestions[idx]

        try:
            outcome = await controller.submit(line)
        except ChatSessionError as exc:
            out.write(f"[!] {exc}\n")
            continue
        if outcome.status == TurnStatus.IGNORED:
            continue
        if outcome.assistant_message is not None:
            _print_message(out, outcome.assistant_message)
        _warn_if_unsynced(controller, out)


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    parser = argparse.ArgumentParser(description="MedAssist console chat")
    parser.add_argument("--in-process", action="store_true", help="Use the local session store and call the LLM provider directly")
    parser.add_argument("--max-turns", type=int, default=None, help="Override the context window size")
    args = parser.parse_args(argv)

    settings = ChatSettings.from_env()
    if args.max_turns is not None:
        if args.max_turns < 1:
            parser.error("--max-turns must be at least 1")
        settings = replace(settings, max_turns=args.max_turns)

    controller = build_controller(settings, in_process=args.in_process, out=sys.stdout)
    try:
        return asyncio.run(run_console(controller, input, sys.stdout))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
