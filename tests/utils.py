from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

from src.medassist.domain.chat_models import CompletionReply, ContextTurn, Message
from src.medassist.infrastructure.identity_store import InMemoryKeyValueStore
from src.medassist.services.chat_session import ChatSessionController
from src.medassist.services.identity import SessionIdentity
from src.medassist.services.notifications import RecordingReporter
from src.medassist.services.transport import ChatTransportAdapter


class FakeSessionStoreClient:
    """Records every call; operations named in ``failing`` raise ``ConnectionError``."""

    def __init__(self, sessions: Optional[Dict[str, List[Message]]] = None) -> None:
        self.sessions: Dict[str, List[Message]] = {k: list(v) for k, v in (sessions or {}).items()}
        self.calls: List[Tuple[str, str, Any]] = []
        self.failing: Set[str] = set()
        self.fail_next: Set[str] = set()

    def _maybe_fail(self, op: str) -> None:
        if op in self.fail_next:
            self.fail_next.discard(op)
            raise ConnectionError(f"{op} unreachable")
        if op in self.failing:
            raise ConnectionError(f"{op} unreachable")

    async def get_session(self, session_id: str) -> List[Message]:
        self.calls.append(("getSession", session_id, None))
        self._maybe_fail("getSession")
        return list(self.sessions.get(session_id, []))

    async def save_session(self, session_id: str, messages: Sequence[Message]) -> None:
        self.calls.append(("saveSession", session_id, list(messages)))
        self._maybe_fail("saveSession")
        self.sessions[session_id] = list(messages)

    async def save_message(self, session_id: str, message: Message) -> None:
        self.calls.append(("saveMessage", session_id, message))
        self._maybe_fail("saveMessage")
        self.sessions.setdefault(session_id, []).append(message)

    async def end_session(self, session_id: str) -> None:
        self.calls.append(("endSession", session_id, None))
        self._maybe_fail("endSession")
        self.sessions.pop(session_id, None)

    def saved_messages(self) -> List[Message]:
        return [payload for op, _sid, payload in self.calls if op == "saveMessage"]

    def ops(self) -> List[str]:
        return [op for op, _sid, _payload in self.calls]


class FakeCompletionClient:
    def __init__(self, replies: Optional[List[str]] = None) -> None:
        self.replies = list(replies or [])
        self.calls: List[Tuple[str, List[ContextTurn]]] = []
        self.error: Optional[Exception] = None
        self.gate: Optional[asyncio.Event] = None
        self.started = asyncio.Event()

    async def complete(self, prompt: str, history: Sequence[ContextTurn]) -> CompletionReply:
        self.calls.append((prompt, list(history)))
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        text = self.replies.pop(0) if self.replies else f"reply to: {prompt}"
        return CompletionReply(text=text, provider="fake", model="fake-1")


def make_controller(
    *,
    sessions: Optional[Dict[str, List[Message]]] = None,
    session_id: str = "sess-1",
    max_turns: int = 10,
) -> Tuple[ChatSessionController, FakeSessionStoreClient, FakeCompletionClient, RecordingReporter, SessionIdentity]:
    store = FakeSessionStoreClient(sessions)
    completions = FakeCompletionClient()
    reporter = RecordingReporter()
    kv = InMemoryKeyValueStore({"medassist_session_id": session_id})
    identity = SessionIdentity(kv)
    controller = ChatSessionController(
        identity,
        ChatTransportAdapter(store, completions),
        max_turns=max_turns,
        reporter=reporter,
        notifier=reporter,
    )
    return controller, store, completions, reporter, identity
