"""Boundary between the chat controller and its two remote collaborators.

``ChatTransportAdapter`` turns every collaborator failure into a
``ChatTransportError`` and never retries; what to do about a failure is the
controller's decision. Collaborators come in two flavours: in-process (call a
``SessionStore`` / ``CompletionProvider`` directly) and HTTP (see
``http_transport``).
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import contextmanager
from typing import Iterator, List, Optional, Protocol, Sequence

from ..domain.chat_models import CompletionReply, ContextTurn, Message
from ..domain.errors import ChatTransportError
from ..infrastructure.session_store import SessionStore
from .completion_ai import CompletionProvider, generate_reply


LOG = logging.getLogger("medassist.transport")


class SessionStoreClient(Protocol):
    async def get_session(self, session_id: str) -> List[Message]: ...

    async def save_session(self, session_id: str, messages: Sequence[Message]) -> None: ...

    async def save_message(self, session_id: str, message: Message) -> None: ...

    async def end_session(self, session_id: str) -> None: ...


class CompletionClient(Protocol):
    async def complete(self, prompt: str, history: Sequence[ContextTurn]) -> CompletionReply: ...


class InProcessSessionStoreClient:
    def __init__(self, store: SessionStore) -> None:
        self._store = store

    async def get_session(self, session_id: str) -> List[Message]:
        return await self._store.get_session(session_id)

    async def save_session(self, session_id: str, messages: Sequence[Message]) -> None:
        await self._store.save_session(session_id, messages)

    async def save_message(self, session_id: str, message: Message) -> None:
        await self._store.save_message(session_id, message)

    async def end_session(self, session_id: str) -> None:
        await self._store.end_session(session_id)


class InProcessCompletionClient:
    def __init__(self, provider: CompletionProvider) -> None:
        self._provider = provider

    async def complete(self, prompt: str, history: Sequence[ContextTurn]) -> CompletionReply:
        return await asyncio.to_thread(generate_reply, self._provider, prompt, list(history))


class ChatTransportAdapter:
    def __init__(self, sessions: SessionStoreClient, completions: CompletionClient) -> None:
        self._sessions = sessions
        self._completions = completions

    @contextmanager
    def _guard(self, operation: str, session_id: Optional[str]) -> Iterator[None]:
        try:
            yield
        except ChatTransportError:
            raise
        except Exception as exc:
            LOG.debug("transport_call_failed", extra={"operation": operation, "err": repr(exc)})
            raise ChatTransportError(operation, str(exc) or exc.__class__.__name__, session_id=session_id) from exc

    async def get_session(self, session_id: str) -> List[Message]:
        with self._guard("getSession", session_id):
            return list(await self._sessions.get_session(session_id))

    async def save_session(self, session_id: str, messages: Sequence[Message]) -> None:
        with self._guard("saveSession", session_id):
            await self._sessions.save_session(session_id, list(messages))

    async def save_message(self, session_id: str, message: Message) -> None:
        with self._guard("saveMessage", session_id):
            await self._sessions.save_message(session_id, message)

    async def end_session(self, session_id: str) -> None:
        with self._guard("endSession", session_id):
            await self._sessions.end_session(session_id)

    async def complete(self, prompt: str, history: Sequence[ContextTurn]) -> CompletionReply:
        with self._guard("complete", None):
            return await self._completions.complete(prompt, list(history))
