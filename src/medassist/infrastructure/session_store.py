from __future__ import annotations

import logging
import os
from threading import RLock
from typing import Dict, List, Optional, Protocol, Sequence

from ..domain.chat_models import Message


logger = logging.getLogger("medassist.store")


class SessionStore(Protocol):
    async def get_session(self, session_id: str) -> List[Message]: ...

    async def save_session(self, session_id: str, messages: Sequence[Message]) -> None: ...

    async def save_message(self, session_id: str, message: Message) -> None: ...

    async def end_session(self, session_id: str) -> bool: ...


class InMemorySessionStore:
    """Session records kept in process memory.

    ``save_message`` is keyed by message id: saving the same id twice keeps
    the first position and replaces the content, so a replayed write never
    duplicates or reorders the transcript.
    """

    def __init__(self) -> None:
        self._sessions: Dict[str, List[Message]] = {}
        self._lock = RLock()

    async def get_session(self, session_id: str) -> List[Message]:
        with self._lock:
            return list(self._sessions.get(session_id, []))

    async def save_session(self, session_id: str, messages: Sequence[Message]) -> None:
        with self._lock:
            self._sessions[session_id] = list(messages)

    async def save_message(self, session_id: str, message: Message) -> None:
        with self._lock:
            msgs = self._sessions.setdefault(session_id, [])
            for idx, existing in enumerate(msgs):
                if existing.id == message.id:
                    msgs[idx] = message
                    return
            msgs.append(message)

    async def end_session(self, session_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def count_sessions(self) -> int:
        with self._lock:
            return len(self._sessions)


_store: SessionStore | None = None


def get_session_store() -> SessionStore:
    global _store
    if _store is not None:
        return _store
    impl = (os.getenv("MEDASSIST_SESSION_STORE_IMPL") or "memory").lower()
    if impl == "mongo":
        from .session_store_mongo import MongoSessionStore

        _store = MongoSessionStore.from_env()
        logger.info("session_store_selected", extra={"impl": "mongo"})
        return _store
    if impl != "memory":
        logger.warning("session_store_unknown_impl", extra={"impl": impl})
    _store = InMemorySessionStore()
    return _store


def set_session_store(store: Optional[SessionStore]) -> None:
    global _store
    _store = store
