from __future__ import annotations

from threading import RLock
from typing import Iterable, List, Set, Tuple

from ..domain.chat_models import Message
from ..domain.errors import TranscriptError


class TranscriptStore:
    """Append-only, thread-safe message log for one chat session.

    Readers always get an immutable tuple, so a snapshot taken during an
    append is never mutated afterwards. Messages whose remote mirror failed
    are tracked by id until ``mark_synced``.
    """

    def __init__(self) -> None:
        self._messages: List[Message] = []
        self._ids: Set[str] = set()
        self._unsynced: List[str] = []
        self._initialized = False
        self._lock = RLock()

    @property
    def initialized(self) -> bool:
        return self._initialized

    def initialize(self, seed: Iterable[Message]) -> Tuple[Message, ...]:
        with self._lock:
            if self._initialized:
                raise TranscriptError("Transcript already initialized")
            messages = list(seed)
            ids = [m.id for m in messages]
            if len(set(ids)) != len(ids):
                raise TranscriptError("Seed transcript contains duplicate message ids")
            self._messages = messages
            self._ids = set(ids)
            self._unsynced = []
            self._initialized = True
            return tuple(self._messages)

    def append(self, message: Message) -> Tuple[Message, ...]:
        with self._lock:
            if not self._initialized:
                raise TranscriptError("Transcript not initialized")
            if message.id in self._ids:
                raise TranscriptError(f"Duplicate message id: {message.id}")
            self._messages.append(message)
            self._ids.add(message.id)
            return tuple(self._messages)

    def all(self) -> Tuple[Message, ...]:
        with self._lock:
            return tuple(self._messages)

    def __len__(self) -> int:
        with self._lock:
            return len(self._messages)

    def mark_unsynced(self, message_id: str) -> None:
        with self._lock:
            if message_id not in self._ids:
                raise TranscriptError(f"Unknown message id: {message_id}")
            if message_id not in self._unsynced:
                self._unsynced.append(message_id)

    def mark_synced(self, message_ids: Iterable[str]) -> None:
        with self._lock:
            done = set(message_ids)
            self._unsynced = [mid for mid in self._unsynced if mid not in done]

    def unsynced(self) -> Tuple[str, ...]:
        with self._lock:
            return tuple(self._unsynced)

    def reset(self) -> None:
        with self._lock:
            self._messages = []
            self._ids = set()
            self._unsynced = []
            self._initialized = False
