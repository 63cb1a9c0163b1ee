from __future__ import annotations

import logging
import uuid
from threading import RLock
from typing import Callable, Optional, Protocol, Set

from ..config import IDENTITY_KEY
from ..infrastructure.identity_store import KeyValueStore


logger = logging.getLogger("medassist.identity")


class IdentityProvider(Protocol):
    def resolve(self) -> str: ...

    def invalidate(self) -> None: ...


class SessionIdentity:
    """Resolves the device's chat session id from a local key/value store.

    The id is minted lazily on first ``resolve`` and erased by ``invalidate``.
    Ids that were invalidated are remembered so a fresh mint never hands one
    back.
    """

    def __init__(
        self,
        storage: KeyValueStore,
        *,
        key: str = IDENTITY_KEY,
        id_factory: Optional[Callable[[], str]] = None,
    ) -> None:
        self._storage = storage
        self._key = key
        self._id_factory = id_factory or (lambda: str(uuid.uuid4()))
        self._retired: Set[str] = set()
        self._lock = RLock()

    def resolve(self) -> str:
        with self._lock:
            stored = self._storage.get(self._key)
            if stored and stored not in self._retired:
                return stored
            session_id = self._mint()
            self._storage.set(self._key, session_id)
            logger.info("session_id_minted", extra={"session_id": session_id})
            return session_id

    def invalidate(self) -> None:
        with self._lock:
            stored = self._storage.get(self._key)
            if stored:
                self._retired.add(stored)
            self._storage.remove(self._key)
            logger.info("session_id_invalidated", extra={"session_id": stored})

    def _mint(self) -> str:
        for _ in range(8):
            candidate = self._id_factory()
            if candidate and candidate not in self._retired:
                return candidate
        raise RuntimeError("Identity factory keeps returning retired session ids")
