from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence

import requests

from ..config import ChatSettings
from ..domain.chat_models import CompletionReply, CompletionResponse, ContextTurn, Message
from .completion_ai import build_http_session
from .transport import ChatTransportAdapter


LOG = logging.getLogger("medassist.transport")

SESSION_FUNCTION = "functions/mongodb-chat"
COMPLETION_FUNCTION = "functions/gemini-health-chat"


class _FunctionsClient:
    """Blocking JSON-over-POST calls to the functions service, run off the event loop."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: tuple[float, float] = (3.0, 60.0),
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._timeout = timeout
        # At-most-once: the adapter boundary never retries.
        self._session = session or build_http_session(retries=0)

    def _post(self, function: str, body: Dict[str, Any]) -> Dict[str, Any]:
        resp = self._session.post(f"{self.base_url}/{function}", json=body, timeout=self._timeout)
        resp.raise_for_status()
        data = resp.json()
        if not isinstance(data, dict):
            raise ValueError(f"Unexpected response from {function}")
        if data.get("error"):
            raise RuntimeError(str(data["error"]))
        return data

    async def _call(self, function: str, body: Dict[str, Any]) -> Dict[str, Any]:
        return await asyncio.to_thread(self._post, function, body)


class HttpSessionStoreClient(_FunctionsClient):
    async def get_session(self, session_id: str) -> List[Message]:
        data = await self._call(SESSION_FUNCTION, {"action": "getSession", "sessionId": session_id})
        payload = data.get("data") or {}
        return [Message.model_validate(m) for m in payload.get("messages") or []]

    async def save_session(self, session_id: str, messages: Sequence[Message]) -> None:
        await self._call(
            SESSION_FUNCTION,
            {"action": "saveSession", "sessionId": session_id, "messages": [m.to_wire() for m in messages]},
        )

    async def save_message(self, session_id: str, message: Message) -> None:
        await self._call(
            SESSION_FUNCTION,
            {"action": "saveMessage", "sessionId": session_id, "message": message.to_wire()},
        )

    async def end_session(self, session_id: str) -> None:
        await self._call(SESSION_FUNCTION, {"action": "endSession", "sessionId": session_id})


class HttpCompletionClient(_FunctionsClient):
    async def complete(self, prompt: str, history: Sequence[ContextTurn]) -> CompletionReply:
        data = await self._call(
            COMPLETION_FUNCTION,
            {"prompt": prompt, "previousMessages": [t.model_dump() for t in history]},
        )
        parsed = CompletionResponse.model_validate(data)
        return CompletionReply(text=parsed.generated_text or "", provider=parsed.provider, model=parsed.model)


def http_transport(settings: ChatSettings, session: Optional[requests.Session] = None) -> ChatTransportAdapter:
    LOG.info("Using functions service base_url=%s", settings.functions_base_url)
    return ChatTransportAdapter(
        HttpSessionStoreClient(settings.functions_base_url, timeout=settings.timeout, session=session),
        HttpCompletionClient(settings.functions_base_url, timeout=settings.timeout, session=session),
    )
