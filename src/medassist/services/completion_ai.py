from __future__ import annotations

from typing import Dict, List, Optional, Protocol, Sequence
import logging
import time

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..config import ChatSettings
from ..domain.chat_models import CompletionReply, ContextTurn
from ..domain.errors import CompletionProviderError
from ..observability.metrics import COMPLETION_CALLS


LOG = logging.getLogger("medassist.llm")


SYSTEM_PROMPT = (
    "You are MedAssist, an Indian healthcare assistant. Answer health questions in plain, "
    "friendly language, suggest which kind of specialist to see in India when relevant, and "
    "mention medicines by the names they are sold under in India. You do not diagnose; "
    "encourage the user to consult a registered medical practitioner for anything serious. "
    "If the user describes an emergency, tell them to call 102 or 108 immediately."
)


_BREAKER_STATE = {"fails": 0, "opened_at": 0.0}
_BREAKER_THRESHOLD = 3
_BREAKER_COOLDOWN = 60.0


def _breaker_open() -> bool:
    opened = _BREAKER_STATE["opened_at"]
    if opened == 0.0:
        return False
    if time.time() - opened < _BREAKER_COOLDOWN:
        return True
    _BREAKER_STATE["fails"] = 0
    _BREAKER_STATE["opened_at"] = 0.0
    return False


def _record_fail() -> None:
    _BREAKER_STATE["fails"] += 1
    if _BREAKER_STATE["fails"] >= _BREAKER_THRESHOLD and _BREAKER_STATE["opened_at"] == 0.0:
        _BREAKER_STATE["opened_at"] = time.time()
        LOG.warning(
            "llm_breaker_opened",
            extra={"fails": _BREAKER_STATE["fails"], "cooldown_s": _BREAKER_COOLDOWN},
        )


def _record_success() -> None:
    if _BREAKER_STATE["fails"] or _BREAKER_STATE["opened_at"]:
        LOG.info("llm_breaker_closed")
    _BREAKER_STATE["fails"] = 0
    _BREAKER_STATE["opened_at"] = 0.0


def build_http_session(retries: int = 2) -> requests.Session:
    session = requests.Session()
    retry = Retry(
        total=retries,
        backoff_factor=0.5,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=frozenset(["POST", "GET"]),
    )
    adapter = HTTPAdapter(max_retries=retry, pool_connections=10, pool_maxsize=10)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


def _conversation(prompt: str, history: Sequence[ContextTurn]) -> List[ContextTurn]:
    """History plus the prompt, unless the history already ends with it."""
    turns = list(history)
    if not turns or turns[-1].role != "user" or turns[-1].content != prompt:
        turns.append(ContextTurn(role="user", content=prompt))
    return turns


def _json_object(resp: requests.Response) -> Dict[str, object]:
    data = resp.json()
    if not isinstance(data, dict):
        raise ValueError(f"Completion response is not a JSON object: {type(data).__name__}")
    return data


class CompletionProvider(Protocol):
    name: str
    model: str

    def complete(self, prompt: str, history: Sequence[ContextTurn]) -> CompletionReply: ...


class GeminiCompletionProvider:
    name = "gemini"

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str,
        *,
        timeout: tuple[float, float] = (3.0, 60.0),
        session: Optional[requests.Session] = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._session = session or build_http_session()

    def payload(self, prompt: str, history: Sequence[ContextTurn]) -> Dict[str, object]:
        contents = [
            {"role": "model" if turn.role == "assistant" else "user", "parts": [{"text": turn.content}]}
            for turn in _conversation(prompt, history)
        ]
        return {
            "systemInstruction": {"parts": [{"text": SYSTEM_PROMPT}]},
            "contents": contents,
            "generationConfig": {"temperature": 0.4, "maxOutputTokens": 1024},
        }

    def complete(self, prompt: str, history: Sequence[ContextTurn]) -> CompletionReply:
        resp = self._session.post(
            f"{self.base_url}/models/{self.model}:generateContent",
            params={"key": self.api_key},
            json=self.payload(prompt, history),
            timeout=self._timeout,
        )
        resp.raise_for_status()
        data = _json_object(resp)
        text = ""
        for candidate in data.get("candidates") or []:
            if not isinstance(candidate, dict):
                raise ValueError("Malformed candidate in completion response")
            parts = (candidate.get("content") or {}).get("parts") or []
            text = "".join(str(p.get("text", "")) for p in parts if isinstance(p, dict))
            if text:
                break
        return CompletionReply(text=text, provider=self.name, model=self.model)


class OpenAICompatibleProvider:
    name = "local"

    def __init__(
        self,
        base_url: str,
        model: str,
        *,
        api_key: Optional[str] = None,
        timeout: tuple[float, float] = (3.0, 90.0),
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.api_key = api_key
        self._timeout = timeout
        self._session = session or build_http_session()

    def payload(self, prompt: str, history: Sequence[ContextTurn]) -> Dict[str, object]:
        messages = [{"role": "system", "content": SYSTEM_PROMPT}]
        messages.extend({"role": t.role, "content": t.content} for t in _conversation(prompt, history))
        return {"model": self.model, "messages": messages, "stream": False}

    def complete(self, prompt: str, history: Sequence[ContextTurn]) -> CompletionReply:
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        resp = self._session.post(
            f"{self.base_url}/v1/chat/completions",
            json=self.payload(prompt, history),
            headers=headers,
            timeout=self._timeout,
        )
        resp.raise_for_status()
        data = _json_object(resp)
        text = ""
        choices = data.get("choices") or []
        if choices:
            if not isinstance(choices[0], dict):
                raise ValueError("Malformed choice in completion response")
            text = (choices[0].get("message") or {}).get("content") or ""
        return CompletionReply(text=text, provider=self.name, model=self.model)


def select_completion_provider(settings: ChatSettings) -> CompletionProvider:
    choice = settings.completion_provider
    if choice not in (None, "gemini", "local"):
        raise CompletionProviderError(f"Unknown completion provider: {choice}")
    if choice in (None, "gemini") and settings.gemini_api_key:
        LOG.info("Using Gemini completion provider model=%s", settings.gemini_model)
        return GeminiCompletionProvider(
            settings.gemini_api_key,
            settings.gemini_model,
            settings.gemini_base_url,
            timeout=settings.timeout,
        )
    if choice in (None, "local") and settings.local_base_url:
        LOG.info("Using local completion provider base_url=%s model=%s", settings.local_base_url, settings.local_model)
        return OpenAICompatibleProvider(
            settings.local_base_url,
            settings.local_model,
            api_key=settings.local_api_key,
            timeout=settings.timeout,
        )
    raise CompletionProviderError("No completion provider configured")


def generate_reply(provider: CompletionProvider, prompt: str, history: Sequence[ContextTurn]) -> CompletionReply:
    """Call ``provider`` behind the circuit breaker; failures raise ``CompletionProviderError``."""
    if _breaker_open():
        COMPLETION_CALLS.labels(provider=provider.name, outcome="breaker_open").inc()
        raise CompletionProviderError("Completion provider temporarily unavailable")
    try:
        reply = provider.complete(prompt, history)
    except (requests.exceptions.RequestException, ValueError) as exc:
        _record_fail()
        COMPLETION_CALLS.labels(provider=provider.name, outcome="error").inc()
        LOG.warning("llm_call_failed", extra={"provider": provider.name, "model": provider.model, "err": str(exc)})
        raise CompletionProviderError(str(exc)) from exc
    _record_success()
    COMPLETION_CALLS.labels(provider=provider.name, outcome="ok").inc()
    return reply
