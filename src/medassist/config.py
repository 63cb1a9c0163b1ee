"""Runtime settings for the chat client and the functions service.

Values come from environment variables (entry points call ``load_dotenv`` so a
local ``.env`` file works too). Settings are read once into an immutable
object and passed to the components that need them.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional


IDENTITY_KEY = "medassist_session_id"
DEFAULT_MAX_TURNS = 10


def _int_env(env: Mapping[str, str], key: str, default: int) -> int:
    raw = (env.get(key) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{key} must be an integer, got {raw!r}")


def _float_env(env: Mapping[str, str], key: str, default: float) -> float:
    raw = (env.get(key) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{key} must be a number, got {raw!r}")


@dataclass(frozen=True)
class ChatSettings:
    max_turns: int = DEFAULT_MAX_TURNS
    identity_path: Path = Path.home() / ".medassist" / "identity.json"
    functions_base_url: str = "http://127.0.0.1:8000"
    connect_timeout: float = 3.0
    read_timeout: float = 60.0
    completion_provider: Optional[str] = None
    gemini_api_key: Optional[str] = None
    gemini_model: str = "gemini-2.5-flash"
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    local_base_url: Optional[str] = None
    local_model: str = "llama3.1"
    local_api_key: Optional[str] = None

    @property
    def timeout(self) -> tuple[float, float]:
        return (self.connect_timeout, self.read_timeout)

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "ChatSettings":
        env = os.environ if env is None else env
        max_turns = _int_env(env, "MEDASSIST_MAX_TURNS", DEFAULT_MAX_TURNS)
        if max_turns < 1:
            raise ValueError("MEDASSIST_MAX_TURNS must be at least 1")
        identity_raw = (env.get("MEDASSIST_IDENTITY_PATH") or "").strip()
        return cls(
            max_turns=max_turns,
            identity_path=Path(identity_raw).expanduser() if identity_raw else cls.identity_path,
            functions_base_url=(env.get("MEDASSIST_FUNCTIONS_URL") or cls.functions_base_url).rstrip("/"),
            connect_timeout=_float_env(env, "MEDASSIST_CONNECT_TIMEOUT", cls.connect_timeout),
            read_timeout=_float_env(env, "MEDASSIST_READ_TIMEOUT", cls.read_timeout),
            completion_provider=(env.get("MEDASSIST_COMPLETION_PROVIDER") or "").strip().lower() or None,
            gemini_api_key=env.get("GEMINI_API_KEY") or None,
            gemini_model=env.get("GEMINI_MODEL") or cls.gemini_model,
            gemini_base_url=(env.get("GEMINI_BASE_URL") or cls.gemini_base_url).rstrip("/"),
            local_base_url=(env.get("LOCAL_BASE_URL") or "").rstrip("/") or None,
            local_model=env.get("LOCAL_MODEL") or cls.local_model,
            local_api_key=env.get("LOCAL_API_KEY") or None,
        )
