from __future__ import annotations

import time
from datetime import UTC, datetime
from enum import Enum
from threading import Lock
from typing import Any, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


Role = Literal["user", "assistant"]

# Older transcripts stored the assistant role as "bot".
_ROLE_ALIASES = {"bot": "assistant", "model": "assistant"}

_id_lock = Lock()
_last_id = 0


def next_message_id() -> str:
    """Return a message id that sorts after every id issued before it."""
    global _last_id
    with _id_lock:
        candidate = time.time_ns()
        if candidate <= _last_id:
            candidate = _last_id + 1
        _last_id = candidate
        return str(candidate)


def _now() -> datetime:
    return datetime.now(UTC)


class Message(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    content: str
    role: Role
    timestamp: datetime = Field(default_factory=_now)

    @field_validator("role", mode="before")
    @classmethod
    def _normalize_role(cls, value: Any) -> Any:
        if isinstance(value, str):
            lowered = value.strip().lower()
            return _ROLE_ALIASES.get(lowered, lowered)
        return value

    @classmethod
    def create(cls, role: Role, content: str) -> "Message":
        return cls(id=next_message_id(), role=role, content=content, timestamp=_now())

    def to_wire(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "role": self.role,
            "timestamp": self.timestamp.isoformat().replace("+00:00", "Z"),
        }


class ContextTurn(BaseModel):
    """One entry of the history sent to the completion service."""

    model_config = ConfigDict(frozen=True)

    role: Role
    content: str


class CompletionReply(BaseModel):
    text: str = ""
    provider: Optional[str] = None
    model: Optional[str] = None


class SessionState(str, Enum):
    UNINITIALIZED = "uninitialized"
    HYDRATING = "hydrating"
    IDLE = "idle"
    AWAITING_COMPLETION = "awaiting_completion"
    TERMINATING = "terminating"
    TERMINATED = "terminated"


class TurnStatus(str, Enum):
    COMPLETED = "completed"
    RECOVERED = "recovered"
    IGNORED = "ignored"
    DISCARDED = "discarded"


class TurnOutcome(BaseModel):
    status: TurnStatus
    user_message: Optional[Message] = None
    assistant_message: Optional[Message] = None
    unsynced: List[str] = Field(default_factory=list)


class TerminationOutcome(BaseModel):
    session_id: str
    purged: bool


class SessionSnapshot(BaseModel):
    session_id: Optional[str]
    state: SessionState
    messages: Tuple[Message, ...]
    unsynced: Tuple[str, ...] = ()


class Notification(BaseModel):
    title: str
    description: str
    variant: Literal["default", "destructive"] = "default"


class ChatErrorKind(str, Enum):
    HYDRATION_FAILURE = "hydration_failure"
    PERSIST_FAILURE = "persist_failure"
    COMPLETION_FAILURE = "completion_failure"
    TERMINATION_FAILURE = "termination_failure"


class ChatErrorEvent(BaseModel):
    kind: ChatErrorKind
    session_id: Optional[str]
    detail: str
    message_id: Optional[str] = None
    operation: Optional[str] = None
    occurred_at: datetime = Field(default_factory=_now)

    def to_payload(self) -> Dict[str, Any]:
        data = self.model_dump(mode="json")
        data["kind"] = self.kind.value
        return data


# Wire bodies of the session-store function
SessionAction = Literal["getSession", "saveSession", "saveMessage", "endSession"]


class SessionStoreRequest(BaseModel):
    action: SessionAction
    session_id: str = Field(alias="sessionId", min_length=1)
    messages: Optional[List[Message]] = None
    message: Optional[Message] = None

    model_config = ConfigDict(populate_by_name=True)


class CompletionRequest(BaseModel):
    prompt: str = Field(min_length=1)
    previous_messages: List[ContextTurn] = Field(default_factory=list, alias="previousMessages")

    model_config = ConfigDict(populate_by_name=True)


class CompletionResponse(BaseModel):
    generated_text: Optional[str] = Field(default="", alias="generatedText")
    provider: Optional[str] = None
    model: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)
