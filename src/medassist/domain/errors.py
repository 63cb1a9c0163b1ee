from __future__ import annotations

from typing import Optional


class ChatSessionError(RuntimeError):
    """Misuse of a chat session (wrong state, closed session, ...)."""


class InvalidTransitionError(ChatSessionError):
    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"Invalid session transition: {current} -> {target}")
        self.current = current
        self.target = target


class SessionNotReadyError(ChatSessionError):
    pass


class SessionClosedError(ChatSessionError):
    pass


class SubmissionRejectedError(ChatSessionError):
    """Raised when a message is submitted while a completion is outstanding."""


class TranscriptError(ValueError):
    pass


class ChatTransportError(Exception):
    """A call to the session store or the completion service failed."""

    def __init__(self, operation: str, message: str, *, session_id: Optional[str] = None) -> None:
        super().__init__(f"{operation} failed: {message}")
        self.operation = operation
        self.session_id = session_id


class CompletionProviderError(RuntimeError):
    pass
