from __future__ import annotations

from typing import Dict, FrozenSet

from ..domain.chat_models import SessionState
from ..domain.errors import InvalidTransitionError

# Chat session lifecycle transitions
SESSION_TRANSITIONS: Dict[SessionState, FrozenSet[SessionState]] = {
    SessionState.UNINITIALIZED: frozenset({SessionState.HYDRATING}),
    SessionState.HYDRATING: frozenset({SessionState.IDLE}),
    SessionState.IDLE: frozenset({SessionState.AWAITING_COMPLETION, SessionState.TERMINATING}),
    SessionState.AWAITING_COMPLETION: frozenset({SessionState.IDLE, SessionState.TERMINATING}),
    SessionState.TERMINATING: frozenset({SessionState.TERMINATED}),
    SessionState.TERMINATED: frozenset(),
}


def is_valid_transition(current: SessionState, target: SessionState) -> bool:
    return target in SESSION_TRANSITIONS.get(current, frozenset())


def ensure_transition(current: SessionState, target: SessionState) -> SessionState:
    if not is_valid_transition(current, target):
        raise InvalidTransitionError(current.value, target.value)
    return target


def is_closed(state: SessionState) -> bool:
    return state in (SessionState.TERMINATING, SessionState.TERMINATED)
