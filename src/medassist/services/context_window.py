from __future__ import annotations

from typing import List, Sequence

from ..config import DEFAULT_MAX_TURNS
from ..domain.chat_models import ContextTurn, Message


def build_context_window(transcript: Sequence[Message], max_turns: int = DEFAULT_MAX_TURNS) -> List[ContextTurn]:
    """Return the last ``max_turns`` messages as role/content pairs, oldest first.

    Ids and timestamps are dropped; the completion service only needs the
    conversational text.
    """
    if max_turns < 1:
        raise ValueError("max_turns must be at least 1")
    recent = list(transcript)[-max_turns:]
    return [ContextTurn(role=m.role, content=m.content) for m in recent]


class ContextWindowBuilder:
    def __init__(self, max_turns: int = DEFAULT_MAX_TURNS) -> None:
        if max_turns < 1:
            raise ValueError("max_turns must be at least 1")
        self.max_turns = max_turns

    def build(self, transcript: Sequence[Message]) -> List[ContextTurn]:
        return build_context_window(transcript, self.max_turns)
