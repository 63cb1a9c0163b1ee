import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
root_str = str(ROOT)
if root_str not in sys.path:
    sys.path.insert(0, root_str)


@pytest.fixture(autouse=True)
def _isolate_globals(monkeypatch):
    """Reset process-wide singletons so tests never share stores or providers."""
    from src.medassist.api.routers import completion
    from src.medassist.infrastructure import events, session_store
    from src.medassist.services import completion_ai

    monkeypatch.setattr(session_store, "_store", None, raising=False)
    monkeypatch.setattr(completion, "_provider", None, raising=False)
    monkeypatch.setattr(events, "_publisher", None, raising=False)
    monkeypatch.setattr(completion_ai, "_BREAKER_STATE", {"fails": 0, "opened_at": 0.0}, raising=False)
    monkeypatch.delenv("REDIS_URL", raising=False)
    monkeypatch.delenv("MEDASSIST_SESSION_STORE_IMPL", raising=False)
