from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, status

from ...config import ChatSettings
from ...domain.chat_models import CompletionRequest, CompletionResponse
from ...domain.errors import CompletionProviderError
from ...services.completion_ai import CompletionProvider, generate_reply, select_completion_provider


logger = logging.getLogger("medassist.api")

router = APIRouter(prefix="/functions", tags=["completion"])

_provider: Optional[CompletionProvider] = None


def get_completion_provider() -> CompletionProvider:
    global _provider
    if _provider is None:
        _provider = select_completion_provider(ChatSettings.from_env())
    return _provider


def set_completion_provider(provider: Optional[CompletionProvider]) -> None:
    global _provider
    _provider = provider


@router.post("/gemini-health-chat", response_model=CompletionResponse, response_model_by_alias=True)
def health_chat(req: CompletionRequest) -> CompletionResponse:
    try:
        provider = get_completion_provider()
        reply = generate_reply(provider, req.prompt, req.previous_messages)
    except CompletionProviderError as exc:
        logger.warning("completion_failed", extra={"err": str(exc)})
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Failed to get response from completion provider")
    return CompletionResponse(generated_text=reply.text, provider=reply.provider, model=reply.model)
