from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, HTTPException, status

from ...domain.chat_models import SessionStoreRequest
from ...infrastructure.session_store import get_session_store


logger = logging.getLogger("medassist.api")

router = APIRouter(prefix="/functions", tags=["session-store"])


@router.post("/mongodb-chat")
async def session_store_action(req: SessionStoreRequest) -> Dict[str, Any]:
    store = get_session_store()
    try:
        if req.action == "getSession":
            messages = await store.get_session(req.session_id)
            return {"data": {"sessionId": req.session_id, "messages": [m.to_wire() for m in messages]}}

        if req.action == "saveSession":
            if req.messages is None:
                raise HTTPException(status_code=400, detail="messages is required for saveSession")
            await store.save_session(req.session_id, req.messages)
            return {"data": {"sessionId": req.session_id, "saved": len(req.messages)}}

        if req.action == "saveMessage":
            if req.message is None:
                raise HTTPException(status_code=400, detail="message is required for saveMessage")
            await store.save_message(req.session_id, req.message)
            return {"data": {"sessionId": req.session_id, "messageId": req.message.id}}

        deleted = await store.end_session(req.session_id)
        return {"data": {"sessionId": req.session_id, "deleted": deleted}}
    except HTTPException:
        raise
    except Exception as exc:
        logger.exception("session_store_action_failed", extra={"action": req.action, "session_id": req.session_id})
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Session store unavailable: {exc.__class__.__name__}",
        )
