"""FastAPI routes for the streaming chat relay."""

from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel, Field

from controllers.chat_controller import open_event_stream, submit_message

router = APIRouter()


class ChatPayload(BaseModel):
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    message: Optional[str] = None


@router.get("/stream")
async def stream_route(request: Request, session_id: Optional[str] = Query(default=None, alias="sessionId")):
    """Hold open the Server-Sent-Events stream for one session."""
    try:
        return await open_event_stream(request, session_id)
    except HTTPException:
        raise
    except Exception as exc:
        raise HTTPException(status_code=500, detail=str(exc))


@router.post("/chat")
async def chat_route(request: Request, payload: ChatPayload):
    """Relay a user message; streamed output goes to the session's channel."""
    try:
        return await submit_message(request, payload.session_id, payload.message)
    except HTTPException:
        raise
    except Exception as exc:
        raise HTTPException(status_code=500, detail=str(exc))
