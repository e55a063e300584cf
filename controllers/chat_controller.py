"""Request handlers for push channels and chat exchanges."""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import HTTPException, Request

from services.chat.errors import ChatRelayError
from services.chat.push_channel import ChannelManager, ChannelStreamingResponse
from services.chat.relay import CompletionRelay


async def open_event_stream(request: Request, session_id: Optional[str]) -> ChannelStreamingResponse:
	"""Register a push channel for the session and stream its events."""
	manager: ChannelManager = request.app.state.channel_manager
	try:
		channel = manager.open(session_id)
	except ChatRelayError as exc:
		raise HTTPException(status_code=exc.status_code, detail=str(exc)) from exc
	return ChannelStreamingResponse(channel.frames(request.is_disconnected))


async def submit_message(request: Request, session_id: Optional[str], message: Optional[str]) -> Dict[str, Any]:
	"""Start an exchange; the reply itself arrives on the push channel."""
	relay: CompletionRelay = request.app.state.relay
	try:
		await relay.submit(session_id, message)
	except ChatRelayError as exc:
		raise HTTPException(status_code=exc.status_code, detail=str(exc)) from exc
	return {"success": True}
