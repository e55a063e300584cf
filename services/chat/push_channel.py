"""Long-lived Server-Sent-Events channels, one per chat session."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, AsyncIterator, Awaitable, Callable, Dict, Optional

from fastapi.responses import StreamingResponse
from starlette.types import Receive, Scope, Send

from models.stream_events import StreamEvent
from services.chat.errors import MissingSessionId

if TYPE_CHECKING:
	from services.chat.session_registry import SessionRegistry

LOGGER = logging.getLogger(__name__)

KEEPALIVE_FRAME = ": keepalive\n\n"

SSE_HEADERS: Dict[str, str] = {
	"Cache-Control": "no-cache",
	"Connection": "keep-alive",
	"X-Accel-Buffering": "no",
}


class PushChannel:
	"""One open event stream to a browser tab.

	Events are queued by `send` and drained by the `frames` generator that
	backs the HTTP response. `on_close` runs exactly once, whichever side
	closes first.
	"""

	def __init__(
		self,
		session_id: str,
		on_close: Optional[Callable[["PushChannel"], None]] = None,
		keepalive_seconds: float = 15.0,
	) -> None:
		self.session_id = session_id
		self.keepalive_seconds = keepalive_seconds
		self._on_close = on_close
		self._queue: "asyncio.Queue[str]" = asyncio.Queue()
		self._closed = False

	@property
	def closed(self) -> bool:
		return self._closed

	def send(self, event: StreamEvent) -> bool:
		"""Queue an event for delivery; returns False if the channel is gone."""
		if self._closed:
			LOGGER.debug("Dropping %s event for closed channel of session %s", event.type, self.session_id)
			return False
		self._queue.put_nowait(event.to_frame())
		return True

	def close(self) -> None:
		if self._closed:
			return
		self._closed = True
		if self._on_close is not None:
			try:
				self._on_close(self)
			except Exception:
				LOGGER.exception("Channel close callback failed for session %s", self.session_id)

	def frames(self, is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None) -> "ChannelFrames":
		"""Return the frame iterator that backs the HTTP response."""
		return ChannelFrames(self, is_disconnected)

	async def _drain(self, is_disconnected: Optional[Callable[[], Awaitable[bool]]]) -> AsyncIterator[str]:
		try:
			while not self._closed:
				try:
					frame = await asyncio.wait_for(self._queue.get(), timeout=self.keepalive_seconds)
				except asyncio.TimeoutError:
					if is_disconnected is not None and await is_disconnected():
						LOGGER.info("Client for session %s disconnected", self.session_id)
						break
					frame = KEEPALIVE_FRAME
				yield frame
		finally:
			self.close()


class ChannelFrames:
	"""Yield SSE frames until the client goes away.

	Closing the iterator closes the channel even when iteration never
	started, which a plain async generator would not do.
	"""

	def __init__(self, channel: PushChannel, is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None) -> None:
		self.channel = channel
		self._frames = channel._drain(is_disconnected)

	def __aiter__(self) -> "ChannelFrames":
		return self

	async def __anext__(self) -> str:
		return await self._frames.__anext__()

	async def aclose(self) -> None:
		try:
			await self._frames.aclose()
		finally:
			self.channel.close()


class ChannelStreamingResponse(StreamingResponse):
	"""Event-stream response that closes its channel however the response ends."""

	def __init__(self, frames: ChannelFrames) -> None:
		super().__init__(frames, media_type="text/event-stream", headers=SSE_HEADERS)
		self.frames = frames

	async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
		try:
			await super().__call__(scope, receive, send)
		finally:
			await self.frames.aclose()


class ChannelManager:
	"""Open push channels and keep the registry free of dead ones."""

	def __init__(self, registry: "SessionRegistry", keepalive_seconds: float = 15.0) -> None:
		self.registry = registry
		self.keepalive_seconds = keepalive_seconds

	def open(self, session_id: Optional[str]) -> PushChannel:
		"""Register a new channel for the session and greet the client."""
		if session_id is None or not session_id.strip():
			raise MissingSessionId()
		channel = PushChannel(session_id, on_close=self._on_channel_closed, keepalive_seconds=self.keepalive_seconds)
		if self.registry.get_channel(session_id) is not None:
			LOGGER.info("Session %s reconnected; superseding previous channel", session_id)
		self.registry.register_channel(session_id, channel)
		self.send(channel, StreamEvent.connected())
		return channel

	def send(self, channel: Optional[PushChannel], event: StreamEvent) -> bool:
		"""Deliver an event, never raising; returns whether it was queued."""
		if channel is None:
			return False
		try:
			return channel.send(event)
		except Exception:
			LOGGER.exception("Failed to send %s event to session %s", event.type, channel.session_id)
			return False

	def send_to_session(self, session_id: str, event: StreamEvent) -> bool:
		"""Deliver to whichever channel is currently registered for the session."""
		return self.send(self.registry.get_channel(session_id), event)

	def _on_channel_closed(self, channel: PushChannel) -> None:
		removed = self.registry.remove_channel(channel.session_id, channel)
		LOGGER.debug("Channel for session %s closed (deregistered=%s)", channel.session_id, removed)
