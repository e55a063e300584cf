"""Relay one user message to the completion API and stream the reply back."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol, Set

from models.session_models import ASSISTANT, USER, Turn
from models.stream_events import StreamEvent
from services.chat.errors import BadRequest, NoChannel, UpstreamError
from services.chat.push_channel import ChannelManager
from services.chat.session_registry import SessionRegistry
from services.chat.sse_decoder import iter_deltas

LOGGER = logging.getLogger(__name__)

STREAM_ERROR_MESSAGE = "Streaming error occurred"


class OpenStream(Protocol):
	def lines(self): ...

	async def aclose(self) -> None: ...


class Upstream(Protocol):
	async def open_stream(self, messages: List[Dict[str, str]]) -> OpenStream: ...


@dataclass
class Exchange:
	"""Handle for an exchange whose reply is still streaming."""

	session_id: str
	task: "asyncio.Task[Optional[str]]"

	async def wait(self) -> Optional[str]:
		"""Return the assistant text, or None if the exchange failed."""
		return await self.task


class CompletionRelay:
	"""Drive user→assistant exchanges between the upstream API and push channels."""

	def __init__(self, registry: SessionRegistry, channels: ChannelManager, upstream: Upstream) -> None:
		self.registry = registry
		self.channels = channels
		self.upstream = upstream
		self.pending: Set["asyncio.Task[Optional[str]]"] = set()

	async def submit(self, session_id: Optional[str], message: Optional[str]) -> Exchange:
		"""Record the user turn, open the upstream stream and start relaying it.

		Returns as soon as the upstream accepted the request; the reply keeps
		arriving on the session's push channel.
		"""
		if not session_id or not message:
			raise BadRequest("sessionId and message are required")
		if self.registry.get_channel(session_id) is None:
			raise NoChannel(session_id)

		self.registry.append_turn(session_id, Turn(role=USER, content=message))
		messages = self.registry.history_messages(session_id)
		LOGGER.info("Starting exchange for session %s with %d turns", session_id, len(messages))

		try:
			stream = await self.upstream.open_stream(messages)
		except UpstreamError as exc:
			self.channels.send_to_session(session_id, StreamEvent.error(str(exc)))
			raise

		task = asyncio.create_task(self._pump(session_id, stream))
		self.pending.add(task)
		task.add_done_callback(self.pending.discard)
		return Exchange(session_id=session_id, task=task)

	async def _pump(self, session_id: str, stream: OpenStream) -> Optional[str]:
		"""Forward deltas as chunk events, then fold the reply into history."""
		assistant_message = ""
		try:
			async for delta in iter_deltas(stream.lines()):
				assistant_message += delta
				self.channels.send_to_session(session_id, StreamEvent.chunk(delta))
		except UpstreamError as exc:
			LOGGER.error("Streaming error for session %s: %s", session_id, exc)
			self.channels.send_to_session(session_id, StreamEvent.error(STREAM_ERROR_MESSAGE))
			return None
		except Exception:
			LOGGER.exception("Unexpected failure relaying session %s", session_id)
			self.channels.send_to_session(session_id, StreamEvent.error(STREAM_ERROR_MESSAGE))
			return None
		finally:
			await stream.aclose()

		self.registry.append_turn(session_id, Turn(role=ASSISTANT, content=assistant_message))
		self.channels.send_to_session(session_id, StreamEvent.complete())
		LOGGER.info("Exchange for session %s complete (%d chars)", session_id, len(assistant_message))
		return assistant_message

	async def aclose(self) -> None:
		"""Cancel exchanges still streaming, e.g. on shutdown."""
		tasks = list(self.pending)
		for task in tasks:
			task.cancel()
		if tasks:
			await asyncio.gather(*tasks, return_exceptions=True)
