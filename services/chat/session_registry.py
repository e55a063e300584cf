"""In-memory registry of chat sessions and their push channels."""

from __future__ import annotations

import time
from typing import Dict, List, Optional

from models.session_models import SessionState, Turn
from services.chat.push_channel import PushChannel


class SessionRegistry:
	"""Map session ids to conversation history and the live push channel.

	Every method runs without awaiting, so each call is atomic on the event
	loop that owns the registry.
	"""

	def __init__(self) -> None:
		self._sessions: Dict[str, SessionState] = {}

	def __len__(self) -> int:
		return len(self._sessions)

	def __contains__(self, session_id: object) -> bool:
		return session_id in self._sessions

	def _touch(self, session_id: str) -> SessionState:
		"""Return the session, creating it on first use, and mark it active."""
		state = self._sessions.get(session_id)
		if state is None:
			state = SessionState(session_id=session_id)
			self._sessions[session_id] = state
		state.last_activity = time.monotonic()
		return state

	def register_channel(self, session_id: str, channel: PushChannel) -> None:
		"""Install `channel` for the session, superseding any previous one."""
		self._touch(session_id).channel = channel

	def remove_channel(self, session_id: str, channel: PushChannel) -> bool:
		"""Forget `channel` only if it is still the session's current channel."""
		state = self._sessions.get(session_id)
		if state is None or state.channel is not channel:
			return False
		state.channel = None
		state.last_activity = time.monotonic()
		return True

	def get_channel(self, session_id: str) -> Optional[PushChannel]:
		state = self._sessions.get(session_id)
		return state.channel if state is not None else None

	def get_or_create_history(self, session_id: str) -> List[Turn]:
		return self._touch(session_id).history

	def append_turn(self, session_id: str, turn: Turn) -> None:
		self._touch(session_id).history.append(turn)

	def history_messages(self, session_id: str) -> List[Dict[str, str]]:
		"""Return the whole conversation in chat-completions message form."""
		return [turn.as_message() for turn in self.get_or_create_history(session_id)]

	def evict_idle(self, ttl_seconds: float, now: Optional[float] = None) -> List[str]:
		"""Drop channel-less sessions idle for longer than `ttl_seconds`."""
		if ttl_seconds <= 0:
			return []
		cutoff = (time.monotonic() if now is None else now) - ttl_seconds
		evicted = [
			session_id
			for session_id, state in self._sessions.items()
			if state.channel is None and state.last_activity < cutoff
		]
		for session_id in evicted:
			del self._sessions[session_id]
		return evicted
