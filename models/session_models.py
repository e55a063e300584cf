"""Session domain models for the chat relay."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, List, Optional

if TYPE_CHECKING:
	from services.chat.push_channel import PushChannel

USER = "user"
ASSISTANT = "assistant"


@dataclass(frozen=True)
class Turn:
	"""One message of the conversation; never mutated once recorded."""

	role: str
	content: str
	created_at: float = field(default_factory=lambda: time.time())

	def as_message(self) -> Dict[str, str]:
		"""Return the chat-completions message dict for this turn."""
		return {"role": self.role, "content": self.content}


@dataclass
class SessionState:
	"""In-memory conversation and push channel for one browser session."""

	session_id: str
	history: List[Turn] = field(default_factory=list)
	channel: Optional["PushChannel"] = None
	last_activity: float = field(default_factory=lambda: time.monotonic())
