"""Events delivered to browsers over the push channel."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional

CONNECTED = "connected"
CHUNK = "chunk"
COMPLETE = "complete"
ERROR = "error"


@dataclass(frozen=True)
class StreamEvent:
	type: str
	content: Optional[str] = None
	message: Optional[str] = None

	@classmethod
	def connected(cls) -> "StreamEvent":
		return cls(type=CONNECTED)

	@classmethod
	def chunk(cls, content: str) -> "StreamEvent":
		return cls(type=CHUNK, content=content)

	@classmethod
	def complete(cls) -> "StreamEvent":
		return cls(type=COMPLETE)

	@classmethod
	def error(cls, message: str) -> "StreamEvent":
		return cls(type=ERROR, message=message)

	def to_payload(self) -> Dict[str, Any]:
		"""Return the JSON object the browser receives."""
		payload: Dict[str, Any] = {"type": self.type}
		if self.type == CHUNK:
			payload["content"] = self.content or ""
		elif self.type == ERROR:
			payload["message"] = self.message or ""
		return payload

	def to_frame(self) -> str:
		"""Serialize as a single Server-Sent-Events message."""
		return f"data: {json.dumps(self.to_payload())}\n\n"
