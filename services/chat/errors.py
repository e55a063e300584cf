"""Error taxonomy for chat exchanges and push channels."""

from __future__ import annotations


class ChatRelayError(Exception):
	"""Base error; `status_code` is what the HTTP caller receives."""

	status_code = 500


class BadRequest(ChatRelayError):
	status_code = 400


class MissingSessionId(BadRequest):
	def __init__(self, message: str = "sessionId is required") -> None:
		super().__init__(message)


class NoChannel(ChatRelayError):
	"""Exchange submitted before the session opened its event stream."""

	status_code = 400

	def __init__(self, session_id: str) -> None:
		super().__init__("No SSE connection found for session")
		self.session_id = session_id


class UpstreamError(ChatRelayError):
	"""Completion API refused the request or the transport failed."""

	status_code = 500


class ChunkParseError(ChatRelayError):
	"""A single upstream data line could not be decoded. Never surfaced to clients."""

	def __init__(self, line: str, reason: str) -> None:
		super().__init__(f"Unparseable upstream chunk ({reason}): {line[:200]!r}")
		self.line = line
