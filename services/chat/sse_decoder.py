"""Decode the `data:` framed stream returned by chat-completions endpoints."""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterable, AsyncIterator, Optional

from services.chat.errors import ChunkParseError

LOGGER = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"


async def iter_data_lines(lines: AsyncIterable[str]) -> AsyncIterator[str]:
	"""Yield the payload of every `data:` line up to the `[DONE]` sentinel.

	Blank lines, `:` comments and other SSE fields (`event:`, `id:`) carry no
	completion text and are skipped.
	"""
	async for raw in lines:
		line = raw.rstrip("\r\n")
		if not line.startswith(DATA_PREFIX):
			continue
		data = line[len(DATA_PREFIX):]
		if data.startswith(" "):
			data = data[1:]
		if data.strip() == DONE_SENTINEL:
			return
		yield data


def extract_delta(record: Any) -> Optional[str]:
	"""Return `choices[0].delta.content` if the record carries text."""
	if not isinstance(record, dict):
		return None
	choices = record.get("choices")
	if not isinstance(choices, list) or not choices:
		return None
	first = choices[0]
	if not isinstance(first, dict):
		return None
	delta = first.get("delta")
	if not isinstance(delta, dict):
		return None
	content = delta.get("content")
	return content if isinstance(content, str) and content else None


def parse_record(data: str) -> Any:
	try:
		return json.loads(data)
	except ValueError as exc:
		raise ChunkParseError(data, str(exc)) from exc


async def iter_deltas(lines: AsyncIterable[str]) -> AsyncIterator[str]:
	"""Yield text deltas in stream order, skipping records that fail to parse."""
	async for data in iter_data_lines(lines):
		try:
			record = parse_record(data)
		except ChunkParseError as exc:
			LOGGER.warning("Parse error (non-critical): %s", exc)
			continue
		content = extract_delta(record)
		if content:
			yield content
