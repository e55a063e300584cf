"""Streaming client for the upstream chat-completions API."""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack
from typing import AsyncIterator, Dict, List, Optional

import httpx
from openai import APIConnectionError, APIStatusError, AsyncOpenAI, OpenAIError

from services.chat.errors import UpstreamError

LOGGER = logging.getLogger(__name__)


class UpstreamStream:
	"""An open upstream response whose body is read line by line."""

	def __init__(self, response, stack: AsyncExitStack) -> None:
		self._response = response
		self._stack = stack

	async def lines(self) -> AsyncIterator[str]:
		try:
			async for line in self._response.iter_lines():
				yield line
		except (httpx.HTTPError, OpenAIError) as exc:
			raise UpstreamError(f"Upstream stream interrupted: {exc}") from exc

	async def aclose(self) -> None:
		await self._stack.aclose()


class CompletionUpstream:
	"""Start streamed chat completions against an OpenAI-compatible endpoint."""

	def __init__(
		self,
		client: AsyncOpenAI,
		*,
		model: str,
		max_tokens: int = 4000,
		referer: Optional[str] = None,
		title: Optional[str] = None,
	) -> None:
		if client is None:
			raise ValueError("AsyncOpenAI client is required.")
		self.client = client
		self.model = model
		self.max_tokens = max_tokens
		self.extra_headers: Dict[str, str] = {}
		if referer:
			self.extra_headers["HTTP-Referer"] = referer
		if title:
			self.extra_headers["X-Title"] = title

	async def open_stream(self, messages: List[Dict[str, str]]) -> UpstreamStream:
		"""Send the conversation and return the response once headers arrive.

		Raises UpstreamError for a non-success status or a connection failure;
		no body has been consumed at that point.
		"""
		stack = AsyncExitStack()
		try:
			response = await stack.enter_async_context(
				self.client.chat.completions.with_streaming_response.create(
					model=self.model,
					messages=messages,
					stream=True,
					max_tokens=self.max_tokens,
					extra_headers=self.extra_headers or None,
				)
			)
		except APIStatusError as exc:
			await stack.aclose()
			LOGGER.error("Upstream API error: status=%s message=%s", exc.status_code, exc.message)
			raise UpstreamError(f"Upstream API error: {exc.status_code} {exc.message}") from exc
		except (APIConnectionError, httpx.HTTPError) as exc:
			await stack.aclose()
			LOGGER.error("Upstream connection failed: %s", exc)
			raise UpstreamError(f"Upstream connection failed: {exc}") from exc
		return UpstreamStream(response, stack)
