"""Test fixtures and fakes for the chat relay."""
import asyncio
import json
from typing import Dict, List, Optional

import pytest

from services.chat.errors import UpstreamError
from services.chat.push_channel import KEEPALIVE_FRAME, ChannelManager, PushChannel
from services.chat.relay import CompletionRelay
from services.chat.session_registry import SessionRegistry


def data_line(content: str) -> str:
    return "data: " + json.dumps({"choices": [{"delta": {"content": content}}]})


class FakeStream:
    """Upstream body that yields canned lines, optionally failing or pausing."""

    def __init__(self, lines: List[str], fail_at: Optional[int] = None, gate_at: Optional[int] = None):
        self._lines = lines
        self.fail_at = fail_at
        self.gate_at = gate_at
        self.gate = asyncio.Event()
        self.closed = False

    async def lines(self):
        for index, line in enumerate(self._lines):
            if index == self.gate_at:
                await self.gate.wait()
            if index == self.fail_at:
                raise UpstreamError("connection reset by peer")
            await asyncio.sleep(0)
            yield line

    async def aclose(self):
        self.closed = True


class FakeUpstream:
    """Records every request and hands out the queued streams in order."""

    def __init__(self, *streams: FakeStream, error: Optional[Exception] = None):
        self.streams = list(streams)
        self.error = error
        self.calls: List[List[Dict[str, str]]] = []

    async def open_stream(self, messages):
        self.calls.append([dict(m) for m in messages])
        if self.error is not None:
            raise self.error
        return self.streams.pop(0)


def drain_events(channel: PushChannel) -> List[dict]:
    """Pop every queued frame and decode its JSON payload."""
    events = []
    while not channel._queue.empty():
        frame = channel._queue.get_nowait()
        if frame == KEEPALIVE_FRAME:
            continue
        assert frame.startswith("data: ") and frame.endswith("\n\n")
        events.append(json.loads(frame[len("data: "):]))
    return events


@pytest.fixture
def registry():
    return SessionRegistry()


@pytest.fixture
def manager(registry):
    return ChannelManager(registry, keepalive_seconds=0.01)


@pytest.fixture
def make_relay(registry, manager):
    def _make(upstream):
        return CompletionRelay(registry, manager, upstream)
    return _make
