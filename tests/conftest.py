"""Shared test fixtures for Chime."""

from __future__ import annotations

import pytest
import pytest_asyncio

from chime.core.config import ChimeConfig
from chime.core.errors import DeliveryError
from chime.delivery.base import DeliveryTransport
from chime.llm.mock import MockImageGenerator, MockLLMProvider
from chime.scheduler.timers import Callback, Timer, TimerHandle
from chime.store.memory import InMemoryGateway
from chime.store.records import Agent

NOW = 1_750_000_000.0  # fixed "current time" for scheduler tests


class FakeHandle(TimerHandle):
    def __init__(self, delay: float, callback: Callback) -> None:
        self.delay = delay
        self.callback = callback
        self._cancelled = False
        self._fired = False

    def cancel(self) -> None:
        if not self._fired:
            self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def fired(self) -> bool:
        return self._fired

    async def fire(self) -> None:
        self._fired = True
        await self.callback()


class FakeTimer(Timer):
    """Records armed timers; tests fire them by hand."""

    def __init__(self) -> None:
        self.handles: list[FakeHandle] = []
        self.shut_down = False

    def arm(self, delay: float, callback: Callback) -> FakeHandle:
        handle = FakeHandle(delay, callback)
        self.handles.append(handle)
        return handle

    @property
    def live(self) -> list[FakeHandle]:
        return [h for h in self.handles if not h.cancelled and not h.fired]

    async def fire_all(self) -> None:
        for handle in self.live:
            await handle.fire()

    async def shutdown(self) -> None:
        self.shut_down = True


class RecordingTransport(DeliveryTransport):
    """Delivery transport that records every send."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []  # (kind, target, text_or_ref)
        self.files: dict[str, str] = {}  # inbound file id -> URL
        self.error: Exception | None = None
        self.closed = False

    @property
    def name(self) -> str:
        return "recording"

    def _record(self, kind: str, target: str, value: str) -> None:
        if self.error is not None:
            raise self.error
        self.sent.append((kind, target, value))

    async def send_text(self, target: str, text: str, parse_mode: str | None = None) -> None:
        self._record("text", target, text)

    async def send_photo(self, target: str, ref: str) -> None:
        self._record("photo", target, ref)

    async def send_video(self, target: str, ref: str) -> None:
        self._record("video", target, ref)

    async def file_url(self, file_id: str) -> str | None:
        return self.files.get(file_id)

    def fail_with(self, message: str = "network down") -> None:
        self.error = DeliveryError(message)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def config():
    """Create a default config without loading from disk."""
    return ChimeConfig()


@pytest.fixture
def gateway():
    return InMemoryGateway()


@pytest.fixture
def timer():
    return FakeTimer()


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def mock_llm():
    """Create a mock LLM provider."""
    return MockLLMProvider()


@pytest.fixture
def mock_images():
    return MockImageGenerator()


@pytest.fixture
def providers(mock_llm):
    """Provider factory that serves every agent with the mock LLM."""
    return lambda agent: mock_llm


@pytest_asyncio.fixture
async def agent(gateway):
    """An active agent linked to chat 42."""
    return await gateway.create_agent(
        Agent(
            name="Ada",
            api_key="sk-test",
            context="Ada helps a hiking club plan trips.",
            engagement_factor=0.5,
            linked_chat_id="42",
            created_at=NOW - 1000,
        )
    )
