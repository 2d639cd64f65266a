"""
Mock collaborators for testing.

Return configurable responses without making any API calls.
Track all calls for test assertions.
"""

from __future__ import annotations

from typing import AsyncIterator

from chime.core.types import ChatMessage, LLMChunk, StopReason, ToolCall, ToolSpec
from chime.llm.base import LLMProvider
from chime.llm.images import ImageGenerator


class MockLLMProvider(LLMProvider):
    """
    Mock LLM that returns pre-configured responses.

    Usage in tests:
        mock = MockLLMProvider()
        mock.set_response("Hello, world!")

        completion = await mock.complete([UserMessage("hi")])
        assert completion.text == "Hello, world!"
        assert mock.call_count == 1

    For tool call testing:
        mock.set_tool_call("createTask", {"message": "Drink water", "date": "..."})

    For failure testing:
        mock.set_error(LLMError("boom"))
    """

    def __init__(self) -> None:
        # Each generate() call pops the first queued response
        self._responses: list[list[LLMChunk] | Exception] = []

        self._default_response = "I'm a mock AI. Configure me with set_response()."
        self._repeat_tool_call: ToolCall | None = None

        # Call tracking
        self.call_count: int = 0
        self.last_messages: list[ChatMessage] = []
        self.last_tools: list[ToolSpec] | None = None
        self.all_calls: list[dict] = []

    def set_response(self, text: str) -> None:
        """Queue a text response for the next generate() call."""
        self._responses.append([
            LLMChunk(text=text),
            LLMChunk(
                stop_reason=StopReason.COMPLETE,
                input_tokens=len(text) // 4,
                output_tokens=len(text) // 4,
            ),
        ])

    def set_responses(self, texts: list[str]) -> None:
        """Queue multiple text responses for successive generate() calls."""
        for text in texts:
            self.set_response(text)

    def set_tool_call(self, tool_name: str, arguments: dict, text_before: str = "") -> None:
        """Queue a single tool call response for the next generate() call."""
        self.set_tool_calls([(tool_name, arguments)], text_before=text_before)

    def set_tool_calls(
        self,
        calls: list[tuple[str, dict]],
        text_before: str = "",
    ) -> None:
        """Queue one response that requests several tool calls at once."""
        chunks = []
        if text_before:
            chunks.append(LLMChunk(text=text_before))
        chunks.append(
            LLMChunk(
                tool_calls=[ToolCall.new(name=name, arguments=args) for name, args in calls],
                stop_reason=StopReason.TOOL_USE,
                input_tokens=50,
                output_tokens=25,
            )
        )
        self._responses.append(chunks)

    def always_call_tool(self, tool_name: str, arguments: dict) -> None:
        """Answer every unqueued call with the same tool call, forever."""
        self._repeat_tool_call = ToolCall.new(name=tool_name, arguments=arguments)

    def set_error(self, error: Exception) -> None:
        """Make the next generate() call raise error."""
        self._responses.append(error)

    async def generate(
        self,
        messages: list[ChatMessage],
        tools: list[ToolSpec] | None = None,
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int | None = None,
        json_mode: bool = False,
    ) -> AsyncIterator[LLMChunk]:
        """Return queued response or default."""
        self.call_count += 1
        self.last_messages = list(messages)
        self.last_tools = tools
        self.all_calls.append(
            {
                "messages": list(messages),
                "tools": tools,
                "model": model,
                "temperature": temperature,
                "max_tokens": max_tokens,
                "json_mode": json_mode,
                "call_number": self.call_count,
            }
        )

        if self._responses:
            queued = self._responses.pop(0)
            if isinstance(queued, Exception):
                raise queued
            chunks = queued
        elif self._repeat_tool_call is not None:
            repeat = self._repeat_tool_call
            chunks = [
                LLMChunk(
                    tool_calls=[ToolCall.new(name=repeat.name, arguments=dict(repeat.arguments))],
                    stop_reason=StopReason.TOOL_USE,
                )
            ]
        else:
            chunks = [
                LLMChunk(text=self._default_response),
                LLMChunk(stop_reason=StopReason.COMPLETE, input_tokens=10),
            ]

        for chunk in chunks:
            yield chunk

    def reset(self) -> None:
        """Reset all state. Useful between tests."""
        self._responses.clear()
        self._repeat_tool_call = None
        self.call_count = 0
        self.last_messages = []
        self.last_tools = None
        self.all_calls = []


class MockImageGenerator(ImageGenerator):
    """Returns a fixed URL and records prompts."""

    def __init__(self, url: str = "https://images.example/generated.png") -> None:
        self._url = url
        self._error: Exception | None = None
        self.prompts: list[str] = []

    def set_error(self, error: Exception) -> None:
        self._error = error

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self._error is not None:
            raise self._error
        return self._url
