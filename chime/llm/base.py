"""
LLM Provider interface — the contract every LLM backend must implement.

The engagement analyzer and the reply loop call these methods. They never
know which specific LLM is behind the interface.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, AsyncIterator, Callable

from chime.core.types import ChatMessage, Completion, LLMChunk, ToolSpec

if TYPE_CHECKING:
    from chime.store.records import Agent


class LLMProvider(ABC):
    """
    Abstract base class for LLM providers.

    Implementations:
        OpenAIProvider — any OpenAI-compatible chat completions endpoint
        MockLLMProvider — for testing
    """

    @abstractmethod
    async def generate(
        self,
        messages: list[ChatMessage],
        tools: list[ToolSpec] | None = None,
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int | None = None,
        json_mode: bool = False,
    ) -> AsyncIterator[LLMChunk]:
        """
        Generate a response from the LLM.

        Args:
            messages: Conversation history
            tools: Tools the LLM may call (optional)
            model: Model identifier (None = provider default)
            temperature: Randomness (0.0 = deterministic, 1.0 = creative)
            max_tokens: Maximum tokens to generate (None = model default)
            json_mode: Constrain the output to a single JSON object

        Yields:
            LLMChunk objects with text and/or tool calls.
            The LAST chunk has stop_reason set.

        Raises:
            LLMError: On API failures, rate limits, connection errors
        """
        ...

    async def complete(
        self,
        messages: list[ChatMessage],
        tools: list[ToolSpec] | None = None,
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int | None = None,
        json_mode: bool = False,
    ) -> Completion:
        """Collect a full generate() stream into one Completion."""
        completion = Completion()
        parts: list[str] = []
        async for chunk in self.generate(
            messages=messages,
            tools=tools,
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
            json_mode=json_mode,
        ):
            if chunk.text:
                parts.append(chunk.text)
            if chunk.tool_calls:
                completion.tool_calls.extend(chunk.tool_calls)
            if chunk.stop_reason:
                completion.stop_reason = chunk.stop_reason
                completion.input_tokens = chunk.input_tokens
                completion.output_tokens = chunk.output_tokens
        completion.text = "".join(parts)
        return completion

    async def close(self) -> None:
        """Release network resources."""
        pass


# Agents carry their own credentials, so providers are built per agent.
# Factories raise ConfigError when the agent cannot be served.
ProviderFactory = Callable[["Agent"], LLMProvider]
