"""
OpenAI-compatible LLM Provider — talks to /chat/completions over httpx.

Works with api.openai.com and any server exposing the same API
(vLLM, LiteLLM, Ollama's /v1 endpoint, ...).

This provider:
- Sends tool declarations in the "function" tool format
- Supports JSON-constrained output (response_format=json_object)
- Converts Chime chat messages ↔ OpenAI message dicts
- Maps transport failures and non-200 responses to LLMError
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator

import httpx

from chime.core.errors import ConfigError, LLMError
from chime.core.types import (
    AssistantMessage,
    ChatMessage,
    LLMChunk,
    StopReason,
    SystemMessage,
    ToolCall,
    ToolMessage,
    ToolSpec,
    UserMessage,
)
from chime.llm.base import LLMProvider
from chime.store.records import Agent

logger = logging.getLogger(__name__)


class OpenAIProvider(LLMProvider):
    """
    LLM provider for OpenAI-compatible endpoints.

    Usage:
        provider = OpenAIProvider(api_key="sk-...", model="gpt-4o")

        completion = await provider.complete([UserMessage("Hello")])
        print(completion.text)
    """

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o",
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not api_key:
            raise ConfigError("An API key is required for the OpenAI provider")
        self._api_key = api_key
        self._model = model
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def model(self) -> str:
        return self._model

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                headers={"Authorization": f"Bearer {self._api_key}"},
                timeout=httpx.Timeout(self._timeout, connect=10.0),
                transport=self._transport,
            )
        return self._client

    async def generate(
        self,
        messages: list[ChatMessage],
        tools: list[ToolSpec] | None = None,
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int | None = None,
        json_mode: bool = False,
    ) -> AsyncIterator[LLMChunk]:
        """Request one completion and yield it as chunks."""
        client = await self._get_client()
        model_name = model or self._model

        payload: dict[str, Any] = {
            "model": model_name,
            "messages": [self._convert_message(m) for m in messages],
            "temperature": temperature,
        }
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens
        if json_mode:
            payload["response_format"] = {"type": "json_object"}
        if tools:
            payload["tools"] = [self._convert_tool_spec(t) for t in tools]
            payload["tool_choice"] = "auto"

        try:
            response = await client.post("/chat/completions", json=payload)
        except httpx.ConnectError as e:
            raise LLMError(
                f"Cannot connect to {self._base_url}: {e}",
                provider="openai",
                model=model_name,
                retryable=True,
            ) from e
        except httpx.TimeoutException as e:
            raise LLMError(
                f"Completion request timed out: {e}",
                provider="openai",
                model=model_name,
                retryable=True,
            ) from e
        except httpx.HTTPError as e:
            raise LLMError(
                f"HTTP error talking to {self._base_url}: {e}",
                provider="openai",
                model=model_name,
            ) from e

        if response.status_code != 200:
            raise LLMError(
                f"Completion API error ({response.status_code}): {response.text}",
                provider="openai",
                model=model_name,
                retryable=response.status_code == 429 or response.status_code >= 500,
            )

        try:
            data = response.json()
            choice = data["choices"][0]
            message = choice.get("message") or {}
        except (ValueError, KeyError, IndexError) as e:
            raise LLMError(
                f"Malformed completion response: {e}",
                provider="openai",
                model=model_name,
            ) from e

        usage = data.get("usage") or {}
        input_tokens = usage.get("prompt_tokens", 0)
        output_tokens = usage.get("completion_tokens", 0)

        content = message.get("content") or ""
        if content:
            yield LLMChunk(text=content)

        tool_calls = [self._parse_tool_call(tc) for tc in message.get("tool_calls") or []]
        if tool_calls:
            yield LLMChunk(
                tool_calls=tool_calls,
                stop_reason=StopReason.TOOL_USE,
                input_tokens=input_tokens,
                output_tokens=output_tokens,
            )
            return

        finish = choice.get("finish_reason")
        yield LLMChunk(
            stop_reason=StopReason.MAX_TOKENS if finish == "length" else StopReason.COMPLETE,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    # ━━━ Format Conversion ━━━

    @staticmethod
    def _convert_message(msg: ChatMessage) -> dict[str, Any]:
        """Convert a Chime chat message to OpenAI message format."""
        match msg:
            case SystemMessage(content=content):
                return {"role": "system", "content": content}
            case UserMessage(content=content, image_url=None):
                return {"role": "user", "content": content}
            case UserMessage(content=content, image_url=url):
                return {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": content},
                        {"type": "image_url", "image_url": {"url": url}},
                    ],
                }
            case AssistantMessage(content=content, tool_calls=tool_calls):
                result: dict[str, Any] = {"role": "assistant", "content": content or ""}
                if tool_calls:
                    result["tool_calls"] = [
                        {
                            "id": tc.id,
                            "type": "function",
                            "function": {
                                "name": tc.name,
                                "arguments": json.dumps(tc.arguments),
                            },
                        }
                        for tc in tool_calls
                    ]
                return result
            case ToolMessage(tool_call_id=tool_call_id, content=content):
                return {"role": "tool", "tool_call_id": tool_call_id, "content": content}
        raise TypeError(f"Not a chat message: {msg!r}")

    @staticmethod
    def _convert_tool_spec(spec: ToolSpec) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": spec.name,
                "description": spec.description,
                "parameters": spec.parameters,
            },
        }

    @staticmethod
    def _parse_tool_call(raw: dict[str, Any]) -> ToolCall:
        func = raw.get("function") or {}
        arguments = func.get("arguments") or {}
        if isinstance(arguments, str):
            try:
                arguments = json.loads(arguments) if arguments.strip() else {}
            except json.JSONDecodeError:
                # Let the tool executor report the bad arguments back to the model
                arguments = {"_raw": arguments}
        call = ToolCall.new(name=func.get("name", ""), arguments=arguments)
        if raw.get("id"):
            call.id = raw["id"]
        return call


class OpenAIProviderPool:
    """
    Builds one OpenAIProvider per agent credential and reuses it.

    Usable anywhere a ProviderFactory is expected:
        pool = OpenAIProviderPool(base_url=config.llm.base_url)
        llm = pool(agent)   # ConfigError if the agent has no API key
    """

    def __init__(
        self,
        base_url: str = "https://api.openai.com/v1",
        default_model: str = "gpt-4o",
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url
        self._default_model = default_model
        self._timeout = timeout
        self._transport = transport
        self._providers: dict[str, OpenAIProvider] = {}

    def __call__(self, agent: Agent) -> OpenAIProvider:
        if not agent.api_key:
            raise ConfigError(f"No API key configured for agent {agent.name!r}")
        provider = self._providers.get(agent.api_key)
        if provider is None:
            provider = OpenAIProvider(
                api_key=agent.api_key,
                model=agent.model or self._default_model,
                base_url=self._base_url,
                timeout=self._timeout,
                transport=self._transport,
            )
            self._providers[agent.api_key] = provider
        return provider

    async def close(self) -> None:
        for provider in self._providers.values():
            await provider.close()
        self._providers.clear()
