"""Tests for chime/llm/openai.py and chime/llm/images.py over a mocked HTTP transport."""
from __future__ import annotations

import json

import httpx
import pytest

from chime.core.errors import ConfigError, LLMError
from chime.core.types import AssistantMessage, SystemMessage, ToolCall, ToolMessage, UserMessage
from chime.llm.images import OpenAIImageGenerator
from chime.llm.openai import OpenAIProvider, OpenAIProviderPool
from chime.reply.tools import TOOL_SPECS
from chime.store.records import Agent


def completion_body(content=None, tool_calls=None, finish="stop"):
    message = {"role": "assistant", "content": content}
    if tool_calls:
        message["tool_calls"] = tool_calls
    return {
        "choices": [{"message": message, "finish_reason": finish}],
        "usage": {"prompt_tokens": 12, "completion_tokens": 3},
    }


class Recorder:
    """httpx handler that answers with a canned response and keeps the requests."""

    def __init__(self, status=200, body=None):
        self.status = status
        self.body = body if body is not None else completion_body("hello")
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status, json=self.body)

    @property
    def last_json(self):
        return json.loads(self.requests[-1].content)


def provider_for(recorder, **kwargs):
    return OpenAIProvider(api_key="sk-test", transport=httpx.MockTransport(recorder), **kwargs)


@pytest.mark.asyncio
class TestOpenAIProvider:
    async def test_text_completion(self):
        recorder = Recorder()
        provider = provider_for(recorder)

        completion = await provider.complete([UserMessage("hi")])

        assert completion.text == "hello"
        assert not completion.wants_tools
        assert completion.input_tokens == 12
        request = recorder.requests[0]
        assert request.url == "https://api.openai.com/v1/chat/completions"
        assert request.headers["Authorization"] == "Bearer sk-test"
        assert recorder.last_json["model"] == "gpt-4o"
        assert "tools" not in recorder.last_json
        await provider.close()

    async def test_json_mode_and_overrides(self):
        recorder = Recorder()
        provider = provider_for(recorder)

        await provider.complete(
            [SystemMessage("sys"), UserMessage("hi")],
            model="gpt-4o-mini",
            temperature=0.3,
            max_tokens=200,
            json_mode=True,
        )

        body = recorder.last_json
        assert body["model"] == "gpt-4o-mini"
        assert body["temperature"] == 0.3
        assert body["max_tokens"] == 200
        assert body["response_format"] == {"type": "json_object"}
        assert body["messages"] == [
            {"role": "system", "content": "sys"},
            {"role": "user", "content": "hi"},
        ]

    async def test_tools_and_tool_calls(self):
        recorder = Recorder(
            body=completion_body(
                tool_calls=[
                    {
                        "id": "call_1",
                        "type": "function",
                        "function": {"name": "getCurrentEngagement", "arguments": "{}"},
                    },
                    {
                        "id": "call_2",
                        "type": "function",
                        "function": {"name": "createTask", "arguments": "{not json"},
                    },
                ],
                finish="tool_calls",
            )
        )
        provider = provider_for(recorder)

        completion = await provider.complete([UserMessage("hi")], tools=TOOL_SPECS)

        assert recorder.last_json["tool_choice"] == "auto"
        assert recorder.last_json["tools"][0]["function"]["name"] == "createTask"
        assert [c.id for c in completion.tool_calls] == ["call_1", "call_2"]
        assert completion.tool_calls[0].arguments == {}
        assert completion.tool_calls[1].arguments == {"_raw": "{not json"}

    async def test_tool_round_messages_are_converted(self):
        recorder = Recorder()
        provider = provider_for(recorder)
        call = ToolCall(id="call_1", name="getCurrentEngagement", arguments={})

        await provider.complete(
            [
                UserMessage("hi"),
                AssistantMessage(tool_calls=[call]),
                ToolMessage(tool_call_id="call_1", content='{"success": true}'),
            ]
        )

        assistant, tool = recorder.last_json["messages"][1:]
        assert assistant["role"] == "assistant"
        assert assistant["tool_calls"][0]["id"] == "call_1"
        assert assistant["tool_calls"][0]["function"]["arguments"] == "{}"
        assert tool == {"role": "tool", "tool_call_id": "call_1", "content": '{"success": true}'}

    async def test_image_message_uses_content_parts(self):
        recorder = Recorder()
        provider = provider_for(recorder)

        await provider.complete([UserMessage("Describe this", image_url="https://files.example/a.jpg")])

        [message] = recorder.last_json["messages"]
        assert message == {
            "role": "user",
            "content": [
                {"type": "text", "text": "Describe this"},
                {"type": "image_url", "image_url": {"url": "https://files.example/a.jpg"}},
            ],
        }

    @pytest.mark.parametrize("status,retryable", [(400, False), (429, True), (503, True)])
    async def test_http_errors(self, status, retryable):
        provider = provider_for(Recorder(status=status, body={"error": "nope"}))
        with pytest.raises(LLMError) as exc:
            await provider.complete([UserMessage("hi")])
        assert exc.value.retryable is retryable

    async def test_malformed_body(self):
        provider = provider_for(Recorder(body={"choices": []}))
        with pytest.raises(LLMError, match="Malformed"):
            await provider.complete([UserMessage("hi")])

    async def test_connection_error(self):
        def refuse(request):
            raise httpx.ConnectError("refused", request=request)

        provider = OpenAIProvider(api_key="sk", transport=httpx.MockTransport(refuse))
        with pytest.raises(LLMError) as exc:
            await provider.complete([UserMessage("hi")])
        assert exc.value.retryable is True

    async def test_requires_key(self):
        with pytest.raises(ConfigError):
            OpenAIProvider(api_key="")


class TestProviderPool:
    def test_one_provider_per_key(self):
        pool = OpenAIProviderPool()
        a = pool(Agent(name="A", api_key="k1"))
        b = pool(Agent(name="B", api_key="k1"))
        c = pool(Agent(name="C", api_key="k2", model="gpt-4o-mini"))
        assert a is b
        assert c is not a
        assert c.model == "gpt-4o-mini"

    def test_missing_key(self):
        with pytest.raises(ConfigError):
            OpenAIProviderPool()(Agent(name="A"))


@pytest.mark.asyncio
class TestOpenAIImageGenerator:
    async def test_returns_url(self):
        recorder = Recorder(body={"data": [{"url": "https://img.example/1.png"}]})
        images = OpenAIImageGenerator(api_key="sk", transport=httpx.MockTransport(recorder))

        assert await images.generate("a hut") == "https://img.example/1.png"
        assert recorder.requests[0].url.path == "/v1/images/generations"
        assert recorder.last_json == {"model": "dall-e-2", "prompt": "a hut", "n": 1, "size": "512x512"}
        await images.close()

    async def test_empty_result(self):
        images = OpenAIImageGenerator(api_key="sk", transport=httpx.MockTransport(Recorder(body={"data": []})))
        with pytest.raises(LLMError, match="no image"):
            await images.generate("a hut")

    async def test_api_error(self):
        recorder = Recorder(status=400, body={"error": {"message": "policy"}})
        images = OpenAIImageGenerator(api_key="sk", transport=httpx.MockTransport(recorder))
        with pytest.raises(LLMError):
            await images.generate("a hut")
