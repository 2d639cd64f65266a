"""
Reply Loop — the think → act → observe cycle behind every reply.

For one inbound turn the loop:
1. Builds the system prompt for the agent
2. Asks the LLM for a completion, offering the reply tools (think)
3. Runs every requested tool call of the round concurrently (act)
4. Appends the results in call order and asks again (observe)
5. Stops on the first tool-free answer, or when the round limit is reached

The returned text is always display-ready: a JSON answer carrying a
"message" field is unwrapped.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Callable
from zoneinfo import ZoneInfo

from chime.core.config import ReplyConfig
from chime.core.errors import ConfigError
from chime.core.parsing import parse_json_object
from chime.core.types import (
    AssistantMessage,
    ChatMessage,
    SystemMessage,
    ToolCall,
    ToolMessage,
    ToolResult,
    UserMessage,
)
from chime.llm.base import LLMProvider, ProviderFactory
from chime.reply.prompts import LIMIT_NUDGE, build_system_prompt
from chime.reply.tools import ReplyToolbox
from chime.store.base import PersistenceGateway
from chime.store.records import Agent

logger = logging.getLogger(__name__)


def extract_reply_text(raw: str) -> str:
    """Unwrap {"message": "..."} answers; anything else is returned as is."""
    data = parse_json_object(raw)
    if data is not None and isinstance(data.get("message"), str):
        return data["message"]
    return raw


def summarise_actions(actions: list[tuple[ToolCall, ToolResult]]) -> str:
    """Plain-text fallback when the model says nothing after its last tool round."""
    lines = ["Here is what I did:"]
    for call, result in actions:
        if result.success:
            lines.append(f"- {call.name}: done")
        else:
            lines.append(f"- {call.name}: failed ({result.error})")
    return "\n".join(lines)


class ReplyLoop:
    """
    Tool-augmented reply generation.

    Usage:
        loop = ReplyLoop(gateway, provider_factory, toolbox)
        history = await context_builder.build(agent.id)
        text = await loop.generate_reply(history, agent.id)

    Raises ConfigError before any LLM call when the agent is unknown or has
    no credential. Every other failure is logged and re-raised; callers
    choose their own fallback text.
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        providers: ProviderFactory,
        toolbox: ReplyToolbox,
        config: ReplyConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._gateway = gateway
        self._providers = providers
        self._toolbox = toolbox
        self._config = config if config is not None else ReplyConfig()
        self._tz = ZoneInfo(self._config.timezone)
        self._clock = clock

    async def generate_reply(self, history: list[ChatMessage], agent_id: str) -> str:
        agent = await self._gateway.get_agent(agent_id)
        if agent is None:
            raise ConfigError(f"Unknown agent: {agent_id}")
        if not agent.api_key:
            raise ConfigError(f"No API key configured for agent {agent.name!r}")
        llm = self._providers(agent)

        now = datetime.fromtimestamp(self._clock(), tz=timezone.utc)
        messages: list[ChatMessage] = [
            SystemMessage(build_system_prompt(agent, now, self._tz)),
            *history,
        ]

        try:
            raw = await self._run(llm, agent, messages)
        except Exception as e:
            logger.error(f"Reply generation for {agent.name!r} failed: {e}")
            raise
        return extract_reply_text(raw)

    async def _run(self, llm: LLMProvider, agent: Agent, messages: list[ChatMessage]) -> str:
        actions: list[tuple[ToolCall, ToolResult]] = []

        for iteration in range(1, self._config.max_iterations + 1):
            completion = await llm.complete(
                messages,
                tools=self._toolbox.specs,
                model=agent.model or None,
                temperature=self._config.temperature,
            )
            if not completion.wants_tools:
                logger.debug(f"Reply for {agent.name!r} finished after {iteration} round(s)")
                return completion.text

            calls = completion.tool_calls
            messages.append(AssistantMessage(content=completion.text or None, tool_calls=calls))

            # gather() keeps results in call order
            results = await asyncio.gather(
                *(self._toolbox.execute(call, agent) for call in calls)
            )
            for call, result in zip(calls, results):
                messages.append(ToolMessage.from_result(result, call.name))
                actions.append((call, result))

        logger.info(
            f"Reply for {agent.name!r} hit the {self._config.max_iterations}-round limit, "
            f"forcing a final answer"
        )
        return await self._synthesise_on_limit(llm, agent, messages, actions)

    async def _synthesise_on_limit(
        self,
        llm: LLMProvider,
        agent: Agent,
        messages: list[ChatMessage],
        actions: list[tuple[ToolCall, ToolResult]],
    ) -> str:
        """
        One more completion without tools, so the model has to answer in text.

        If it still produces nothing, summarise the executed actions instead.
        """
        completion = await llm.complete(
            messages + [UserMessage(LIMIT_NUDGE)],
            tools=None,
            model=agent.model or None,
            temperature=self._config.temperature,
        )
        if completion.text.strip():
            return completion.text
        return summarise_actions(actions)
