"""
ConversationAnalyzer: asks the LLM whether an agent should join in.

The model answers with a JSON object:

    {"shouldEngage": true, "reason": "...", "relevance": 0.8}

Anything that goes wrong (missing credential, transport error, empty or
unparseable answer) degrades to "do not engage" with relevance 0. The
analyzer never raises.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

from chime.core.config import EngagementConfig
from chime.core.parsing import parse_json_object
from chime.core.types import ChatMessage, SystemMessage, UserMessage
from chime.llm.base import ProviderFactory
from chime.store.records import Agent

logger = logging.getLogger(__name__)

PARSE_FAILURE_REASON = "Failed to parse AI analysis"

ANALYSIS_SYSTEM_PROMPT = (
    "You are a conversation analysis agent. Respond with ONLY valid JSON - "
    "no markdown formatting, no code blocks, just pure JSON."
)


@dataclass(frozen=True, slots=True)
class EngagementAnalysis:
    should_engage: bool
    reason: str
    relevance: float
    failed: bool = False

    @classmethod
    def failure(cls, reason: str) -> EngagementAnalysis:
        return cls(should_engage=False, reason=reason, relevance=0.0, failed=True)


def build_analysis_prompt(agent: Agent, messages: list[ChatMessage]) -> str:
    conversation = "\n".join(f"{m.role.value}: {m.content}" for m in messages)
    return f"""You are a conversation analysis agent. Your job is to determine if a bot named "{agent.name}" should engage in this conversation.

CONVERSATION CONTEXT:
{conversation}
BOT CONTEXT:
{agent.context}

ANALYSIS CRITERIA:
- Direct mentions of the bot name
- Unanswered questions targeting the bot or general requests for help
- Conversation lulls where engagement would be valuable
- Topics the bot could meaningfully contribute to
- Whether the conversation needs assistance or guidance
- If there's a natural opportunity for the bot to add value

RESPONSE FORMAT:
Respond with a JSON object containing:
{{
  "shouldEngage": true/false,
  "reason": "Brief explanation of why the bot should or shouldn't engage",
  "relevance": How relevant the engagement is to the conversation regarding the bot context (0.0-1.0)
}}

Be concise but specific in your reasoning. Consider the conversation flow, timing, and context."""


def parse_analysis(text: str) -> EngagementAnalysis:
    """Interpret the model's answer. Unparseable input becomes a failure."""
    data = parse_json_object(text)
    if data is None:
        return EngagementAnalysis.failure(PARSE_FAILURE_REASON)

    reason = data.get("reason")
    return EngagementAnalysis(
        should_engage=data.get("shouldEngage") is True,
        reason=reason if isinstance(reason, str) and reason else "No reason provided",
        relevance=_coerce_relevance(data.get("relevance")),
    )


def _coerce_relevance(value: object) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0.0
    if math.isnan(value):
        return 0.0
    return min(max(float(value), 0.0), 1.0)


class ConversationAnalyzer:
    """
    LLM-backed engagement analysis.

    Usage:
        analyzer = ConversationAnalyzer(provider_factory)
        analysis = await analyzer.analyze(agent, history)
    """

    def __init__(
        self,
        providers: ProviderFactory,
        config: EngagementConfig | None = None,
    ) -> None:
        self._providers = providers
        self._config = config if config is not None else EngagementConfig()

    async def analyze(self, agent: Agent, messages: list[ChatMessage]) -> EngagementAnalysis:
        window = messages[-self._config.prompt_window:]
        try:
            llm = self._providers(agent)
            completion = await llm.complete(
                [
                    SystemMessage(ANALYSIS_SYSTEM_PROMPT),
                    UserMessage(build_analysis_prompt(agent, window)),
                ],
                model=self._config.model,
                temperature=self._config.temperature,
                max_tokens=self._config.max_tokens,
                json_mode=True,
            )
            if not completion.text.strip():
                raise ValueError("No response from the model")
        except Exception as e:
            logger.warning(f"Engagement analysis for {agent.name!r} failed: {e}")
            return EngagementAnalysis.failure(f"Analysis failed: {e}")

        analysis = parse_analysis(completion.text)
        if analysis.failed:
            logger.warning(f"Unparseable engagement analysis: {completion.text[:200]!r}")
        return analysis
