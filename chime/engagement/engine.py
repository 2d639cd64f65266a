"""
EngagementEngine: decides whether an agent replies to an inbound message.

Order of checks:
    1. agent name mentioned as a whole word → engage (no LLM call)
    2. no stored history → stay silent
    3. fresh cached decision for this conversation tail → reuse it
    4. LLM analysis, then a probabilistic gate on the agent's
       engagement_factor (skipped when relevance is exactly 1.0)

Errors anywhere in the pipeline resolve to "do not engage".
"""

from __future__ import annotations

import logging
import random
import re
from dataclasses import dataclass

from chime.context.builder import ConversationContextBuilder
from chime.core.config import EngagementConfig
from chime.engagement.analyzer import ConversationAnalyzer
from chime.engagement.cache import EngagementCache
from chime.store.records import Agent

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class EngagementDecision:
    engage: bool
    reason: str
    source: str  # "mention", "no_history", "cache", "analysis", "error"
    relevance: float | None = None


def mentions(text: str, name: str) -> bool:
    """True if name appears in text as a whole word, ignoring case."""
    if not name:
        return False
    return re.search(rf"\b{re.escape(name)}\b", text, re.IGNORECASE) is not None


class EngagementEngine:
    """
    Stateful engagement gate.

    The cache and the random source belong to the instance; pass a seeded
    random.Random to make the probabilistic gate reproducible.
    """

    def __init__(
        self,
        context: ConversationContextBuilder,
        analyzer: ConversationAnalyzer,
        cache: EngagementCache | None = None,
        config: EngagementConfig | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._context = context
        self._analyzer = analyzer
        self._config = config if config is not None else EngagementConfig()
        self._cache = (
            cache if cache is not None else EngagementCache(ttl=self._config.cache_ttl)
        )
        self._rng = rng if rng is not None else random.Random()

    @property
    def cache(self) -> EngagementCache:
        return self._cache

    async def should_engage(self, text: str, agent: Agent) -> bool:
        return (await self.decide(text, agent)).engage

    async def decide(self, text: str, agent: Agent) -> EngagementDecision:
        try:
            return await self._decide(text, agent)
        except Exception as e:
            logger.warning(f"Engagement decision for {agent.name!r} failed: {e}")
            return EngagementDecision(engage=False, reason=str(e), source="error")

    async def _decide(self, text: str, agent: Agent) -> EngagementDecision:
        if mentions(text, agent.name):
            logger.info(f"{agent.name} engaging: mentioned by name")
            return EngagementDecision(engage=True, reason="Mentioned by name", source="mention")

        history = await self._context.build(
            agent.id, limit=self._config.history_window, agent=agent
        )
        if not history:
            return EngagementDecision(engage=False, reason="No history", source="no_history")

        key = EngagementCache.make_key(agent.id, history[-self._config.cache_key_window:])
        cached = self._cache.get(key)
        if cached is not None:
            logger.debug(f"Using cached engagement decision for {agent.name}: {cached.reason}")
            return EngagementDecision(engage=cached.engage, reason=cached.reason, source="cache")

        analysis = await self._analyzer.analyze(agent, history)
        engage = analysis.should_engage
        if engage and analysis.relevance != 1.0:
            engage = self._rng.random() < agent.engagement_factor

        if engage:
            logger.info(f"{agent.name} engaging (relevance {analysis.relevance}): {analysis.reason}")
        elif analysis.should_engage:
            logger.info(f"{agent.name} not engaging by chance: {analysis.reason}")
        else:
            logger.info(f"{agent.name} not engaging: {analysis.reason}")

        if not analysis.failed or self._config.cache_failures:
            self._cache.put(key, engage, analysis.reason)

        return EngagementDecision(
            engage=engage,
            reason=analysis.reason,
            source="analysis",
            relevance=analysis.relevance,
        )
