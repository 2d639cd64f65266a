"""
Engagement decision cache.

Short-lived memo of gated engagement decisions, keyed by agent and the tail
of the conversation. Owned by the EngagementEngine instance that creates it.
"""

from __future__ import annotations

import hashlib
import json
import time
from dataclasses import dataclass
from typing import Callable

from chime.core.types import ChatMessage


@dataclass(frozen=True, slots=True)
class CachedDecision:
    engage: bool
    reason: str
    timestamp: float


class EngagementCache:
    """
    TTL map from cache key to decision.

    The clock is injectable so expiry can be tested without sleeping.
    Same-key writes are last-write-wins.
    """

    def __init__(
        self,
        ttl: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl
        self._clock = clock
        self._entries: dict[str, CachedDecision] = {}

    @staticmethod
    def make_key(agent_id: str, messages: list[ChatMessage]) -> str:
        """Key from the agent id and the rendered messages it was given."""
        raw = json.dumps(
            [{"role": m.role.value, "content": m.content} for m in messages],
            ensure_ascii=False,
        )
        return f"{agent_id}-{hashlib.sha256(raw.encode('utf-8')).hexdigest()}"

    def get(self, key: str) -> CachedDecision | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.timestamp >= self._ttl:
            del self._entries[key]
            return None
        return entry

    def put(self, key: str, engage: bool, reason: str) -> CachedDecision:
        self._prune()
        entry = CachedDecision(engage=engage, reason=reason, timestamp=self._clock())
        self._entries[key] = entry
        return entry

    def _prune(self) -> None:
        now = self._clock()
        expired = [k for k, v in self._entries.items() if now - v.timestamp >= self._ttl]
        for key in expired:
            del self._entries[key]

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
