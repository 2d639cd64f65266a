"""
Conversation context: stored history rendered for the LLM.

Each stored message becomes a chat message of the same role whose content
is a small JSON envelope:

    {"timestamp": "2025-01-01T09:00:00.000Z", "name": "Anna", "message": "hi"}

so the model sees who said what, and when, instead of a flat transcript.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

from chime.core.types import ChatMessage, Role, message_for_role
from chime.store.base import PersistenceGateway
from chime.store.records import Agent, StoredMessage

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 100


def format_timestamp(ts: float) -> str:
    """Unix seconds → ISO-8601 UTC with millisecond precision and a Z suffix."""
    dt = datetime.fromtimestamp(ts, tz=timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def author_label(message: StoredMessage, agent_name: str | None) -> str:
    if message.author_name:
        return message.author_name
    if message.role == Role.ASSISTANT.value:
        return agent_name or "Assistant"
    return "User"


def render_message(message: StoredMessage, agent_name: str | None) -> ChatMessage:
    envelope = {
        "timestamp": format_timestamp(message.created_at),
        "name": author_label(message, agent_name),
        "message": message.content,
    }
    return message_for_role(message.role, json.dumps(envelope, ensure_ascii=False))


class ConversationContextBuilder:
    """
    Builds the LLM-facing history for an agent.

    Usage:
        builder = ConversationContextBuilder(gateway)
        history = await builder.build(agent.id, limit=100)
    """

    def __init__(self, gateway: PersistenceGateway) -> None:
        self._gateway = gateway

    async def build(
        self,
        agent_id: str,
        limit: int = DEFAULT_LIMIT,
        agent: Agent | None = None,
    ) -> list[ChatMessage]:
        """
        The newest `limit` messages for agent_id, oldest first.

        Pass `agent` when the caller already holds it to skip the lookup.
        Storage errors propagate.
        """
        messages = await self._gateway.find_messages(agent_id, limit=limit, newest_first=False)
        if agent is None:
            agent = await self._gateway.get_agent(agent_id)
        agent_name = agent.name if agent else None
        logger.debug(f"Built context of {len(messages)} message(s) for agent {agent_id}")
        return [render_message(m, agent_name) for m in messages]
