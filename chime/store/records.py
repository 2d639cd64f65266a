"""
Persisted records other than jobs: agents, conversation messages, media.

Validation that guards the stored state lives here so both gateway
adapters enforce exactly the same rules.
"""

from __future__ import annotations

import math
import time
import uuid
from dataclasses import dataclass, field
from typing import Any

from chime.core.errors import ValidationError


def _new_id() -> str:
    return uuid.uuid4().hex[:12]


@dataclass
class Agent:
    """A configured conversational persona."""

    name: str
    api_key: str = ""
    model: str = ""
    context: str = ""
    document_summaries: list[str] = field(default_factory=list)
    engagement_factor: float = 0.5
    linked_chat_id: str | None = None
    is_active: bool = True
    id: str = field(default_factory=_new_id)
    created_at: float = field(default_factory=time.time)

    def __post_init__(self) -> None:
        self.engagement_factor = validate_engagement_factor(self.engagement_factor)


@dataclass
class StoredMessage:
    """One persisted conversation turn."""

    agent_id: str
    role: str  # "user", "assistant", "system"
    content: str
    author_name: str | None = None
    id: str = field(default_factory=_new_id)
    created_at: float = field(default_factory=time.time)


@dataclass
class MediaRecord:
    """A stored media file attached to an IMAGE or VIDEO job."""

    job_id: str
    kind: str  # "image", "video"
    path: str
    id: str = field(default_factory=_new_id)


MESSAGE_ROLES = frozenset({"user", "assistant", "system"})

AGENT_FIELDS = frozenset({
    "name", "api_key", "model", "context", "document_summaries",
    "engagement_factor", "linked_chat_id", "is_active",
})

JOB_FIELDS = frozenset({"kind", "payload", "due_at", "owner_id", "active"})


def validate_engagement_factor(value: Any) -> float:
    """
    Return value as a float in [0, 1].

    Raises ValidationError for anything else, including booleans and NaN.
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(
            f"engagement_factor must be a number between 0 and 1, got {value!r}",
            field="engagement_factor",
        )
    factor = float(value)
    if math.isnan(factor) or not 0.0 <= factor <= 1.0:
        raise ValidationError(
            f"engagement_factor must be between 0 and 1, got {factor}",
            field="engagement_factor",
        )
    return factor


def check_agent_patch(patch: dict[str, Any]) -> dict[str, Any]:
    """Validate an agent update before it touches storage."""
    unknown = set(patch) - AGENT_FIELDS
    if unknown:
        raise ValidationError(f"Unknown agent fields: {sorted(unknown)}")
    checked = dict(patch)
    if "engagement_factor" in checked:
        checked["engagement_factor"] = validate_engagement_factor(checked["engagement_factor"])
    return checked


def check_job_patch(patch: dict[str, Any]) -> dict[str, Any]:
    """Validate a job update before it touches storage. Jobs are never reactivated."""
    unknown = set(patch) - JOB_FIELDS
    if unknown:
        raise ValidationError(f"Unknown job fields: {sorted(unknown)}")
    if "active" in patch and patch["active"]:
        raise ValidationError("A job can only be deactivated", field="active")
    return dict(patch)


def check_message_role(role: str) -> str:
    if role not in MESSAGE_ROLES:
        raise ValidationError(f"Unsupported message role: {role!r}", field="role")
    return role
