"""
Scheduler Job — the core data model.

A Job is a durable, time-triggered deferred action: send a text, an image
or a video to the owning agent's delivery target at due_at.

Lifecycle:
    created (active=True) → fired → executed (active=False)
    created (active=True) → cancelled (active=False)

Nothing ever flips active back to True.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum


class JobKind(str, Enum):
    """What a job delivers when it fires."""

    TEXT = "TEXT"
    IMAGE = "IMAGE"
    VIDEO = "VIDEO"
    PROMPT = "PROMPT"  # delivered as TEXT for now


@dataclass
class Job:
    """A deferred action."""

    kind: JobKind
    payload: str          # message text, or media file name for legacy media jobs
    due_at: float         # unix timestamp

    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    owner_id: str | None = None   # owning agent; None for legacy jobs
    active: bool = True
    created_at: float = field(default_factory=time.time)

    def __post_init__(self) -> None:
        self.kind = JobKind(self.kind)

    def delay(self, now: float | None = None) -> float:
        """Seconds until due; 0 when already overdue."""
        return max(self.due_at - (now if now is not None else time.time()), 0.0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "payload": self.payload,
            "due_at": self.due_at,
            "owner_id": self.owner_id,
            "active": self.active,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "Job":
        return cls(
            id=d["id"],
            kind=JobKind(d["kind"]),
            payload=d["payload"],
            due_at=float(d["due_at"]),
            owner_id=d.get("owner_id"),
            active=bool(d["active"]),
            created_at=float(d["created_at"]),
        )
