"""
Persistence Gateway interface.

The durable store for jobs, conversation messages, agent configuration and
media records. It is the source of truth: the scheduler's in-process timer
registry is only a cache of what lives here.

Implementations:
    SQLiteGateway — file-based, default
    InMemoryGateway — for testing
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from chime.scheduler.job import Job
from chime.store.records import Agent, MediaRecord, StoredMessage


class PersistenceGateway(ABC):
    """
    Abstract base class for storage backends.

    Patch-style updates (update_job, update_agent) take keyword arguments
    naming the fields to change. Unknown fields are rejected with
    ValidationError, and agent patches enforce engagement_factor ∈ [0, 1].
    """

    async def initialize(self) -> None:
        """Prepare the backend (create tables, open connections)."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close the backend."""
        ...

    # ━━━ Jobs ━━━

    @abstractmethod
    async def find_jobs(
        self,
        active: bool | None = None,
        owner_id: str | None = None,
    ) -> list[Job]:
        """Jobs matching the filter, ordered by due_at ascending."""
        ...

    @abstractmethod
    async def get_job(self, job_id: str) -> Job | None:
        ...

    @abstractmethod
    async def create_job(self, job: Job) -> Job:
        ...

    @abstractmethod
    async def update_job(self, job_id: str, **patch: Any) -> Job:
        """Apply patch and return the updated job. Raises StorageError if missing."""
        ...

    @abstractmethod
    async def delete_job(self, job_id: str) -> bool:
        """Hard-delete a job and its media records. Returns True if it existed."""
        ...

    # ━━━ Messages ━━━

    @abstractmethod
    async def find_messages(
        self,
        agent_id: str,
        limit: int = 100,
        newest_first: bool = True,
    ) -> list[StoredMessage]:
        """
        Messages for an agent ordered by created_at.

        limit always selects the NEWEST messages; newest_first only controls
        the order they are returned in.
        """
        ...

    @abstractmethod
    async def create_message(self, message: StoredMessage) -> StoredMessage:
        ...

    @abstractmethod
    async def delete_message(self, message_id: str) -> bool:
        ...

    # ━━━ Agents ━━━

    @abstractmethod
    async def get_agent(self, agent_id: str) -> Agent | None:
        ...

    @abstractmethod
    async def find_agents(
        self,
        linked_only: bool = False,
        active_only: bool = False,
    ) -> list[Agent]:
        """Agents ordered by created_at ascending."""
        ...

    @abstractmethod
    async def find_agent_by_chat(self, chat_id: str) -> Agent | None:
        """The active agent linked to a delivery target, if any."""
        ...

    @abstractmethod
    async def create_agent(self, agent: Agent) -> Agent:
        ...

    @abstractmethod
    async def update_agent(self, agent_id: str, **patch: Any) -> Agent:
        """Apply patch and return the updated agent. Raises StorageError if missing."""
        ...

    # ━━━ Media ━━━

    @abstractmethod
    async def find_media(self, job_id: str, kind: str) -> MediaRecord | None:
        ...

    @abstractmethod
    async def create_media(self, media: MediaRecord) -> MediaRecord:
        ...
