"""
In-memory persistence gateway for testing.

Simple dict-based storage. Data lost when process exits.
Returned records are copies, so callers can't mutate stored state
behind the gateway's back.
"""

from __future__ import annotations

import dataclasses
from typing import Any

from chime.core.errors import StorageError
from chime.scheduler.job import Job, JobKind
from chime.store.base import PersistenceGateway
from chime.store.records import (
    Agent,
    MediaRecord,
    StoredMessage,
    check_agent_patch,
    check_job_patch,
    check_message_role,
)


class InMemoryGateway(PersistenceGateway):
    """
    In-memory gateway for testing.

    Usage:
        gateway = InMemoryGateway()
        agent = await gateway.create_agent(Agent(name="Ada"))
        job = await gateway.create_job(Job(kind=JobKind.TEXT, payload="hi", due_at=t))
    """

    def __init__(self) -> None:
        self._jobs: dict[str, Job] = {}
        self._messages: dict[str, StoredMessage] = {}
        self._agents: dict[str, Agent] = {}
        self._media: dict[str, MediaRecord] = {}

    async def close(self) -> None:
        self._jobs.clear()
        self._messages.clear()
        self._agents.clear()
        self._media.clear()

    # ━━━ Jobs ━━━

    async def find_jobs(
        self,
        active: bool | None = None,
        owner_id: str | None = None,
    ) -> list[Job]:
        jobs = [
            j for j in self._jobs.values()
            if (active is None or j.active == active)
            and (owner_id is None or j.owner_id == owner_id)
        ]
        return [dataclasses.replace(j) for j in sorted(jobs, key=lambda j: j.due_at)]

    async def get_job(self, job_id: str) -> Job | None:
        job = self._jobs.get(job_id)
        return dataclasses.replace(job) if job else None

    async def create_job(self, job: Job) -> Job:
        if job.id in self._jobs:
            raise StorageError(f"Job {job.id} already exists")
        self._jobs[job.id] = dataclasses.replace(job)
        return dataclasses.replace(job)

    async def update_job(self, job_id: str, **patch: Any) -> Job:
        patch = check_job_patch(patch)
        job = self._jobs.get(job_id)
        if job is None:
            raise StorageError(f"Job {job_id} not found")
        if "kind" in patch:
            patch["kind"] = JobKind(patch["kind"])
        updated = dataclasses.replace(job, **patch)
        self._jobs[job_id] = updated
        return dataclasses.replace(updated)

    async def delete_job(self, job_id: str) -> bool:
        if job_id not in self._jobs:
            return False
        del self._jobs[job_id]
        for media_id in [m.id for m in self._media.values() if m.job_id == job_id]:
            del self._media[media_id]
        return True

    # ━━━ Messages ━━━

    async def find_messages(
        self,
        agent_id: str,
        limit: int = 100,
        newest_first: bool = True,
    ) -> list[StoredMessage]:
        owned = [m for m in self._messages.values() if m.agent_id == agent_id]
        newest = sorted(owned, key=lambda m: m.created_at, reverse=True)[:limit]
        if not newest_first:
            newest.reverse()
        return [dataclasses.replace(m) for m in newest]

    async def create_message(self, message: StoredMessage) -> StoredMessage:
        check_message_role(message.role)
        self._messages[message.id] = dataclasses.replace(message)
        return dataclasses.replace(message)

    async def delete_message(self, message_id: str) -> bool:
        return self._messages.pop(message_id, None) is not None

    # ━━━ Agents ━━━

    async def get_agent(self, agent_id: str) -> Agent | None:
        agent = self._agents.get(agent_id)
        return _copy_agent(agent) if agent else None

    async def find_agents(
        self,
        linked_only: bool = False,
        active_only: bool = False,
    ) -> list[Agent]:
        agents = [
            a for a in self._agents.values()
            if (not linked_only or a.linked_chat_id)
            and (not active_only or a.is_active)
        ]
        return [_copy_agent(a) for a in sorted(agents, key=lambda a: a.created_at)]

    async def find_agent_by_chat(self, chat_id: str) -> Agent | None:
        for agent in sorted(self._agents.values(), key=lambda a: a.created_at):
            if agent.is_active and agent.linked_chat_id == chat_id:
                return _copy_agent(agent)
        return None

    async def create_agent(self, agent: Agent) -> Agent:
        if agent.id in self._agents:
            raise StorageError(f"Agent {agent.id} already exists")
        self._agents[agent.id] = _copy_agent(agent)
        return _copy_agent(agent)

    async def update_agent(self, agent_id: str, **patch: Any) -> Agent:
        patch = check_agent_patch(patch)
        agent = self._agents.get(agent_id)
        if agent is None:
            raise StorageError(f"Agent {agent_id} not found")
        updated = dataclasses.replace(agent, **patch)
        self._agents[agent_id] = updated
        return _copy_agent(updated)

    # ━━━ Media ━━━

    async def find_media(self, job_id: str, kind: str) -> MediaRecord | None:
        for media in self._media.values():
            if media.job_id == job_id and media.kind == kind:
                return dataclasses.replace(media)
        return None

    async def create_media(self, media: MediaRecord) -> MediaRecord:
        self._media[media.id] = dataclasses.replace(media)
        return dataclasses.replace(media)


def _copy_agent(agent: Agent) -> Agent:
    return dataclasses.replace(agent, document_summaries=list(agent.document_summaries))
