"""Tests for both persistence gateway adapters."""
from __future__ import annotations

import pytest
import pytest_asyncio

from chime.core.errors import StorageError, ValidationError
from chime.scheduler.job import Job, JobKind
from chime.store.memory import InMemoryGateway
from chime.store.records import Agent, MediaRecord, StoredMessage
from chime.store.sqlite import SQLiteGateway


@pytest_asyncio.fixture(params=["memory", "sqlite"])
async def store(request, tmp_path):
    if request.param == "memory":
        gw = InMemoryGateway()
    else:
        gw = SQLiteGateway(tmp_path / "chime.db")
    await gw.initialize()
    yield gw
    await gw.close()


@pytest.mark.asyncio
class TestJobs:
    async def test_create_and_get(self, store):
        job = await store.create_job(Job(kind=JobKind.TEXT, payload="hi", due_at=100.0, owner_id="a1"))
        fetched = await store.get_job(job.id)
        assert fetched == job

    async def test_get_missing_returns_none(self, store):
        assert await store.get_job("ghost") is None

    async def test_find_filters_and_orders_by_due(self, store):
        late = await store.create_job(Job(kind=JobKind.TEXT, payload="late", due_at=300.0, owner_id="a1"))
        early = await store.create_job(Job(kind=JobKind.TEXT, payload="early", due_at=100.0, owner_id="a2"))
        await store.create_job(Job(kind=JobKind.TEXT, payload="done", due_at=200.0, active=False))

        active = await store.find_jobs(active=True)
        assert [j.id for j in active] == [early.id, late.id]

        mine = await store.find_jobs(owner_id="a1")
        assert [j.id for j in mine] == [late.id]

        everything = await store.find_jobs()
        assert len(everything) == 3

    async def test_update_applies_patch(self, store):
        job = await store.create_job(Job(kind=JobKind.TEXT, payload="hi", due_at=100.0))
        updated = await store.update_job(job.id, active=False, due_at=150.0)
        assert updated.active is False
        assert updated.due_at == 150.0
        assert (await store.get_job(job.id)).active is False

    async def test_update_rejects_unknown_field(self, store):
        job = await store.create_job(Job(kind=JobKind.TEXT, payload="hi", due_at=100.0))
        with pytest.raises(ValidationError):
            await store.update_job(job.id, colour="blue")

    async def test_update_refuses_reactivation(self, store):
        job = await store.create_job(Job(kind=JobKind.TEXT, payload="hi", due_at=100.0))
        await store.update_job(job.id, active=False)
        with pytest.raises(ValidationError) as exc:
            await store.update_job(job.id, active=True)
        assert exc.value.field == "active"
        assert (await store.get_job(job.id)).active is False

    async def test_update_missing_raises(self, store):
        with pytest.raises(StorageError):
            await store.update_job("ghost", active=False)

    async def test_delete_removes_job_and_media(self, store):
        job = await store.create_job(Job(kind=JobKind.IMAGE, payload="cat.png", due_at=100.0))
        await store.create_media(MediaRecord(job_id=job.id, kind="image", path="/m/cat.png"))

        assert await store.delete_job(job.id) is True
        assert await store.get_job(job.id) is None
        assert await store.find_media(job.id, "image") is None
        assert await store.delete_job(job.id) is False

    async def test_returned_jobs_are_copies(self, store):
        job = await store.create_job(Job(kind=JobKind.TEXT, payload="hi", due_at=100.0))
        fetched = await store.get_job(job.id)
        fetched.active = False
        assert (await store.get_job(job.id)).active is True


@pytest.mark.asyncio
class TestMessages:
    async def test_limit_selects_newest(self, store):
        for i in range(5):
            await store.create_message(
                StoredMessage(agent_id="a1", role="user", content=f"m{i}", created_at=1000.0 + i)
            )
        await store.create_message(StoredMessage(agent_id="other", role="user", content="x", created_at=2000.0))

        newest_first = await store.find_messages("a1", limit=3)
        assert [m.content for m in newest_first] == ["m4", "m3", "m2"]

        chronological = await store.find_messages("a1", limit=3, newest_first=False)
        assert [m.content for m in chronological] == ["m2", "m3", "m4"]

    async def test_author_name_round_trips(self, store):
        await store.create_message(
            StoredMessage(agent_id="a1", role="user", content="hi", author_name="Anna", created_at=1.0)
        )
        [message] = await store.find_messages("a1")
        assert message.author_name == "Anna"

    async def test_rejects_unknown_role(self, store):
        with pytest.raises(ValidationError):
            await store.create_message(StoredMessage(agent_id="a1", role="robot", content="beep"))

    async def test_delete(self, store):
        message = await store.create_message(StoredMessage(agent_id="a1", role="user", content="hi"))
        assert await store.delete_message(message.id) is True
        assert await store.find_messages("a1") == []
        assert await store.delete_message(message.id) is False


@pytest.mark.asyncio
class TestAgents:
    async def test_create_and_get_with_summaries(self, store):
        agent = await store.create_agent(
            Agent(name="Ada", api_key="sk", document_summaries=["trail map", "club rules"])
        )
        fetched = await store.get_agent(agent.id)
        assert fetched.name == "Ada"
        assert fetched.document_summaries == ["trail map", "club rules"]
        assert fetched.engagement_factor == 0.5

    async def test_find_filters(self, store):
        linked = await store.create_agent(Agent(name="A", linked_chat_id="1", created_at=1.0))
        await store.create_agent(Agent(name="B", created_at=2.0))
        await store.create_agent(Agent(name="C", linked_chat_id="3", is_active=False, created_at=3.0))

        assert len(await store.find_agents()) == 3
        assert [a.name for a in await store.find_agents(linked_only=True)] == ["A", "C"]
        result = await store.find_agents(linked_only=True, active_only=True)
        assert [a.id for a in result] == [linked.id]

    async def test_find_by_chat_ignores_inactive(self, store):
        await store.create_agent(Agent(name="Old", linked_chat_id="7", is_active=False, created_at=1.0))
        current = await store.create_agent(Agent(name="New", linked_chat_id="7", created_at=2.0))

        found = await store.find_agent_by_chat("7")
        assert found.id == current.id
        assert await store.find_agent_by_chat("8") is None

    async def test_update_factor(self, store):
        agent = await store.create_agent(Agent(name="Ada"))
        updated = await store.update_agent(agent.id, engagement_factor=0.9)
        assert updated.engagement_factor == 0.9

    @pytest.mark.parametrize("bad", [1.5, -0.1, "high", True, float("nan")])
    async def test_invalid_factor_leaves_value_unchanged(self, store, bad):
        agent = await store.create_agent(Agent(name="Ada", engagement_factor=0.3))
        with pytest.raises(ValidationError) as exc:
            await store.update_agent(agent.id, engagement_factor=bad)
        assert exc.value.field == "engagement_factor"
        assert (await store.get_agent(agent.id)).engagement_factor == 0.3

    async def test_update_missing_raises(self, store):
        with pytest.raises(StorageError):
            await store.update_agent("ghost", name="x")


def test_agent_rejects_out_of_range_factor():
    with pytest.raises(ValidationError):
        Agent(name="Ada", engagement_factor=2)
