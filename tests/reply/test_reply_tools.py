"""Tests for chime/reply/tools.py"""
from __future__ import annotations

import dataclasses
import json

import pytest

from chime.core.errors import LLMError, ToolError
from chime.core.types import ToolCall
from chime.reply.tools import (
    TOOL_SPECS,
    ChangeEngagementFactor,
    CreateTask,
    GetCurrentEngagement,
    ReplyToolbox,
    engagement_band,
    parse_tool_call,
)
from chime.scheduler.engine import JobScheduler
from chime.scheduler.job import JobKind
from tests.conftest import NOW

TOMORROW_9_ZURICH = 1_750_057_200.0  # 2025-06-16T07:00:00Z


@pytest.fixture
def scheduler(gateway, transport, timer):
    return JobScheduler(gateway, transport, timer=timer, clock=lambda: NOW)


@pytest.fixture
def toolbox(gateway, scheduler, mock_images, transport):
    return ReplyToolbox(gateway, scheduler, images=mock_images, transport=transport, clock=lambda: NOW)


async def run(toolbox, agent, name, **arguments):
    result = await toolbox.execute(ToolCall.new(name, arguments), agent)
    return result, json.loads(result.output)


class TestParseToolCall:
    def test_typed_variants(self):
        assert parse_tool_call(ToolCall.new("createTask", {"message": "m", "date": "d"})) == CreateTask("m", "d")
        assert parse_tool_call(ToolCall.new("getCurrentEngagement", {})) == GetCurrentEngagement()
        change = parse_tool_call(ToolCall.new("changeEngagementFactor", {"engagementFactor": 0.2, "reason": "quiet"}))
        assert change == ChangeEngagementFactor(0.2, "quiet")

    def test_malformed_json_rejected(self):
        with pytest.raises(ToolError):
            parse_tool_call(ToolCall.new("createTask", {"_raw": "{oops"}))

    def test_blank_required_string_rejected(self):
        with pytest.raises(ToolError, match="'message'"):
            parse_tool_call(ToolCall.new("createTask", {"message": "  ", "date": "2025-01-01"}))

    def test_unknown_tool_rejected(self):
        with pytest.raises(ToolError, match="Unknown tool"):
            parse_tool_call(ToolCall.new("launchRocket", {}))

    def test_specs_cover_every_tool(self):
        assert [s.name for s in TOOL_SPECS] == [
            "createTask",
            "changeEngagementFactor",
            "getCurrentEngagement",
            "generateImage",
        ]


@pytest.mark.parametrize(
    "factor,band",
    [(0, "silent"), (0.1, "low"), (0.33, "low"), (0.34, "medium"), (0.66, "medium"), (0.67, "high"), (1, "high")],
)
def test_engagement_band(factor, band):
    assert engagement_band(factor) == band


@pytest.mark.asyncio
class TestCreateTask:
    async def test_schedules_owned_text_job(self, toolbox, agent, gateway, timer):
        result, body = await run(toolbox, agent, "createTask", message="Drink water", date="2025-06-16T09:00:00+02:00")

        assert result.success
        assert body["success"] is True
        assert body["message"] == "Drink water"
        assert body["scheduledFor"] == "2025-06-16T09:00:00+02:00"

        job = await gateway.get_job(body["jobId"])
        assert job.kind is JobKind.TEXT
        assert job.owner_id == agent.id
        assert job.due_at == TOMORROW_9_ZURICH
        assert [h.delay for h in timer.live] == [TOMORROW_9_ZURICH - NOW]

    async def test_naive_date_uses_local_zone(self, toolbox, agent, gateway):
        _, body = await run(toolbox, agent, "createTask", message="hi", date="2025-06-16T09:00:00")
        assert (await gateway.get_job(body["jobId"])).due_at == TOMORROW_9_ZURICH

    async def test_small_past_skew_is_accepted(self, toolbox, agent):
        result, _ = await run(toolbox, agent, "createTask", message="now", date="2025-06-15T15:06:10Z")
        assert result.success

    async def test_past_date_rejected(self, toolbox, agent, gateway):
        result, body = await run(toolbox, agent, "createTask", message="late", date="2025-06-14T09:00:00Z")
        assert not result.success
        assert body["success"] is False
        assert "past" in body["error"]
        assert await gateway.find_jobs() == []

    async def test_unparseable_date_rejected(self, toolbox, agent, gateway):
        result, body = await run(toolbox, agent, "createTask", message="x", date="tomorrow at 9")
        assert not result.success
        assert "Unrecognised date" in body["error"]
        assert await gateway.find_jobs() == []


@pytest.mark.asyncio
class TestEngagementTools:
    async def test_change_persists_and_reports(self, toolbox, agent, gateway):
        result, body = await run(toolbox, agent, "changeEngagementFactor", engagementFactor=0.8, reason="asked")
        assert result.success
        assert body == {
            "success": True,
            "previousEngagementFactor": 0.5,
            "engagementFactor": 0.8,
            "level": "high",
        }
        assert (await gateway.get_agent(agent.id)).engagement_factor == 0.8

    @pytest.mark.parametrize("bad", [1.5, -1, "0.7", True, None])
    async def test_invalid_factor_leaves_stored_value(self, toolbox, agent, gateway, bad):
        result, body = await run(toolbox, agent, "changeEngagementFactor", engagementFactor=bad)
        assert not result.success
        assert "engagement_factor" in body["error"]
        assert (await gateway.get_agent(agent.id)).engagement_factor == 0.5

    async def test_missing_factor_rejected(self, toolbox, agent):
        result, _ = await run(toolbox, agent, "changeEngagementFactor")
        assert not result.success

    async def test_current_reads_stored_value(self, toolbox, agent, gateway):
        await gateway.update_agent(agent.id, engagement_factor=0.2)
        _, body = await run(toolbox, agent, "getCurrentEngagement")
        assert body == {"success": True, "engagementFactor": 0.2, "level": "low"}


@pytest.mark.asyncio
class TestGenerateImage:
    async def test_pushes_photo_to_linked_chat(self, toolbox, agent, transport, mock_images):
        result, body = await run(toolbox, agent, "generateImage", prompt="a mountain hut")
        assert result.success
        assert body["url"] == "https://images.example/generated.png"
        assert body["delivered"] is True
        assert mock_images.prompts == ["a mountain hut"]
        assert transport.sent == [("photo", "42", "https://images.example/generated.png")]

    async def test_unlinked_agent_only_gets_url(self, toolbox, agent, transport):
        unlinked = dataclasses.replace(agent, linked_chat_id=None)
        _, body = await run(toolbox, unlinked, "generateImage", prompt="hut")
        assert body["delivered"] is False
        assert transport.sent == []

    async def test_delivery_failure_is_reported_not_raised(self, toolbox, agent, transport):
        transport.fail_with("chat not found")
        result, body = await run(toolbox, agent, "generateImage", prompt="hut")
        assert result.success
        assert body["delivered"] is False
        assert "chat not found" in body["deliveryError"]

    async def test_generator_failure_is_structured(self, toolbox, agent, mock_images):
        mock_images.set_error(LLMError("content policy"))
        result, body = await run(toolbox, agent, "generateImage", prompt="hut")
        assert not result.success
        assert body == {"success": False, "error": "content policy"}

    async def test_without_generator(self, gateway, scheduler, agent):
        toolbox = ReplyToolbox(gateway, scheduler)
        result, body = await run(toolbox, agent, "generateImage", prompt="hut")
        assert not result.success
        assert "not configured" in body["error"]
