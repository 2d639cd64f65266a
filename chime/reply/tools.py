"""
Reply tools: what the model may do while composing a reply.

Tools:
    createTask(message, date, reason?)
    changeEngagementFactor(engagementFactor, reason?)
    getCurrentEngagement()
    generateImage(prompt)

Raw ToolCalls from the LLM are parsed into one typed variant per tool
(ToolInvocation) and dispatched by matching on the variant. Every
execution produces a ToolResult whose output is a JSON object; failures
come back as {"success": false, "error": "..."} instead of raising, so the
model can react to them in the next round.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable
from zoneinfo import ZoneInfo

from chime.core.errors import DeliveryError, ToolError
from chime.core.types import ToolCall, ToolResult, ToolSpec
from chime.delivery.base import DeliveryTransport
from chime.llm.images import ImageGenerator
from chime.scheduler.engine import JobScheduler
from chime.scheduler.job import JobKind
from chime.store.base import PersistenceGateway
from chime.store.records import Agent, validate_engagement_factor

logger = logging.getLogger(__name__)

# createTask accepts dates up to this many seconds in the past (clock skew,
# "remind me now")
PAST_TOLERANCE = 60.0


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Declarations
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


TOOL_SPECS: list[ToolSpec] = [
    ToolSpec(
        name="createTask",
        description=(
            "Schedule a message to be sent to this chat at a future date and time. "
            "Use it for reminders and anything the user wants to hear about later."
        ),
        parameters={
            "type": "object",
            "properties": {
                "message": {
                    "type": "string",
                    "description": "The exact text to send when the task fires",
                },
                "date": {
                    "type": "string",
                    "description": (
                        "When to send it, as an ISO 8601 date-time including the UTC "
                        "offset, e.g. 2025-03-01T09:00:00+01:00"
                    ),
                },
                "reason": {
                    "type": "string",
                    "description": "Why this task is being created",
                },
            },
            "required": ["message", "date"],
        },
    ),
    ToolSpec(
        name="changeEngagementFactor",
        description=(
            "Set how often you join the conversation on your own. "
            "0 means never speak unless addressed, 1 means always when relevant."
        ),
        parameters={
            "type": "object",
            "properties": {
                "engagementFactor": {
                    "type": "number",
                    "minimum": 0,
                    "maximum": 1,
                    "description": "The new engagement factor between 0 and 1",
                },
                "reason": {
                    "type": "string",
                    "description": "Why the factor is being changed",
                },
            },
            "required": ["engagementFactor"],
        },
    ),
    ToolSpec(
        name="getCurrentEngagement",
        description="Read your current engagement factor and its level (silent, low, medium, high).",
        parameters={"type": "object", "properties": {}, "required": []},
    ),
    ToolSpec(
        name="generateImage",
        description="Generate an image from a description. The image is sent to the chat directly.",
        parameters={
            "type": "object",
            "properties": {
                "prompt": {
                    "type": "string",
                    "description": "Detailed description of the image",
                },
            },
            "required": ["prompt"],
        },
    ),
]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Invocations
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@dataclass(frozen=True, slots=True)
class CreateTask:
    message: str
    date: str
    reason: str | None = None


@dataclass(frozen=True, slots=True)
class ChangeEngagementFactor:
    engagement_factor: Any  # range-checked on execution
    reason: str | None = None


@dataclass(frozen=True, slots=True)
class GetCurrentEngagement:
    pass


@dataclass(frozen=True, slots=True)
class GenerateImage:
    prompt: str


ToolInvocation = CreateTask | ChangeEngagementFactor | GetCurrentEngagement | GenerateImage


def _required_str(call: ToolCall, key: str) -> str:
    value = call.arguments.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ToolError(f"'{key}' must be a non-empty string", tool_name=call.name)
    return value


def _optional_str(call: ToolCall, key: str) -> str | None:
    value = call.arguments.get(key)
    return value if isinstance(value, str) and value else None


def parse_tool_call(call: ToolCall) -> ToolInvocation:
    """Turn a raw call into its typed invocation. Raises ToolError."""
    if "_raw" in call.arguments:
        raise ToolError("Arguments were not valid JSON", tool_name=call.name)

    match call.name:
        case "createTask":
            return CreateTask(
                message=_required_str(call, "message"),
                date=_required_str(call, "date"),
                reason=_optional_str(call, "reason"),
            )
        case "changeEngagementFactor":
            if "engagementFactor" not in call.arguments:
                raise ToolError("'engagementFactor' is required", tool_name=call.name)
            return ChangeEngagementFactor(
                engagement_factor=call.arguments["engagementFactor"],
                reason=_optional_str(call, "reason"),
            )
        case "getCurrentEngagement":
            return GetCurrentEngagement()
        case "generateImage":
            return GenerateImage(prompt=_required_str(call, "prompt"))
    raise ToolError(f"Unknown tool: {call.name}", tool_name=call.name)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Helpers
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def engagement_band(factor: float) -> str:
    if factor == 0:
        return "silent"
    if factor < 0.34:
        return "low"
    if factor < 0.67:
        return "medium"
    return "high"


def parse_due_date(value: str, tz: ZoneInfo) -> float:
    """
    ISO 8601 string → unix seconds.

    Dates without an offset are read in tz.
    """
    try:
        dt = datetime.fromisoformat(value.strip())
    except ValueError as e:
        raise ToolError(f"Unrecognised date: {value!r}", tool_name="createTask") from e
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=tz)
    return dt.timestamp()


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Toolbox
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class ReplyToolbox:
    """
    Executes reply tools on behalf of one agent at a time.

    images and transport are optional: without an image generator,
    generateImage fails with a structured error; without a transport, the
    image URL is returned but not pushed to the chat.
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        scheduler: JobScheduler,
        images: ImageGenerator | None = None,
        transport: DeliveryTransport | None = None,
        tz: str = "Europe/Zurich",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._gateway = gateway
        self._scheduler = scheduler
        self._images = images
        self._transport = transport
        self._tz = ZoneInfo(tz)
        self._clock = clock

    @property
    def specs(self) -> list[ToolSpec]:
        return TOOL_SPECS

    async def execute(self, call: ToolCall, agent: Agent) -> ToolResult:
        """Run one call. Never raises; failures become structured results."""
        try:
            invocation = parse_tool_call(call)
            output = await self._dispatch(invocation, agent)
        except Exception as e:
            logger.warning(f"Tool {call.name} failed for {agent.name!r}: {e}")
            return ToolResult(
                tool_call_id=call.id,
                success=False,
                output=json.dumps({"success": False, "error": str(e)}),
                error=str(e),
            )
        logger.info(f"Tool {call.name} executed for {agent.name!r}")
        return ToolResult(
            tool_call_id=call.id,
            success=True,
            output=json.dumps({"success": True, **output}, ensure_ascii=False),
        )

    async def _dispatch(self, invocation: ToolInvocation, agent: Agent) -> dict[str, Any]:
        match invocation:
            case CreateTask():
                return await self._create_task(invocation, agent)
            case ChangeEngagementFactor():
                return await self._change_engagement(invocation, agent)
            case GetCurrentEngagement():
                return await self._current_engagement(agent)
            case GenerateImage():
                return await self._generate_image(invocation, agent)

    async def _create_task(self, task: CreateTask, agent: Agent) -> dict[str, Any]:
        due_at = parse_due_date(task.date, self._tz)
        if due_at < self._clock() - PAST_TOLERANCE:
            raise ToolError(f"Date {task.date} is in the past", tool_name="createTask")
        job = await self._scheduler.create_job(
            JobKind.TEXT, task.message, due_at, owner_id=agent.id
        )
        scheduled_for = datetime.fromtimestamp(due_at, tz=timezone.utc).astimezone(self._tz)
        return {
            "jobId": job.id,
            "message": task.message,
            "scheduledFor": scheduled_for.isoformat(),
        }

    async def _change_engagement(
        self, change: ChangeEngagementFactor, agent: Agent
    ) -> dict[str, Any]:
        factor = validate_engagement_factor(change.engagement_factor)
        current = await self._gateway.get_agent(agent.id)
        previous = current.engagement_factor if current else agent.engagement_factor
        await self._gateway.update_agent(agent.id, engagement_factor=factor)
        if change.reason:
            logger.info(f"{agent.name} engagement {previous} → {factor}: {change.reason}")
        return {
            "previousEngagementFactor": previous,
            "engagementFactor": factor,
            "level": engagement_band(factor),
        }

    async def _current_engagement(self, agent: Agent) -> dict[str, Any]:
        current = await self._gateway.get_agent(agent.id)
        factor = current.engagement_factor if current else agent.engagement_factor
        return {"engagementFactor": factor, "level": engagement_band(factor)}

    async def _generate_image(self, image: GenerateImage, agent: Agent) -> dict[str, Any]:
        if self._images is None:
            raise ToolError("Image generation is not configured", tool_name="generateImage")
        url = await self._images.generate(image.prompt)

        result: dict[str, Any] = {"url": url, "delivered": False}
        if agent.linked_chat_id and self._transport is not None:
            try:
                await self._transport.send_photo(agent.linked_chat_id, url)
                result["delivered"] = True
            except DeliveryError as e:
                logger.warning(f"Generated image could not be delivered: {e}")
                result["deliveryError"] = str(e)
        return result
