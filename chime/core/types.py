"""
Chime shared types for chat messages, tool calls and LLM output.

All types are dataclasses. Frozen where immutability makes sense.
These types are used across ALL layers.

Chat messages are a closed set of role variants. Each variant carries only
the fields its role actually has:

    SystemMessage     content
    UserMessage       content
    AssistantMessage  content, tool_calls
    ToolMessage       tool_call_id, content, name
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Enums
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class StopReason(str, Enum):
    """Why the LLM stopped generating."""

    COMPLETE = "complete"
    TOOL_USE = "tool_use"
    MAX_TOKENS = "max_tokens"


class Role(str, Enum):
    """Conversation roles."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Tool Types
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@dataclass(slots=True)
class ToolCall:
    """A tool/function call requested by the LLM, arguments still untyped."""

    id: str
    name: str
    arguments: dict[str, Any]

    @staticmethod
    def new(name: str, arguments: dict[str, Any]) -> ToolCall:
        return ToolCall(id=uuid.uuid4().hex[:12], name=name, arguments=arguments)


@dataclass(slots=True)
class ToolResult:
    """Result from executing a tool."""

    tool_call_id: str
    success: bool
    output: str
    error: str | None = None


@dataclass(frozen=True, slots=True)
class ToolSpec:
    """Tool specification, everything the LLM needs to call it."""

    name: str
    description: str
    parameters: dict[str, Any]  # JSON Schema


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Chat Messages
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@dataclass(slots=True)
class SystemMessage:
    content: str
    role: ClassVar[Role] = Role.SYSTEM


@dataclass(slots=True)
class UserMessage:
    content: str
    image_url: str | None = None  # attached picture, for vision models
    role: ClassVar[Role] = Role.USER


@dataclass(slots=True)
class AssistantMessage:
    content: str | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)
    role: ClassVar[Role] = Role.ASSISTANT


@dataclass(slots=True)
class ToolMessage:
    tool_call_id: str
    content: str
    name: str = ""
    role: ClassVar[Role] = Role.TOOL

    @staticmethod
    def from_result(result: ToolResult, name: str = "") -> ToolMessage:
        return ToolMessage(
            tool_call_id=result.tool_call_id,
            content=result.output or f"Error: {result.error}",
            name=name,
        )


ChatMessage = SystemMessage | UserMessage | AssistantMessage | ToolMessage


def message_for_role(role: str, content: str) -> ChatMessage:
    """
    Build a chat message from a stored role string.

    Only the roles that are persisted in conversation history are accepted.
    """
    if role == Role.USER.value:
        return UserMessage(content)
    if role == Role.ASSISTANT.value:
        return AssistantMessage(content)
    if role == Role.SYSTEM.value:
        return SystemMessage(content)
    raise ValueError(f"Unsupported history role: {role!r}")


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# LLM Types
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@dataclass(slots=True)
class LLMChunk:
    """A single chunk from a streaming LLM response."""

    text: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    stop_reason: StopReason | None = None
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass(slots=True)
class Completion:
    """A fully collected LLM response: plain text OR requested tool calls."""

    text: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    stop_reason: StopReason | None = None
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def wants_tools(self) -> bool:
        return bool(self.tool_calls)
