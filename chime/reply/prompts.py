"""
System prompt for the reply loop.

Steering text only: how to use several tools in one turn, how to adjust
the engagement factor relatively, and how to talk about dates.
"""

from __future__ import annotations

from datetime import datetime
from zoneinfo import ZoneInfo

from chime.store.records import Agent

LIMIT_NUDGE = (
    "You have used the maximum number of tool calls. "
    "Do NOT call any more tools. "
    "Summarise what you have done in this conversation and give your final "
    "answer to the user as plain text right now."
)

_TOOL_INSTRUCTIONS = """\
TOOLS:
- You may call several tools in the same turn when a request needs more than one action.
- createTask schedules a message for later. Pass the date as an ISO 8601 date-time with its UTC offset.
- changeEngagementFactor sets how often you join the conversation on your own (0 to 1).
- getCurrentEngagement reads your current engagement factor.
- generateImage creates an image that is sent to the chat automatically; do not paste its URL.
- After using tools, always answer the user in plain text.

RELATIVE ENGAGEMENT CHANGES:
When asked to be "a bit more" or "a bit less" active, first call getCurrentEngagement,
then call changeEngagementFactor with an adjusted value.
Example: the current factor is 0.4 and the user says "talk a little more".
Call changeEngagementFactor with 0.5. For "much more", use a larger step such as 0.7.
Never go below 0 or above 1."""

_DATE_INSTRUCTIONS = """\
DATES AND TIMES:
- Refer to dates and times naturally, e.g. "tomorrow at 9" or "next Monday morning".
- Never mention timezone abbreviations or UTC offsets in your replies.
- Resolve relative times ("in 10 minutes", "tonight") against the current time above."""


def build_system_prompt(agent: Agent, now: datetime, tz: ZoneInfo) -> str:
    local = now.astimezone(tz)
    sections = [
        f"You are {agent.name}, a participant in a group chat.",
        f"Current date and time: {local.strftime('%A, %d %B %Y, %H:%M')} (local time).",
    ]
    if agent.context:
        sections.append(f"CONTEXT:\n{agent.context}")
    if agent.document_summaries:
        summaries = "\n".join(f"- {s}" for s in agent.document_summaries)
        sections.append(f"DOCUMENTS YOU KNOW ABOUT:\n{summaries}")
    sections.append(
        "Messages arrive as JSON objects with a timestamp, the author's name and "
        "the message. Reply with plain text only, never JSON."
    )
    sections.append(_TOOL_INSTRUCTIONS)
    sections.append(_DATE_INSTRUCTIONS)
    return "\n\n".join(sections)
