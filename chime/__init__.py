"""
Chime — an engagement-aware chat bot core with durable scheduled messages.

Public API:
    from chime import ChimeRuntime, ChimeConfig, JobScheduler, EngagementEngine
"""

__version__ = "0.1.0"

# Core
from chime.core.config import ChimeConfig
from chime.core.errors import ChimeError, ConfigError, ValidationError

# Components
from chime.context.builder import ConversationContextBuilder
from chime.engagement.engine import EngagementDecision, EngagementEngine
from chime.reply.loop import ReplyLoop
from chime.scheduler.engine import JobScheduler
from chime.scheduler.job import Job, JobKind

# Host
from chime.runtime import ChimeRuntime

__all__ = [
    # Core
    "ChimeConfig",
    "ChimeError",
    "ConfigError",
    "ValidationError",
    # Components
    "ConversationContextBuilder",
    "EngagementDecision",
    "EngagementEngine",
    "ReplyLoop",
    "JobScheduler",
    "Job",
    "JobKind",
    # Host
    "ChimeRuntime",
]
