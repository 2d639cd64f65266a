"""
Chime exception hierarchy.

Every error in the system inherits from ChimeError.
Each subsystem has its own error class for targeted catching.

Usage:
    try:
        await provider.complete(...)
    except LLMError as e:
        # Handle LLM-specific failures
    except ChimeError as e:
        # Handle any Chime error
"""


class ChimeError(Exception):
    """Base exception for all Chime errors."""

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


# ━━━ Configuration & data ━━━


class ConfigError(ChimeError):
    """Configuration is invalid, missing, or malformed (incl. missing credentials)."""

    pass


class ValidationError(ChimeError):
    """A value was rejected at a mutation boundary."""

    def __init__(self, message: str, field: str = "", details: dict | None = None):
        self.field = field
        super().__init__(message, details)


# ━━━ Collaborators ━━━


class LLMError(ChimeError):
    """LLM or image provider failure, such as an API error or a timeout."""

    def __init__(
        self,
        message: str,
        provider: str = "",
        model: str = "",
        retryable: bool = False,
        details: dict | None = None,
    ):
        self.provider = provider
        self.model = model
        self.retryable = retryable
        super().__init__(message, details)


class StorageError(ChimeError):
    """Persistence gateway failure (database error or missing row)."""

    pass


class DeliveryError(ChimeError):
    """Delivery transport failure: the message did not reach the target."""

    def __init__(self, message: str, target: str = "", details: dict | None = None):
        self.target = target
        super().__init__(message, details)


# ━━━ Subsystems ━━━


class SchedulerError(ChimeError):
    """Job scheduling failure."""

    pass


class ToolError(ChimeError):
    """A tool invocation was malformed or could not be carried out."""

    def __init__(self, message: str, tool_name: str = "", details: dict | None = None):
        self.tool_name = tool_name
        super().__init__(message, details)
