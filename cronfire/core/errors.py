"""
cronfire exception hierarchy.

Every error in the system inherits from CronfireError.
Each subsystem has its own error class for targeted catching.

Usage:
    try:
        await scheduler.fire_trigger(trigger_id)
    except TriggerNotFoundError as e:
        # Handle a missing trigger
    except CronfireError as e:
        # Handle any cronfire error
"""


class CronfireError(Exception):
    """Base exception for all cronfire errors."""

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


# ━━━ Core Errors ━━━


class ConfigError(CronfireError):
    """Configuration is invalid, missing, or malformed."""

    pass


class StorageError(CronfireError):
    """Store failure — connectivity, constraint violations, corruption."""

    pass


class CronExpressionError(CronfireError):
    """CRON expression rejected by validation."""

    def __init__(
        self,
        message: str,
        expression: str = "",
        details: dict | None = None,
    ):
        self.expression = expression
        super().__init__(message, details)


# ━━━ Trigger Errors ━━━


class TriggerError(CronfireError):
    """Failure tied to a single trigger."""

    def __init__(
        self,
        message: str,
        trigger_id: str = "",
        details: dict | None = None,
    ):
        self.trigger_id = trigger_id
        super().__init__(message, details)


class TriggerNotFoundError(TriggerError):
    """Requested trigger does not exist in the store."""

    pass


class TriggerDisabledError(TriggerError):
    """Trigger exists but is disabled."""

    pass


class WorkItemCreationError(TriggerError):
    """Creating the work item for a fired trigger, or recording that firing, failed."""

    pass
