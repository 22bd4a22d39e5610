"""Exception hierarchy for automation evaluation and execution."""

from __future__ import annotations


class AutomationError(Exception):
    """Base exception for automation failures."""

    def __init__(self, code: str, message: str, details: dict[str, object] | None = None) -> None:
        """Initialize the error with a machine-readable code and details."""
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}


class AutomationValidationError(AutomationError):
    """Raised when rule or action inputs fail validation."""

    def __init__(self, message: str, details: dict[str, object] | None = None) -> None:
        """Initialize a validation error with optional details."""
        super().__init__("validation_error", message, details)


class RuleNotFoundError(AutomationError):
    """Raised when a requested rule does not exist."""

    def __init__(self, message: str, details: dict[str, object] | None = None) -> None:
        """Initialize a not-found error for a rule."""
        super().__init__("rule_not_found", message, details)


class SectionNotFoundError(AutomationError):
    """Raised when a rule references a section that no longer exists.

    The engine treats this as a configuration error and marks the rule broken.
    """

    def __init__(self, message: str, details: dict[str, object] | None = None) -> None:
        """Initialize a not-found error for a section."""
        super().__init__("section_not_found", message, details)


class TaskNotFoundError(AutomationError):
    """Raised when an action or undo targets a task that no longer exists."""

    def __init__(self, message: str, details: dict[str, object] | None = None) -> None:
        """Initialize a not-found error for a task."""
        super().__init__("task_not_found", message, details)


class DateOptionError(AutomationError):
    """Raised when a symbolic date option cannot be resolved."""

    def __init__(self, message: str, details: dict[str, object] | None = None) -> None:
        """Initialize a date option error."""
        super().__init__("invalid_date_option", message, details)


class FilterEvaluationError(AutomationError):
    """Raised when a filter type has no registered evaluator."""

    def __init__(self, message: str, details: dict[str, object] | None = None) -> None:
        """Initialize a filter evaluation error."""
        super().__init__("unknown_filter", message, details)


class CronExpressionError(AutomationError):
    """Raised when a cron expression cannot be represented as a cron schedule."""

    def __init__(self, message: str, details: dict[str, object] | None = None) -> None:
        """Initialize a cron expression error."""
        super().__init__("invalid_cron_expression", message, details)
