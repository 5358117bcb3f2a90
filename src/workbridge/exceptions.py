"""Domain exceptions for WorkBridge."""

from typing import Optional


class WorkBridgeError(Exception):
    """Base exception for all WorkBridge errors."""

    pass


class ConfigurationError(WorkBridgeError):
    """Adapter or pipeline configuration is missing something required."""

    pass


class ValidationError(WorkBridgeError):
    """A work item payload failed validation (e.g. blank title)."""

    pass


class UnsupportedOperationError(WorkBridgeError):
    """The adapter's platform cannot perform the requested operation."""

    def __init__(self, operation: str, provider: str):
        super().__init__(f'{operation} is not supported by the {provider} adapter')
        self.operation = operation
        self.provider = provider


class AdapterNotInitializedError(WorkBridgeError):
    """An adapter was used before initialize() completed."""

    pass


class InvalidWorkItemIdError(WorkBridgeError, ValueError):
    """A canonical work item id could not be parsed."""

    def __init__(self, work_item_id: str, reason: str):
        super().__init__(f'Invalid work item id {work_item_id!r}: {reason}')
        self.work_item_id = work_item_id
        self.reason = reason


class MigrationPhaseError(WorkBridgeError):
    """A migration phase failed as a whole.

    Args:
        phase: Name of the failing phase (extract, transform, load, verify)
        message: What went wrong
        cause: Underlying exception, if any
    """

    def __init__(
        self, phase: str, message: str, cause: Optional[BaseException] = None
    ):
        super().__init__(f'{phase.capitalize()} failed: {message}')
        self.phase = phase
        self.cause = cause
