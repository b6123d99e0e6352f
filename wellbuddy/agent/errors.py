from typing import Optional


class WellbuddyError(Exception):
    """Base class for errors raised by the agent core."""


class ExecutionError(WellbuddyError):
    """A planned action failed validation or could not be applied.

    Recorded against the single action that raised it; the rest of the plan
    still runs.
    """

    def __init__(self, operation: str, message: str) -> None:
        super().__init__(message)
        self.operation = operation


class UnknownOperationError(ExecutionError):
    def __init__(self, operation: str) -> None:
        super().__init__(operation, f"Unknown operation: {operation}")


class StorageError(WellbuddyError):
    """The Domain Store rejected a read or write. Fatal to the turn."""


class GenerationError(WellbuddyError):
    def __init__(self, capability: str, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.capability = capability
        self.status_code = status_code
