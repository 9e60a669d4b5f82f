"""Errors raised by collaboration steps and turned into `error` events."""


class CollaborationError(Exception):
    """Base error; ``message`` is what the originating client sees."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class AccessDenied(CollaborationError):
    pass


class PersistenceFailed(CollaborationError):
    pass


class OperationTimeout(CollaborationError):
    def __init__(self, message: str = "Request timed out") -> None:
        super().__init__(message)


class InvalidMessage(CollaborationError):
    pass
