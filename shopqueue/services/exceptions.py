from typing import List, Optional


class ServiceError(Exception):
    """Base exception for service layer failures."""

    def __init__(self, message: str, *, cause: Exception | None = None):
        super().__init__(message)
        self.cause = cause


class ValidationError(ServiceError):
    """Raised when a request is malformed or outside shop policy."""


class ConflictError(ServiceError):
    """Raised when a slot is already taken or a concurrent writer won."""

    def __init__(
        self,
        message: str,
        *,
        suggested_slots: Optional[List[str]] = None,
        cause: Exception | None = None,
    ):
        super().__init__(message, cause=cause)
        self.suggested_slots = list(suggested_slots or [])


class NotFoundError(ServiceError):
    """Raised when a referenced record does not exist."""


class InvalidTransitionError(ServiceError):
    """Raised when a lifecycle event is not allowed from the current status."""

    def __init__(
        self,
        message: str,
        *,
        current_status: str | None = None,
        event: str | None = None,
    ):
        super().__init__(message)
        self.current_status = current_status
        self.event = event


class StoreUnavailableError(ServiceError):
    """Raised when the record store or its change feed cannot be reached."""

    def __init__(self, message: str, status_code: int | None = None, *, cause: Exception | None = None):
        super().__init__(message, cause=cause)
        self.status_code = status_code


class UniqueViolationError(ServiceError):
    """Raised by a record store when an insert breaks a uniqueness constraint."""
