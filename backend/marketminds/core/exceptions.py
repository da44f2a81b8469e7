"""
Domain exceptions for the MarketMinds backend.

Every business-rule failure is a subclass of MarketMindsError carrying a
stable ``code``; the API layer maps each kind to its own response.
"""
from typing import Any, Optional


class MarketMindsError(Exception):
    """Base exception for business-rule failures."""

    code = "ERROR"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.__class__.__doc__ or self.code
        super().__init__(self.message)


class NotFoundError(MarketMindsError):
    """Requested entity does not exist."""

    code = "NOT_FOUND"

    def __init__(self, resource: str, identifier: Any = None):
        self.resource = resource
        self.identifier = identifier
        suffix = f" ({identifier})" if identifier is not None else ""
        super().__init__(f"{resource} not found{suffix}")


class ConflictError(MarketMindsError):
    """Request conflicts with existing state."""

    code = "CONFLICT"


class AlreadyPurchasedError(ConflictError):
    """Report already purchased."""

    code = "ALREADY_PURCHASED"


class DuplicateRequestError(ConflictError):
    """Pending request already exists."""

    code = "DUPLICATE_REQUEST"


class ActiveSubscriptionExistsError(ConflictError):
    """You already have an active subscription."""

    code = "ACTIVE_SUBSCRIPTION"


class EmailAlreadyRegisteredError(ConflictError):
    """Email already in use."""

    code = "EMAIL_IN_USE"


class InvalidStateError(MarketMindsError):
    """Operation is not allowed in the entity's current state."""

    code = "INVALID_STATE"


class AlreadyProcessedError(InvalidStateError):
    """Payment request already processed."""

    code = "ALREADY_PROCESSED"


class QuotaExhaustedError(MarketMindsError):
    """No reports left in your subscription."""

    code = "NO_REPORTS_LEFT"


class AccessDeniedError(MarketMindsError):
    """You do not have access to this report."""

    code = "ACCESS_DENIED"

    def __init__(self, message: Optional[str] = None, reason: Optional[str] = None):
        self.reason = reason
        super().__init__(message)


class AuthenticationError(MarketMindsError):
    """Could not validate credentials."""

    code = "AUTH_REQUIRED"


class AuthorizationError(MarketMindsError):
    """Admin access required."""

    code = "FORBIDDEN"


class InvalidSubmissionError(MarketMindsError):
    """Malformed submission."""

    code = "VALIDATION_ERROR"


class StorageError(MarketMindsError):
    """Persistence layer failure."""

    code = "STORAGE_ERROR"
