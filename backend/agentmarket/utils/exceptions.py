"""
Custom business exceptions for the deal engine.

WHAT: Domain-specific exceptions that map to HTTP status codes
WHY: Every rejected operation tells the caller which precondition failed
HOW: Custom exception classes with error codes, messages and details
"""

from typing import Optional, List, Dict, Any, Iterable


class BusinessException(Exception):
    """Base class for business logic exceptions."""

    def __init__(self, message: str, code: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details


# ========== Validation ==========

class ValidationException(BusinessException):
    """Raised for malformed or missing input."""

    def __init__(self, message: str, field_errors: Optional[List[Dict[str, str]]] = None):
        super().__init__(
            message=message,
            code="VALIDATION_ERROR",
            details={"field_errors": field_errors} if field_errors else None
        )


# ========== Authorization ==========

class UnauthorizedException(BusinessException):
    """Raised when no caller identity was supplied."""

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message=message, code="UNAUTHORIZED")


class ForbiddenException(BusinessException):
    """Raised when the caller may not act on a resource."""

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message=message, code="FORBIDDEN", details=details)


class NotParticipantException(ForbiddenException):
    """Raised when an agent acts on a deal it is not part of."""

    def __init__(self, match_id: str, agent_id: str):
        super().__init__(
            message=f"Agent {agent_id} is not part of deal {match_id}",
            details={"match_id": match_id, "agent_id": agent_id}
        )
        self.code = "NOT_A_PARTICIPANT"


# ========== Not found ==========

class NotFoundException(BusinessException):
    """Base class for unknown ids."""


class ListingNotFoundException(NotFoundException):
    """Raised when a listing is not found (or no longer active)."""

    def __init__(self, listing_id: str):
        super().__init__(
            message=f"Listing not found: {listing_id}",
            code="LISTING_NOT_FOUND",
            details={"listing_id": listing_id}
        )


class DealNotFoundException(NotFoundException):
    """Raised when a match / deal is not found."""

    def __init__(self, match_id: str):
        super().__init__(
            message=f"Deal not found: {match_id}",
            code="DEAL_NOT_FOUND",
            details={"match_id": match_id}
        )


class DisputeNotFoundException(NotFoundException):
    """Raised when no open dispute exists for a deal."""

    def __init__(self, match_id: str):
        super().__init__(
            message=f"No open dispute found for deal: {match_id}",
            code="DISPUTE_NOT_FOUND",
            details={"match_id": match_id}
        )


# ========== State conflicts ==========

class StateConflictException(BusinessException):
    """Base class for operations invalid in the deal's current state."""


class InvalidDealStatusException(StateConflictException):
    """Raised when an action is not allowed from the deal's current status."""

    def __init__(self, match_id: str, action: str, current_status: str, allowed: Iterable[str]):
        allowed = sorted(allowed)
        super().__init__(
            message=(
                f"Cannot {action} deal {match_id} in '{current_status}' status. "
                f"Allowed statuses: {', '.join(allowed) or 'none'}"
            ),
            code="INVALID_DEAL_STATUS",
            details={
                "match_id": match_id,
                "action": action,
                "current_status": current_status,
                "allowed_statuses": allowed,
            }
        )


class DuplicateCompletionException(StateConflictException):
    """Raised when an agent confirms completion twice."""

    def __init__(self, match_id: str, agent_id: str):
        super().__init__(
            message=f"Agent {agent_id} has already confirmed completion of deal {match_id}",
            code="COMPLETION_ALREADY_CONFIRMED",
            details={"match_id": match_id, "agent_id": agent_id}
        )


class OpenDisputeExistsException(StateConflictException):
    """Raised when filing a dispute while another one is still open."""

    def __init__(self, match_id: str):
        super().__init__(
            message=f"An open dispute already exists for deal {match_id}",
            code="OPEN_DISPUTE_EXISTS",
            details={"match_id": match_id}
        )


class ActiveListingConflictException(StateConflictException):
    """Raised when a concurrent publish keeps another listing active for the same slot."""

    def __init__(self, agent_id: str, side: str, category: str):
        super().__init__(
            message=f"Agent {agent_id} is concurrently publishing another active {side} listing in {category}",
            code="ACTIVE_LISTING_CONFLICT",
            details={"agent_id": agent_id, "side": side, "category": category}
        )


# ========== Admin ==========

class AdminNotConfiguredException(BusinessException):
    """Raised when an admin endpoint is called without ADMIN_SECRET set."""

    def __init__(self):
        super().__init__(
            message="Admin endpoint not configured",
            code="ADMIN_NOT_CONFIGURED"
        )
