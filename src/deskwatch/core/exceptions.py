"""
Core Exceptions
================

Custom exceptions for the application following clean architecture principles.

These exceptions define domain-specific errors that can be caught and handled
appropriately at the application boundaries.
"""

from typing import Optional, Any


class ApplicationException(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class DomainException(ApplicationException):
    """Base exception for domain logic violations."""


class RepositoryException(ApplicationException):
    """Base exception for repository/data access errors."""


class ValidationException(ApplicationException):
    """Exception for validation errors."""


class ResourceNotFoundException(ApplicationException):
    """Exception when a requested resource is not found."""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.resource_type = resource_type
        self.resource_id = resource_id
        message = f"{resource_type}"
        if resource_id:
            message += f" with id '{resource_id}'"
        message += " not found"
        super().__init__(message, details)


class ConfigurationException(ApplicationException):
    """Exception for configuration errors."""


class NoActiveRuleForPriority(ConfigurationException):
    """Raised when no active SLA rule exists for a ticket priority."""

    def __init__(self, priority: Any, details: Optional[dict] = None):
        self.priority = getattr(priority, "value", priority)
        super().__init__(
            f"No active SLA rule for priority '{self.priority}'",
            details or {"priority": self.priority}
        )


class DataIntegrityException(DomainException):
    """Raised when stored ticket timestamps contradict each other."""

    def __init__(self, ticket_id: str, reason: str, details: Optional[dict] = None):
        self.ticket_id = ticket_id
        self.reason = reason
        super().__init__(
            f"Ticket {ticket_id} has inconsistent SLA data: {reason}",
            details or {"ticket_id": ticket_id, "reason": reason}
        )


class ConcurrencyConflictException(ApplicationException):
    """Raised when another recalculation holds the lock for a ticket."""

    def __init__(self, ticket_id: str, details: Optional[dict] = None):
        self.ticket_id = ticket_id
        super().__init__(
            f"SLA state for ticket {ticket_id} is locked by a concurrent recalculation",
            details or {"ticket_id": ticket_id}
        )


class ExternalServiceException(ApplicationException):
    """Base exception for external service failures."""

    def __init__(
        self,
        service_name: str,
        message: str,
        details: Optional[dict] = None
    ):
        self.service_name = service_name
        super().__init__(f"{service_name}: {message}", details)


class NotificationException(ExternalServiceException):
    """Exception for notification collaborator failures."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__("Notification Service", message, details)
