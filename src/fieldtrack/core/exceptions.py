"""
Core Exceptions
================

Custom exceptions for the application following clean architecture principles.

These exceptions define domain-specific errors that can be caught and handled
appropriately at the application boundaries. Each one carries an
``http_status`` hint for the presentation layer.
"""

from typing import Optional


class ApplicationException(Exception):
    """Base exception for all application errors."""

    http_status: int = 500

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class DomainException(ApplicationException):
    """Base exception for domain logic violations."""

    http_status = 400


class RepositoryException(ApplicationException):
    """Base exception for repository/data access errors."""


class ValidationException(DomainException):
    """Exception for validation errors."""


class ResourceNotFoundException(ApplicationException):
    """Exception when a requested resource is not found."""

    http_status = 404

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


class StaleReportException(DomainException):
    """
    Raised when a position report is not newer than the stored position.

    Soft error: the location pipeline turns it into an "ignored" outcome
    and never lets it reach callers.
    """

    def __init__(self, agent_id: str, reported_at, stored_at):
        self.agent_id = agent_id
        self.reported_at = reported_at
        self.stored_at = stored_at
        super().__init__(
            f"Report for agent {agent_id} at {reported_at} is not newer than {stored_at}",
            {"agent_id": agent_id}
        )


class ConfigurationException(ApplicationException):
    """Exception for configuration errors."""
