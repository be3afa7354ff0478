"""
Error types for the MHC Control Panel.

This module defines the exceptions raised by services and rendered by the API:
- PanelError: Base exception
- NotFoundError: Missing resource (404)
- ValidationError: Bad request input (400)
- ConflictError: Uniqueness conflicts (409)
- AuthenticationError: Not logged in / bad credentials (401)
- ForbiddenError: Logged in but not allowed (403)
- ServiceUnavailableError: Optional integration not configured (503)

Invariants:
    - All errors inherit from PanelError
    - status_code maps 1:1 to the HTTP response status
    - details are merged into the JSON error body
"""

from __future__ import annotations

from typing import Any


class PanelError(Exception):
    """Base exception for all panel errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    status_code = 500

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "PANEL_ERROR"
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert to the JSON error body."""
        return {"error": self.message, **self.details}


class NotFoundError(PanelError):
    """Requested resource does not exist."""

    status_code = 404

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, code="NOT_FOUND", details=details)


class ValidationError(PanelError):
    """Request input failed validation."""

    status_code = 400

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, code="VALIDATION_ERROR", details=details)


class ConflictError(PanelError):
    """Resource already exists."""

    status_code = 409

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, code="CONFLICT", details=details)


class AuthenticationError(PanelError):
    """Authentication failed or is missing."""

    status_code = 401

    def __init__(self, message: str = "Authentication required", details: dict[str, Any] | None = None) -> None:
        super().__init__(message, code="AUTHENTICATION_ERROR", details=details)


class ForbiddenError(PanelError):
    """Caller is authenticated but the action is not allowed.

    Raised when:
    - CSRF token is missing or wrong
    - 2FA verification is pending
    - A sensitive action needs a fresh 2FA check
    """

    status_code = 403

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, code="FORBIDDEN", details=details)


class ServiceUnavailableError(PanelError):
    """An optional integration (OpenAI, Statbate) is not configured."""

    status_code = 503

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, code="SERVICE_UNAVAILABLE", details=details)
