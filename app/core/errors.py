"""
Typed domain errors for the dispatch services.

Each error maps to a specific HTTP status code.  The transport layer
converts ``DispatchError`` subtypes to JSON responses without embedding
business logic in the route handlers.
"""
from __future__ import annotations


class DispatchError(Exception):
    """Base class for all dispatch domain errors."""

    status_code: int = 500

    def __init__(self, detail: str = "Internal error"):
        self.detail = detail
        super().__init__(detail)


class ValidationError(DispatchError):
    """Invalid request payload or forbidden state change (400)."""

    status_code = 400


class InvalidPhoneFormat(ValidationError):
    """Phone number cannot be normalized to a US messaging number (400)."""

    def __init__(self, phone: str):
        self.phone = phone
        super().__init__(f"Invalid phone number format: {phone}. Expected US format.")


class AuthorizationError(DispatchError):
    """Actor lacks the role required for the operation (403)."""

    status_code = 403


class NotFoundError(DispatchError):
    """Resource not found (404)."""

    status_code = 404


class ConflictError(DispatchError):
    """Duplicate or conflicting resource (409)."""

    status_code = 409


class StaleJobError(ConflictError):
    """Job row changed since it was loaded; reload and re-apply (409)."""


class DeliveryFailure(DispatchError):
    """
    Outbound notification could not be delivered (502).

    Never fatal: the dispatch policy catches it and reports a warning
    alongside the mutation that triggered the send.
    """

    status_code = 502
