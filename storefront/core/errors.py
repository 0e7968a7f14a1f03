"""
Error taxonomy for storefront operations.

Every service raises one of these; the API layer turns them into a
response envelope with a machine-readable code. Backend failures from
SQLAlchemy or httpx are wrapped in BackendError with the message passed
through.
"""
from typing import Any, Dict, Optional


class StorefrontError(Exception):
    """Base class for all user-facing storefront failures."""

    code = "ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return self.message


class ValidationError(StorefrontError):
    """Missing or malformed input (form fields, numbers, empty cart)."""

    code = "VALIDATION_ERROR"


class InvalidQuantity(ValidationError):
    """Quantity below 1 where a positive quantity is required."""

    code = "INVALID_QUANTITY"


class OutOfStock(StorefrontError):
    """Requested quantity exceeds current stock."""

    code = "OUT_OF_STOCK"


class PermissionDenied(StorefrontError):
    """Wrong role for the action, or the row belongs to someone else."""

    code = "PERMISSION_DENIED"


class SelfPurchase(PermissionDenied):
    """A seller tried to buy one of their own listings."""

    code = "SELF_PURCHASE"


class NotFound(StorefrontError):
    """Referenced row does not exist (or is not visible to the caller)."""

    code = "NOT_FOUND"


class InvalidTransition(StorefrontError):
    """Illegal order status change."""

    code = "INVALID_TRANSITION"


class BackendError(StorefrontError):
    """Opaque failure from the storage or identity service."""

    code = "BACKEND_ERROR"


class Unauthenticated(StorefrontError):
    """No session: the access token is missing, revoked or expired."""

    code = "UNAUTHENTICATED"
