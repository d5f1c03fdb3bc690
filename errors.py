"""
Named failure conditions raised by the components.

Every error carries an ErrorKind; the HTTP layer maps each kind to exactly
one status code through STATUS_BY_KIND.
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    CONFLICT = "conflict"
    INVALID_TRANSITION = "invalid_transition"
    INTERNAL = "internal"


STATUS_BY_KIND = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.CONFLICT: 409,
    ErrorKind.INVALID_TRANSITION: 400,
    ErrorKind.INTERNAL: 500,
}


class ShopError(Exception):
    kind = ErrorKind.INTERNAL
    default_message = "Something went wrong"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    @property
    def status_code(self) -> int:
        return STATUS_BY_KIND[self.kind]


class ValidationError(ShopError):
    kind = ErrorKind.VALIDATION
    default_message = "Invalid request"


class InvalidValue(ValidationError):
    default_message = "Invalid value"


class PriceMismatch(ValidationError):
    default_message = "Price does not match the current product price"


class InvalidOrExpiredToken(ValidationError):
    default_message = "Invalid or expired token"


class NotFound(ShopError):
    kind = ErrorKind.NOT_FOUND
    default_message = "Not found"


class CartNotFound(NotFound):
    default_message = "Cart not found"


class ItemNotFound(NotFound):
    default_message = "Cart item not found"


class Unauthorized(ShopError):
    kind = ErrorKind.UNAUTHORIZED
    default_message = "Not authorized"


class Forbidden(ShopError):
    kind = ErrorKind.FORBIDDEN
    default_message = "Not authorized as admin"


class Conflict(ShopError):
    kind = ErrorKind.CONFLICT
    default_message = "Conflict"


class DuplicateEmail(Conflict):
    default_message = "User with this email already exists"


class LastAdminProtected(Conflict):
    default_message = "Cannot delete the last admin user"


class CategoryInUse(Conflict):
    default_message = "Category still has products"


class DuplicateWishlistEntry(Conflict):
    default_message = "Product already in wishlist"


class InsufficientStock(Conflict):
    default_message = "Insufficient stock"


class InvalidTransition(ShopError):
    kind = ErrorKind.INVALID_TRANSITION
    default_message = "Invalid status transition"


class Internal(ShopError):
    kind = ErrorKind.INTERNAL


class EmailDeliveryError(Internal):
    default_message = "Failed to send email"
