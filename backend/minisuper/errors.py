# Overview: Domain error taxonomy shared by services and routes.

"""
Every failure the POS core can report is a POSError subclass.

KINDS (drive the HTTP status and whether a client may retry):
- validation:     malformed input, nothing was touched (400)
- state_conflict: register/session/sale state forbids the action (409)
- resource:       product/sale/batch missing or not enough stock (404/400)
- payment:        tendered amount does not cover the total (400)
- upstream:       exchange rate could not be obtained (503, retryable)

Stock and payment errors carry the numbers needed to fix the request.
"""

from __future__ import annotations

from decimal import Decimal


class POSError(Exception):
    """Base class for expected, user-facing POS failures."""

    kind = "validation"
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


# =============================================================================
# VALIDATION
# =============================================================================

class ValidationError(POSError):
    """400-level input problem. `errors` holds one message per bad field."""

    def __init__(self, message: str, errors: list[str] | None = None, details: dict | None = None):
        super().__init__(message, details)
        self.errors = errors or [message]


class DiscountExceedsSubtotal(ValidationError):
    def __init__(self, currency: str, discount: Decimal, subtotal: Decimal):
        super().__init__(
            f"Discount {discount} {currency} exceeds subtotal {subtotal} {currency}",
            details={"currency": currency, "discount": str(discount), "subtotal": str(subtotal)},
        )


# =============================================================================
# STATE CONFLICTS
# =============================================================================

class StateConflictError(POSError):
    kind = "state_conflict"
    status_code = 409


class NoOpenSession(StateConflictError):
    def __init__(self, message: str = "No open cash session for this user and register"):
        super().__init__(message)


class SessionAlreadyOpenForUser(StateConflictError):
    def __init__(self, session_id: int):
        super().__init__(
            "You already have an open cash session. Close it before opening another.",
            details={"session_id": session_id},
        )


class RegisterAlreadyOpen(StateConflictError):
    def __init__(self, register_id: int, session_id: int):
        super().__init__(
            "This cash register is already open by another user",
            details={"register_id": register_id, "session_id": session_id},
        )


class AlreadyCancelled(StateConflictError):
    def __init__(self, sale_id: int):
        super().__init__("Sale is already cancelled", details={"sale_id": sale_id})


class SaleNumbersExhausted(StateConflictError):
    def __init__(self, day: str, limit: int):
        super().__init__(
            f"Daily sale number limit reached ({limit} sales on {day})",
            details={"date": day, "limit": limit},
        )


class CatalogInUse(StateConflictError):
    def __init__(self, entity: str, entity_id: int, product_count: int):
        super().__init__(
            f"Cannot deactivate {entity}: {product_count} active products use it",
            details={f"{entity}_id": entity_id, "product_count": product_count},
        )


class DuplicateEntry(StateConflictError):
    """Unique catalog value (barcode, name, register number) already taken."""

    def __init__(self, field: str, value):
        super().__init__(f"{field} '{value}' already exists", details={"field": field, "value": value})


# =============================================================================
# RESOURCES
# =============================================================================

class ResourceError(POSError):
    kind = "resource"
    status_code = 400


class NotFoundError(ResourceError):
    status_code = 404


class ProductNotFound(NotFoundError):
    def __init__(self, product_id):
        super().__init__(f"Product {product_id} not found", details={"product_id": product_id})
        self.product_id = product_id


class SaleNotFound(NotFoundError):
    def __init__(self, sale_id):
        super().__init__("Sale not found", details={"sale_id": sale_id})


class RegisterNotFound(NotFoundError):
    def __init__(self, register_id):
        super().__init__("Cash register not found", details={"register_id": register_id})


class BatchNotFound(NotFoundError):
    def __init__(self, batch_id):
        super().__init__("Inventory batch not found", details={"batch_id": batch_id})


class InsufficientStock(ResourceError):
    def __init__(self, product_id: int, available: int, requested: int, product_name: str | None = None):
        label = product_name or f"product {product_id}"
        super().__init__(
            f"Insufficient stock for {label}. Available: {available}, Requested: {requested}",
            details={"product_id": product_id, "available": available, "requested": requested},
        )
        self.product_id = product_id
        self.available = available
        self.requested = requested


# =============================================================================
# PAYMENT
# =============================================================================

class InsufficientPayment(POSError):
    kind = "payment"

    def __init__(self, required: Decimal, received: Decimal):
        super().__init__(
            f"Insufficient payment. Total: ${required:.2f}, Received: ${received:.2f}",
            details={"required_usd": f"{required:.2f}", "received_usd": f"{received:.2f}"},
        )
        self.required = required
        self.received = received


# =============================================================================
# UPSTREAM
# =============================================================================

class RateUnavailable(POSError):
    kind = "upstream"
    status_code = 503

    def __init__(self, message: str = "Exchange rate could not be obtained"):
        super().__init__(message)
