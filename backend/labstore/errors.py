# Overview: Exception taxonomy shared by services and routes.

"""
Error taxonomy (authoritative)

- Every expected business outcome is a StoreError subclass carrying a
  human-readable message and a JSON-safe details dict.
- http_status is what the route layer returns for the error.
- InsufficientFunds / InsufficientStock are user-facing outcomes and are never
  retried automatically.
- StorageUnavailable means the unit of work was rolled back completely; the
  caller may retry the same request verbatim.
"""

from __future__ import annotations


class StoreError(Exception):
    """Base class for expected store errors."""
    http_status = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.message, "code": type(self).__name__, "details": self.details}


class ValidationError(StoreError):
    """400-level input problem."""


class NotFoundError(StoreError):
    http_status = 404


class ConflictError(StoreError):
    """409-level business rule conflict."""
    http_status = 409


class InsufficientFunds(ConflictError):
    def __init__(self, balance: int, total: int):
        super().__init__(
            "Insufficient balance",
            details={"balance": balance, "total": total, "shortfall": total - balance},
        )
        self.balance = balance
        self.total = total


class InsufficientStock(ConflictError):
    def __init__(self, product_id: int, requested: int, available: int, product_name: str | None = None):
        label = product_name or f"product {product_id}"
        super().__init__(
            f"Insufficient stock for {label}",
            details={
                "product_id": product_id,
                "product_name": product_name,
                "requested_quantity": requested,
                "available_quantity": available,
            },
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class DuplicateCardBinding(ConflictError):
    def __init__(self, uid: str, bound_member_id: int):
        super().__init__(
            "Card is already registered to another member",
            details={"uid": uid, "bound_member_id": bound_member_id},
        )
        self.uid = uid
        self.bound_member_id = bound_member_id


class RecipeCycleDetected(ConflictError):
    def __init__(self, path: list[int]):
        super().__init__(
            "Recipe would create a cycle",
            details={"path": path},
        )
        self.path = path


class UnknownOrInactiveCard(StoreError):
    """Raised by card lookups; presence handling logs it and moves on."""
    http_status = 404

    def __init__(self, uid: str):
        super().__init__("Unknown or inactive card", details={"uid": uid})
        self.uid = uid


class StorageUnavailable(StoreError):
    http_status = 503

    def __init__(self, message: str = "Storage temporarily unavailable"):
        super().__init__(message, details={"retryable": True})
