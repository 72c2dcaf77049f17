# Overview: Structured error taxonomy raised by the stock and sales services.

"""
Every error carries a machine-readable kind, the affected entity IDs and a
human-readable message. Routes turn them into JSON via to_dict(); services
never swallow them.
"""
from __future__ import annotations


class StockLedgerError(Exception):
    """Base exception for all engine errors."""

    kind = "error"
    status_code = 500

    def __init__(self, message: str, *, entity_ids: list | None = None, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.entity_ids = list(entity_ids or [])
        self.details = details or {}

    def to_dict(self) -> dict:
        rv = dict(self.details)
        rv["error"] = self.kind
        rv["message"] = self.message
        if self.entity_ids:
            rv["entity_ids"] = self.entity_ids
        return rv


class ValidationFailed(StockLedgerError):
    """Bad caller input. Nothing was written."""

    kind = "validation_failed"
    status_code = 400

    def __init__(self, errors: list[dict] | str, *, entity_ids: list | None = None):
        if isinstance(errors, str):
            errors = [{"field": None, "message": errors}]
        self.errors = errors
        if len(errors) == 1:
            message = errors[0]["message"]
        else:
            message = f"{len(errors)} validation errors"
        super().__init__(message, entity_ids=entity_ids, details={"errors": errors})


class NotFound(StockLedgerError):
    """Referenced product or sale is missing."""

    kind = "not_found"
    status_code = 404

    def __init__(self, message: str = "Resource not found", *, entity_ids: list | None = None, retryable: bool = False):
        super().__init__(message, entity_ids=entity_ids)
        self.retryable = retryable


class InsufficientStock(StockLedgerError):
    """One or more products cannot cover the requested quantity."""

    kind = "insufficient_stock"
    status_code = 409

    def __init__(self, shortages: list[dict]):
        self.shortages = shortages
        parts = [
            f"{s['product_name']}: requested {s['requested']}, available {s['available']}"
            for s in shortages
        ]
        super().__init__(
            "Insufficient stock for " + "; ".join(parts),
            entity_ids=[s["product_id"] for s in shortages],
            details={"shortages": shortages},
        )


class ConflictAborted(StockLedgerError):
    """Transaction kept losing races until the retry budget ran out."""

    kind = "conflict_aborted"
    status_code = 409

    def __init__(self, message: str = "The operation conflicted with another update. Please try again.", *,
                 entity_ids: list | None = None, attempts: int | None = None):
        super().__init__(message, entity_ids=entity_ids, details={"attempts": attempts} if attempts else None)


class InvalidState(StockLedgerError):
    """Stored data violates an integrity rule. Needs an operator, not a retry."""

    kind = "invalid_state"
    status_code = 500
