# Overview: Domain error hierarchy shared by the lifecycle, cutoff and scoring services.

"""
Consign domain errors.

Every error carries a stable machine code and the HTTP status the routes
answer with. Services raise these; routes translate them with to_dict().

    InvalidStateError     status precondition violated (refresh and retry, or
                          treat as already done)
    InvalidQuantityError  caller input bug (returned > actual, negative qty)
    ValidationError       malformed setting (cutoff_time, grace period)
    StoreClosedError      store not accepting submissions, shown verbatim
    NotFoundError         unknown id
    StorageError          transient infrastructure failure, safe to retry
"""

from __future__ import annotations


class ConsignError(Exception):
    """Base class for domain errors."""

    code = "CONSIGN_ERROR"
    status_code = 500

    def __init__(self, message: str, *, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        payload = {"error": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


class InvalidStateError(ConsignError):
    code = "INVALID_STATE"
    status_code = 409


class InvalidQuantityError(ConsignError):
    code = "INVALID_QUANTITY"
    status_code = 400


class ValidationError(ConsignError):
    code = "VALIDATION_ERROR"
    status_code = 400


class StoreClosedError(ConsignError):
    code = "STORE_CLOSED"
    status_code = 403


class NotFoundError(ConsignError):
    code = "NOT_FOUND"
    status_code = 404


class StorageError(ConsignError):
    code = "STORAGE_ERROR"
    status_code = 503
