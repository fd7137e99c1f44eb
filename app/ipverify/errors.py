"""
Error taxonomy shared by the registry, the ledger and the HTTP layer.

Every error carries a stable `kind` (returned to callers in the result envelope)
and the HTTP status it maps to.
"""

from __future__ import annotations


class IpVerifyError(RuntimeError):
    kind = "Error"
    http_status = 500

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.kind)
        self.message = message or self.kind


class ValidationError(IpVerifyError):
    """Malformed or missing input."""

    kind = "ValidationError"
    http_status = 400


class NotFound(IpVerifyError):
    kind = "NotFound"
    http_status = 404


class InvalidTransition(IpVerifyError):
    """Status machine rule violated."""

    kind = "InvalidTransition"
    http_status = 409


class ConsistencyViolation(IpVerifyError):
    """Post-condition check failed after a bulk mutation; the transaction must roll back."""

    kind = "ConsistencyViolation"
    http_status = 500


class TransientStoreError(IpVerifyError):
    """Transaction aborted for infrastructure reasons; the whole operation may be retried."""

    kind = "TransientStoreError"
    http_status = 503
