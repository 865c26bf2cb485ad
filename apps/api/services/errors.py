"""Stable error vocabulary shared by the credit gateway endpoints.

Every failure leaves the API as a flat ``{"error": CODE, "details": ...}``
body. Callers branch on ``error``; ``details`` is human text only.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class GatewayError(Exception):
    """Base class for errors with a machine-stable code."""

    code = "SERVER_ERROR"
    status_code = 500

    def __init__(self, details: Optional[str] = None, *, status_code: Optional[int] = None):
        super().__init__(details or self.code)
        self.details = details
        if status_code is not None:
            self.status_code = status_code

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


class MissingFields(GatewayError):
    code = "MISSING_FIELDS"
    status_code = 400


class FeatureUnknown(GatewayError):
    code = "UNKNOWN_FEATURE_TYPE"
    status_code = 400


class AccountNotFound(GatewayError):
    code = "USER_NOT_FOUND"
    status_code = 400


class NoActiveSubscription(GatewayError):
    code = "NO_ACTIVE_SUBSCRIPTION"
    status_code = 403


class BalanceMissing(GatewayError):
    """Subscription exists but its balance row does not."""

    code = "NO_BALANCE_RECORD"
    status_code = 400


class InsufficientCredits(GatewayError):
    code = "INSUFFICIENT_CREDITS"
    status_code = 402


class TransactionFailed(GatewayError):
    """Ledger write aborted for an infrastructure reason. Rollback is complete."""

    code = "TX_FAILED"
    status_code = 500


class InternalError(GatewayError):
    code = "SERVER_ERROR"
    status_code = 500


class BadSignature(GatewayError):
    code = "BAD_SIGNATURE"
    status_code = 403
