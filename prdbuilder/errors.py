"""
Billing error hierarchy.

Every error carries the HTTP status it is surfaced with and renders to the
JSON body `{error, message, ...extra}` used by all API endpoints.
"""
from typing import Any, Dict, Optional


class BillingError(Exception):
    """Base exception for PRD Builder Pro billing errors."""

    status_code = 500
    error = "Internal error"

    def __init__(
        self,
        message: str,
        *,
        error: Optional[str] = None,
        status_code: Optional[int] = None,
        extra: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.message = message
        if error is not None:
            self.error = error
        if status_code is not None:
            self.status_code = status_code
        self.extra = extra or {}
        self.original_error = original_error

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {"error": self.error, "message": self.message, **self.extra}


class AuthenticationError(BillingError):
    status_code = 401
    error = "Unauthorized"


class AuthorizationError(BillingError):
    status_code = 403
    error = "Forbidden"


class NotFoundError(BillingError):
    status_code = 404
    error = "Not found"


class NoBillingCustomerError(NotFoundError):
    error = "No billing customer found"

    def __init__(self, message: str = "You need to complete a checkout first before syncing subscriptions.", **kw):
        super().__init__(message, **kw)


class ValidationError(BillingError):
    status_code = 400
    error = "Invalid request data"


class InvalidPriceIdError(ValidationError):
    error = "Invalid Price ID"


class NoWorkspaceError(ValidationError):
    error = "Workspace not found"

    def __init__(self, message: str = "You must be part of a workspace to subscribe. Create a workspace first or contact support.", **kw):
        super().__init__(message, **kw)


class UpstreamProviderError(BillingError):
    """The payment provider rejected or failed a request."""
    status_code = 502
    error = "Payment provider error"


class PersistenceError(BillingError):
    status_code = 500
    error = "Database error"


class InvalidSignatureError(BillingError):
    # 400, not 5xx: a permanently invalid delivery must not be retried forever
    status_code = 400
    error = "Webhook signature verification failed"


class ConfigurationError(BillingError):
    status_code = 500
    error = "Billing not configured"
