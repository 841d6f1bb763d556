"""
Error taxonomy for the audit session client.

HTTP-level exceptions never escape the client boundary; they are
translated into one of the classes below so the controller can decide
between challenge, terminal error and silent ignore.
"""

from typing import Optional


class AuditSessionError(RuntimeError):
    """Base class for every error raised by this package."""


class AuthRequiredError(AuditSessionError):
    """
    Raised when the backend answers 401 for a report-scoped request.

    Recoverable: the controller shows the report challenge and retries
    the same fetch once a fresh token is available.
    """


class FetchFailure(AuditSessionError):
    """Raised for any non-auth, non-abort failure of a backend read."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TransientAbort(AuditSessionError):
    """Raised when a request was aborted or timed out. Never user-visible."""


class PaymentError(AuditSessionError):
    pass


class PaymentInitiationFailure(PaymentError):
    """Raised when an order could not be created."""


class PaymentVerificationFailure(PaymentError):
    """Raised when the backend rejects a completed checkout."""


class ChallengeFailure(AuditSessionError):
    """Raised when a login or MFA step of the report challenge fails."""

    def __init__(
        self,
        message: str,
        *,
        rate_limited: bool = False,
        retry_after_seconds: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.rate_limited = rate_limited
        self.retry_after_seconds = retry_after_seconds
