"""
Exception taxonomy for payment orchestration.

Creation errors are reported to the HTTP caller; notification errors are
mapped onto the provider's acknowledgement envelope and never leave the
orchestrator as exceptions.
"""
from typing import Any, Dict, Optional


class PaymentError(Exception):
    """
    Base exception for payment processing errors.

    Every error carries a stable error code (for clients) and the HTTP
    status the API layer should use when it reaches the caller.
    """

    error_code = "payment_error"
    http_status = 500

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for API responses."""
        return {
            "error": {
                "code": self.error_code,
                "message": self.message,
                "type": self.__class__.__name__,
            }
        }


class ValidationError(PaymentError):
    """Bad creation input. Not retried."""

    error_code = "validation_error"
    http_status = 400


class ConfigError(PaymentError):
    """A required provider secret or endpoint is not configured."""

    error_code = "config_error"
    http_status = 500


class UpstreamError(PaymentError):
    """Network failure or non-success envelope from a provider."""

    error_code = "upstream_error"
    http_status = 502

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        original_error: Optional[Exception] = None,
        **context: Any,
    ):
        super().__init__(message, provider=provider, **context)
        self.provider = provider
        self.original_error = original_error


class SignatureError(PaymentError):
    """Notification signature did not match recomputation."""

    error_code = "invalid_signature"
    http_status = 400


class MalformedPayloadError(PaymentError):
    """Notification is missing required fields or has unparsable values."""

    error_code = "malformed_payload"
    http_status = 400


class AmountMismatchError(PaymentError):
    """
    Notification amount differs from the stored amount.

    Treated as a potential fraud or misconfiguration signal.
    """

    error_code = "amount_mismatch"
    http_status = 400

    def __init__(self, message: str, expected: int, received: int, **context: Any):
        super().__init__(message, expected=expected, received=received, **context)
        self.expected = expected
        self.received = received


class NotFoundError(PaymentError):
    """No payment for the given id or reference."""

    error_code = "not_found"
    http_status = 404


class ConflictError(PaymentError):
    """Store uniqueness violation or a transition out of a terminal state."""

    error_code = "conflict"
    http_status = 409


class LockUnavailableError(PaymentError):
    """The per-reference lock could not be acquired in time."""

    error_code = "lock_unavailable"
    http_status = 503


class TransportError(PaymentError):
    """The event bus rejected or failed to deliver a publish."""

    error_code = "transport_error"
    http_status = 502
