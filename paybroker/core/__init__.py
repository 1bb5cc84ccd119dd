"""Core payment orchestration: domain types, errors, references and locking."""
from .exceptions import (
    AmountMismatchError,
    ConfigError,
    ConflictError,
    LockUnavailableError,
    MalformedPayloadError,
    NotFoundError,
    PaymentError,
    SignatureError,
    TransportError,
    UpstreamError,
    ValidationError,
)
from .types import AckOutcome, PaymentMethod, PaymentStatus

__all__ = [
    "AckOutcome",
    "AmountMismatchError",
    "ConfigError",
    "ConflictError",
    "LockUnavailableError",
    "MalformedPayloadError",
    "NotFoundError",
    "PaymentError",
    "PaymentMethod",
    "PaymentStatus",
    "SignatureError",
    "TransportError",
    "UpstreamError",
    "ValidationError",
]
