"""Domain types shared by the orchestrator, the adapters and the store."""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


class PaymentMethod(str, enum.Enum):
    """Supported gateways. The set is closed."""

    VNPAY = "VNPAY"
    MOMO = "MOMO"
    VIETQR = "VIETQR"
    PAYOS = "PAYOS"

    @classmethod
    def parse(cls, value: Any) -> "PaymentMethod":
        """Case-insensitive lookup; raises ValueError for unknown methods."""
        if isinstance(value, cls):
            return value
        return cls(str(value).strip().upper())


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self is not PaymentStatus.PENDING


class AckOutcome(str, enum.Enum):
    """How a notification was resolved, before provider-specific shaping."""

    ACCEPTED = "accepted"
    ALREADY_PROCESSED = "already_processed"
    NOT_FOUND = "not_found"
    AMOUNT_MISMATCH = "amount_mismatch"
    INVALID_SIGNATURE = "invalid_signature"
    MALFORMED = "malformed"
    ERROR = "error"


TOPIC_PAYMENT_SUCCESS = "payment.success"
TOPIC_PAYMENT_FAILED = "payment.failed"


@dataclass(frozen=True)
class CreateRequest:
    """Normalized payment-initiation request handed to an adapter."""

    reference: str
    amount: int
    description: str
    return_url: Optional[str]
    callback_url: Optional[str]
    client_ip: str = "127.0.0.1"


@dataclass(frozen=True)
class InitiateResult:
    provider_reference: str
    redirect_url: Optional[str] = None
    qr_image_url: Optional[str] = None
    raw_response: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class NotificationResult:
    """A verified provider notification in normalized form."""

    reference: str
    amount: int
    provider_transaction_id: Optional[str]
    outcome_code: str
    succeeded: bool
    raw_payload: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Acknowledgement:
    """Exact response a provider expects on its callback endpoint."""

    status_code: int
    body: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class ReferencePolicy:
    """Constraints a provider puts on the correlation reference."""

    max_length: int
    numeric: bool = False
    disallowed: str = r"[^A-Za-z0-9_-]"
