"""
VNPay 2.1.0 adapter.

Payment creation is a locally signed redirect URL (no network call).
Notifications arrive as query strings on the IPN endpoint and on the
browser return URL; both carry ``vnp_SecureHash``.
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Mapping, Optional

import structlog

from paybroker.config import VNPayConfig
from paybroker.core.exceptions import ConfigError, SignatureError
from paybroker.core.types import (
    Acknowledgement,
    AckOutcome,
    CreateRequest,
    InitiateResult,
    NotificationResult,
    PaymentMethod,
    ReferencePolicy,
)
from paybroker.integrations.http_client import ProviderHTTPClient
from paybroker.integrations.signing import VNPAY_CODEC, from_provider_amount, to_provider_amount

from .base import ProviderAdapter

logger = structlog.get_logger(__name__)

VN_TIMEZONE = timezone(timedelta(hours=7))
VNPAY_AMOUNT_SCALE = 100
VNPAY_DATE_FORMAT = "%Y%m%d%H%M%S"

_ACKNOWLEDGEMENTS = {
    AckOutcome.ACCEPTED: ("00", "Confirm Success"),
    AckOutcome.ALREADY_PROCESSED: ("02", "Order already confirmed"),
    AckOutcome.NOT_FOUND: ("01", "Order not found"),
    AckOutcome.AMOUNT_MISMATCH: ("04", "Invalid amount"),
    AckOutcome.INVALID_SIGNATURE: ("97", "Invalid signature"),
    AckOutcome.MALFORMED: ("99", "Invalid request"),
    AckOutcome.ERROR: ("99", "Unknown error"),
}


class VNPayAdapter(ProviderAdapter):
    method = PaymentMethod.VNPAY
    reference_policy = ReferencePolicy(max_length=100)
    supports_signed_return = True

    def __init__(
        self,
        config: VNPayConfig,
        http_client: Optional[ProviderHTTPClient] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        super().__init__(http_client)
        self.config = config
        self._clock = clock or (lambda: datetime.now(VN_TIMEZONE))

    async def initiate(self, request: CreateRequest) -> InitiateResult:
        self._require(self.config, "tmn_code", "hash_secret", "payment_url")
        return_url = self.config.return_url or request.return_url
        if not return_url:
            raise ConfigError("VNPay return URL is not configured", provider=self.method.value)

        reference = self.sanitize_reference(request.reference)
        created = self._clock().astimezone(VN_TIMEZONE)
        expires = created + timedelta(minutes=self.config.expire_minutes)

        params = {
            "vnp_Version": "2.1.0",
            "vnp_Command": "pay",
            "vnp_TmnCode": self.config.tmn_code,
            "vnp_Amount": str(to_provider_amount(request.amount, VNPAY_AMOUNT_SCALE)),
            "vnp_CurrCode": "VND",
            "vnp_TxnRef": reference,
            "vnp_OrderInfo": (request.description or f"Thanh toan {reference}")[:255],
            "vnp_OrderType": "other",
            "vnp_Locale": self.config.locale,
            "vnp_ReturnUrl": return_url,
            "vnp_IpAddr": (request.client_ip or "127.0.0.1")[:45],
            "vnp_CreateDate": created.strftime(VNPAY_DATE_FORMAT),
            "vnp_ExpireDate": expires.strftime(VNPAY_DATE_FORMAT),
        }

        # The query string is the canonical form itself, hash appended last.
        canonical = VNPAY_CODEC.canonicalize(params)
        secure_hash = VNPAY_CODEC.sign(canonical, self.config.hash_secret)
        payment_url = f"{self.config.payment_url}?{canonical.decode('utf-8')}&vnp_SecureHash={secure_hash}"

        logger.info(
            "vnpay_payment_url_built",
            reference=reference,
            amount=request.amount,
            expires=params["vnp_ExpireDate"],
        )
        return InitiateResult(provider_reference=reference, redirect_url=payment_url)

    def verify_notification(self, payload: Mapping[str, Any]) -> NotificationResult:
        self._require(self.config, "hash_secret")
        params = dict(payload)
        self._required_fields(
            params, "vnp_TxnRef", "vnp_Amount", "vnp_ResponseCode", "vnp_SecureHash"
        )

        if not VNPAY_CODEC.verify(params, params["vnp_SecureHash"], self.config.hash_secret):
            logger.warning("vnpay_signature_invalid", reference=params.get("vnp_TxnRef"))
            raise SignatureError("Invalid VNPay signature", reference=params.get("vnp_TxnRef"))

        response_code = str(params["vnp_ResponseCode"])
        transaction_status = str(params.get("vnp_TransactionStatus") or response_code)
        succeeded = response_code == "00" and transaction_status == "00"

        return NotificationResult(
            reference=str(params["vnp_TxnRef"]),
            amount=from_provider_amount(params["vnp_Amount"], VNPAY_AMOUNT_SCALE),
            provider_transaction_id=params.get("vnp_TransactionNo") or None,
            outcome_code=transaction_status if response_code == "00" else response_code,
            succeeded=succeeded,
            raw_payload=params,
        )

    def acknowledge(self, outcome: AckOutcome, message: Optional[str] = None) -> Acknowledgement:
        code, default_message = _ACKNOWLEDGEMENTS[outcome]
        return Acknowledgement(status_code=200, body={"RspCode": code, "Message": default_message})
