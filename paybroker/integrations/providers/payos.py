"""
payOS adapters.

Two channels share the payOS protocol: ``PAYOS`` (hosted checkout link)
and ``VIETQR`` (the VietQR code shown in our own UI). The order code must be
numeric, so references for both are digits only.
"""
from typing import Any, Dict, Mapping, Optional

import structlog

from paybroker.config import PayOSConfig
from paybroker.core.exceptions import (
    ConfigError,
    MalformedPayloadError,
    SignatureError,
    UpstreamError,
)
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
from paybroker.integrations.signing import (
    PAYOS_CREATE_CODEC,
    PAYOS_WEBHOOK_CODEC,
    from_provider_amount,
)

from .base import ProviderAdapter

logger = structlog.get_logger(__name__)

PAYOS_SUCCESS_CODE = "00"
# Bank transfer content limit for accounts not linked through payOS.
PAYOS_DESCRIPTION_LIMIT = 25


class PayOSAdapter(ProviderAdapter):
    method = PaymentMethod.PAYOS
    reference_policy = ReferencePolicy(max_length=15, numeric=True)

    def __init__(self, config: PayOSConfig, http_client: Optional[ProviderHTTPClient] = None):
        super().__init__(http_client)
        self.config = config

    def _affordances(self, data: Mapping[str, Any]) -> Dict[str, Optional[str]]:
        return {"redirect_url": data.get("checkoutUrl") or None, "qr_image_url": None}

    async def initiate(self, request: CreateRequest) -> InitiateResult:
        self._require(self.config, "client_id", "api_key", "checksum_key", "endpoint")
        return_url = self.config.return_url or request.return_url
        cancel_url = self.config.cancel_url or return_url
        if not return_url:
            raise ConfigError("payOS return URL is not configured", provider=self.method.value)

        reference = self.sanitize_reference(request.reference)
        order_code = int(reference)
        payload: Dict[str, Any] = {
            "orderCode": order_code,
            "amount": request.amount,
            "description": f"Booking {order_code}"[:PAYOS_DESCRIPTION_LIMIT],
            "cancelUrl": cancel_url,
            "returnUrl": return_url,
        }
        payload["signature"] = PAYOS_CREATE_CODEC.sign_params(payload, self.config.checksum_key)

        logger.info(
            "payos_create_request",
            method=self.method.value,
            order_code=order_code,
            amount=request.amount,
        )
        response = await self._http().post_json(
            f"{self.config.endpoint.rstrip('/')}/v2/payment-requests",
            payload,
            headers={"x-client-id": self.config.client_id, "x-api-key": self.config.api_key},
        )

        data = response.get("data")
        if str(response.get("code")) != PAYOS_SUCCESS_CODE or not isinstance(data, dict):
            logger.error(
                "payos_create_rejected",
                method=self.method.value,
                order_code=order_code,
                code=response.get("code"),
                desc=response.get("desc"),
            )
            raise UpstreamError(
                f"payOS payment request failed: {response.get('desc', 'unknown error')}",
                provider=self.method.value,
                code=response.get("code"),
            )

        affordances = self._affordances(data)
        if not any(affordances.values()):
            raise UpstreamError(
                "payOS response carries no checkout URL or QR code", provider=self.method.value
            )

        return InitiateResult(provider_reference=reference, raw_response=response, **affordances)

    def verify_notification(self, payload: Mapping[str, Any]) -> NotificationResult:
        self._require(self.config, "checksum_key")
        data = payload.get("data")
        signature = payload.get("signature")
        if not isinstance(data, Mapping) or not signature:
            raise MalformedPayloadError("payOS webhook body must carry data and signature")

        if not PAYOS_WEBHOOK_CODEC.verify(data, str(signature), self.config.checksum_key):
            logger.warning(
                "payos_signature_invalid", method=self.method.value, order_code=data.get("orderCode")
            )
            raise SignatureError("Invalid payOS signature", reference=data.get("orderCode"))

        self._required_fields(data, "orderCode", "amount")
        # Only the data object is signed; top-level code/success are ignored.
        code = str(data.get("code") or "")
        transaction_id = data.get("paymentLinkId") or data.get("reference")
        return NotificationResult(
            reference=str(data["orderCode"]),
            amount=from_provider_amount(data["amount"]),
            provider_transaction_id=str(transaction_id) if transaction_id else None,
            outcome_code=code,
            succeeded=code == PAYOS_SUCCESS_CODE,
            raw_payload=dict(payload),
        )

    def acknowledge(self, outcome: AckOutcome, message: Optional[str] = None) -> Acknowledgement:
        if outcome in (AckOutcome.ACCEPTED, AckOutcome.ALREADY_PROCESSED):
            return Acknowledgement(status_code=200, body={"error": 0, "message": "ok", "data": None})
        # payOS confirms a webhook URL by posting an unknown order code and
        # requires a 2xx; the error field still marks the rejection.
        if outcome is AckOutcome.NOT_FOUND:
            status_code = 200
        elif outcome is AckOutcome.ERROR:
            status_code = 500
        else:
            status_code = 400
        return Acknowledgement(
            status_code=status_code,
            body={"error": -1, "message": message or outcome.value, "data": None},
        )


class VietQRAdapter(PayOSAdapter):
    """payOS channel whose primary affordance is the VietQR payload."""

    method = PaymentMethod.VIETQR

    def _affordances(self, data: Mapping[str, Any]) -> Dict[str, Optional[str]]:
        return {
            "redirect_url": data.get("checkoutUrl") or None,
            "qr_image_url": data.get("qrCode") or None,
        }
