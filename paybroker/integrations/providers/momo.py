"""MoMo v2 (captureWallet) adapter."""
from typing import Any, Mapping, Optional

import structlog

from paybroker.config import MoMoConfig
from paybroker.core.exceptions import ConfigError, SignatureError, UpstreamError
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
    MOMO_CREATE_CODEC,
    MOMO_NOTIFY_CODEC,
    from_provider_amount,
)

from .base import ProviderAdapter

logger = structlog.get_logger(__name__)

MOMO_SUCCESS_CODE = "0"


class MoMoAdapter(ProviderAdapter):
    """
    MoMo wallet payments.

    ``accessKey`` is part of every signature but never travels in
    notifications, so it is always injected from configuration.
    """

    method = PaymentMethod.MOMO
    reference_policy = ReferencePolicy(max_length=50)
    supports_signed_return = True

    def __init__(self, config: MoMoConfig, http_client: Optional[ProviderHTTPClient] = None):
        super().__init__(http_client)
        self.config = config

    async def initiate(self, request: CreateRequest) -> InitiateResult:
        self._require(self.config, "partner_code", "access_key", "secret_key", "endpoint")
        redirect_url = self.config.redirect_url or request.return_url
        ipn_url = self.config.ipn_url or request.callback_url
        if not redirect_url or not ipn_url:
            raise ConfigError(
                "MoMo redirect/IPN URLs are not configured", provider=self.method.value
            )

        reference = self.sanitize_reference(request.reference)
        signed = {
            "accessKey": self.config.access_key,
            "amount": request.amount,
            "extraData": "",
            "ipnUrl": ipn_url,
            "orderId": reference,
            "orderInfo": request.description,
            "partnerCode": self.config.partner_code,
            "redirectUrl": redirect_url,
            "requestId": reference,
            "requestType": self.config.request_type,
        }
        body = {key: value for key, value in signed.items() if key != "accessKey"}
        body.update(
            {
                "lang": self.config.lang,
                "autoCapture": True,
                "signature": MOMO_CREATE_CODEC.sign_params(signed, self.config.secret_key),
            }
        )

        logger.info("momo_create_request", reference=reference, amount=request.amount)
        response = await self._http().post_json(self.config.endpoint, body)

        result_code = str(response.get("resultCode"))
        if result_code != MOMO_SUCCESS_CODE or not response.get("payUrl"):
            logger.error(
                "momo_create_rejected",
                reference=reference,
                result_code=result_code,
                message=response.get("message"),
            )
            raise UpstreamError(
                f"MoMo payment failed: {response.get('message', 'no payUrl returned')}",
                provider=self.method.value,
                result_code=result_code,
            )

        return InitiateResult(
            provider_reference=reference,
            redirect_url=response["payUrl"],
            qr_image_url=response.get("qrCodeUrl") or None,
            raw_response=response,
        )

    def verify_notification(self, payload: Mapping[str, Any]) -> NotificationResult:
        self._require(self.config, "access_key", "secret_key")
        self._required_fields(
            payload, "partnerCode", "orderId", "requestId", "amount", "resultCode", "signature"
        )

        params = dict(payload)
        params["accessKey"] = self.config.access_key
        if not MOMO_NOTIFY_CODEC.verify(params, str(payload["signature"]), self.config.secret_key):
            logger.warning("momo_signature_invalid", reference=payload.get("orderId"))
            raise SignatureError("Invalid MoMo signature", reference=payload.get("orderId"))

        result_code = str(payload["resultCode"])
        trans_id = payload.get("transId")
        return NotificationResult(
            reference=str(payload["orderId"]),
            amount=from_provider_amount(payload["amount"]),
            provider_transaction_id=str(trans_id) if trans_id not in (None, "") else None,
            outcome_code=result_code,
            succeeded=result_code == MOMO_SUCCESS_CODE,
            raw_payload=dict(payload),
        )

    def acknowledge(self, outcome: AckOutcome, message: Optional[str] = None) -> Acknowledgement:
        # MoMo treats 204 as "received"; anything else is retried.
        if outcome in (AckOutcome.ACCEPTED, AckOutcome.ALREADY_PROCESSED):
            return Acknowledgement(status_code=204)
        status_code = 500 if outcome is AckOutcome.ERROR else 400
        return Acknowledgement(
            status_code=status_code,
            body={"resultCode": 1, "message": message or outcome.value},
        )
