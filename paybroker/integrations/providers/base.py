"""Capability interface shared by every provider adapter."""
from abc import ABC, abstractmethod
from typing import Any, Mapping, Optional

from paybroker.core.exceptions import ConfigError, MalformedPayloadError
from paybroker.core.references import sanitize_reference
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


class ProviderAdapter(ABC):
    """
    One external gateway behind ``initiate`` / ``verify_notification``.

    Adapters never touch the store. Verification is pure apart from logging.
    """

    method: PaymentMethod
    reference_policy: ReferencePolicy
    supports_signed_return = False

    def __init__(self, http_client: Optional[ProviderHTTPClient] = None):
        self.http_client = http_client

    def sanitize_reference(self, reference: str) -> str:
        """Apply this provider's allow-list and length cap."""
        return sanitize_reference(reference, self.reference_policy)

    def _require(self, config: Any, *names: str) -> None:
        missing = config.missing(*names)
        if missing:
            raise ConfigError(
                f"{self.method.value} is not configured: missing {', '.join(missing)}",
                provider=self.method.value,
            )

    def _http(self) -> ProviderHTTPClient:
        if self.http_client is None:
            self.http_client = ProviderHTTPClient(self.method.value)
        return self.http_client

    @staticmethod
    def _required_fields(payload: Mapping[str, Any], *names: str) -> None:
        missing = [name for name in names if payload.get(name) in (None, "")]
        if missing:
            raise MalformedPayloadError(f"Missing required fields: {', '.join(missing)}")

    @abstractmethod
    async def initiate(self, request: CreateRequest) -> InitiateResult:
        """
        Create the payment at the provider.

        Raises:
            ConfigError: If required secrets/endpoints are unset
            UpstreamError: If the provider call fails or is rejected
        """

    @abstractmethod
    def verify_notification(self, payload: Mapping[str, Any]) -> NotificationResult:
        """
        Verify and normalize an inbound notification.

        Raises:
            SignatureError: If the signature does not match
            MalformedPayloadError: If required fields are missing
        """

    @abstractmethod
    def acknowledge(self, outcome: AckOutcome, message: Optional[str] = None) -> Acknowledgement:
        """Build the provider-mandated response for a notification outcome."""

    def verify_return(self, payload: Mapping[str, Any]) -> NotificationResult:
        """Verify a browser return redirect; only signed returns are accepted."""
        if not self.supports_signed_return:
            raise MalformedPayloadError(f"{self.method.value} returns are not signed")
        return self.verify_notification(payload)

    async def close(self) -> None:
        if self.http_client is not None:
            await self.http_client.close()

