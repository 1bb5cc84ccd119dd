"""Provider adapters, keyed by payment method."""
from typing import Dict

from paybroker.config import Settings
from paybroker.core.types import PaymentMethod
from paybroker.integrations.http_client import ProviderHTTPClient

from .base import ProviderAdapter
from .momo import MoMoAdapter
from .payos import PayOSAdapter, VietQRAdapter
from .vnpay import VNPayAdapter


def _http_client(settings: Settings, method: PaymentMethod) -> ProviderHTTPClient:
    return ProviderHTTPClient(
        method.value,
        timeout=settings.provider_timeout_seconds,
        retry_attempts=settings.provider_retry_attempts,
    )


def build_adapters(settings: Settings) -> Dict[PaymentMethod, ProviderAdapter]:
    """
    Build one adapter per supported method from settings.

    Adapters for unconfigured providers are still registered; they raise
    ConfigError the first time they are used.
    """
    return {
        PaymentMethod.VNPAY: VNPayAdapter(settings.vnpay()),
        PaymentMethod.MOMO: MoMoAdapter(
            settings.momo(), _http_client(settings, PaymentMethod.MOMO)
        ),
        PaymentMethod.PAYOS: PayOSAdapter(
            settings.payos(), _http_client(settings, PaymentMethod.PAYOS)
        ),
        PaymentMethod.VIETQR: VietQRAdapter(
            settings.vietqr(), _http_client(settings, PaymentMethod.VIETQR)
        ),
    }


__all__ = [
    "ProviderAdapter",
    "VNPayAdapter",
    "MoMoAdapter",
    "PayOSAdapter",
    "VietQRAdapter",
    "build_adapters",
]
