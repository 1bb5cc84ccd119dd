"""
Pytest configuration and fixtures.
"""
import json
import uuid
from datetime import datetime
from typing import Any, AsyncGenerator, Callable, Dict, List, Optional, Tuple

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from paybroker.config import Settings
from paybroker.core.exceptions import TransportError
from paybroker.core.payment_service import PaymentService
from paybroker.core.types import PaymentMethod
from paybroker.database.models import Base
from paybroker.database.repository import PaymentStore
from paybroker.integrations.event_bus import EventEmitter
from paybroker.integrations.http_client import ProviderHTTPClient
from paybroker.integrations.providers import (
    MoMoAdapter,
    PayOSAdapter,
    ProviderAdapter,
    VietQRAdapter,
    VNPayAdapter,
)
from paybroker.integrations.providers.vnpay import VN_TIMEZONE
from paybroker.integrations.signing import (
    MOMO_NOTIFY_CODEC,
    PAYOS_WEBHOOK_CODEC,
    VNPAY_CODEC,
)

VNPAY_SECRET = "SECRETKEY123"
MOMO_ACCESS_KEY = "F8BBA842ECF85"
MOMO_SECRET = "K951B6PE1waDMi640xX08PD3vg6EkVlz"
PAYOS_CHECKSUM_KEY = "1a54716c8f0efb2744fb28b6e38b25da7f67a925d98bc1c18bd8faaecadd7675"

FIXED_VN_NOW = datetime(2026, 10, 19, 10, 30, 0, tzinfo=VN_TIMEZONE)


class RecordingEmitter(EventEmitter):
    """Event bus double that keeps every published event."""

    def __init__(self) -> None:
        self.events: List[Tuple[str, Dict[str, Any], Optional[str]]] = []
        self.fail = False

    async def publish(
        self, topic: str, payload: Dict[str, Any], message_id: Optional[str] = None
    ) -> None:
        if self.fail:
            raise TransportError("broker unavailable", topic=topic)
        self.events.append((topic, payload, message_id))

    def topics(self) -> List[str]:
        return [topic for topic, _, _ in self.events]


class FakeProviderAPI:
    """
    ``httpx.MockTransport`` handler standing in for the MoMo and payOS APIs.

    Tests flip the attributes to simulate rejections and outages.
    """

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.momo_result_code = 0
        self.payos_code = "00"
        self.status_code = 200
        self.error: Optional[Callable[[httpx.Request], Exception]] = None

    def json_requests(self) -> List[Dict[str, Any]]:
        return [json.loads(request.content) for request in self.requests]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error(request)
        if self.status_code != 200:
            return httpx.Response(self.status_code, text="upstream unavailable")

        body = json.loads(request.content)
        if request.url.path.endswith("/v2/gateway/api/create"):
            order_id = body["orderId"]
            return httpx.Response(
                200,
                json={
                    "partnerCode": body["partnerCode"],
                    "orderId": order_id,
                    "requestId": body["requestId"],
                    "amount": body["amount"],
                    "responseTime": 1760844600000,
                    "message": "Successful." if self.momo_result_code == 0 else "Bad request",
                    "resultCode": self.momo_result_code,
                    "payUrl": f"https://test-payment.momo.vn/v2/gateway/pay?t={order_id}",
                    "qrCodeUrl": f"momo://app?action=payWithApp&orderId={order_id}",
                },
            )

        if request.url.path == "/v2/payment-requests":
            if self.payos_code != "00":
                return httpx.Response(
                    200, json={"code": self.payos_code, "desc": "Order code existed", "data": None}
                )
            link_id = uuid.uuid4().hex
            return httpx.Response(
                200,
                json={
                    "code": "00",
                    "desc": "success",
                    "data": {
                        "orderCode": body["orderCode"],
                        "amount": body["amount"],
                        "description": body["description"],
                        "paymentLinkId": link_id,
                        "status": "PENDING",
                        "checkoutUrl": f"https://pay.payos.vn/web/{link_id}",
                        "qrCode": f"00020101021238570010A000000727{body['orderCode']}",
                    },
                    "signature": "ignored",
                },
            )

        return httpx.Response(404, json={"message": "not found"})


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings."""
    return Settings(
        _env_file=None,
        database_url="sqlite+aiosqlite:///:memory:",
        app_name="paybroker-test",
        app_env="test",
        log_level="DEBUG",
        public_base_url="https://api.shop.example/",
        frontend_return_url="https://shop.example/payments/result",
        admin_api_key="operator-key",
        redis_lock_wait=5.0,
        vnpay_tmn_code="TESTTMN1",
        vnpay_hash_secret=VNPAY_SECRET,
        momo_partner_code="MOMO",
        momo_access_key=MOMO_ACCESS_KEY,
        momo_secret_key=MOMO_SECRET,
        payos_client_id="payos-client",
        payos_api_key="payos-api-key",
        payos_checksum_key=PAYOS_CHECKSUM_KEY,
        vietqr_client_id="vietqr-client",
        vietqr_api_key="vietqr-api-key",
        vietqr_checksum_key=PAYOS_CHECKSUM_KEY,
    )


@pytest_asyncio.fixture
async def session_factory(tmp_path: Any) -> AsyncGenerator[async_sessionmaker[AsyncSession], Any]:
    """Fresh SQLite file database per test."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'payments.db'}",
        poolclass=NullPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def store(session_factory: async_sessionmaker[AsyncSession]) -> PaymentStore:
    return PaymentStore(session_factory)


@pytest.fixture
def emitter() -> RecordingEmitter:
    return RecordingEmitter()


@pytest.fixture
def provider_api() -> FakeProviderAPI:
    return FakeProviderAPI()


@pytest.fixture
def http_client_factory(provider_api: FakeProviderAPI) -> Callable[[str], ProviderHTTPClient]:
    def build(provider: str) -> ProviderHTTPClient:
        return ProviderHTTPClient(
            provider,
            retry_attempts=3,
            retry_backoff=0,
            client=httpx.AsyncClient(transport=httpx.MockTransport(provider_api)),
        )

    return build


@pytest.fixture
def adapters(
    test_settings: Settings, http_client_factory: Callable[[str], ProviderHTTPClient]
) -> Dict[PaymentMethod, ProviderAdapter]:
    return {
        PaymentMethod.VNPAY: VNPayAdapter(test_settings.vnpay(), clock=lambda: FIXED_VN_NOW),
        PaymentMethod.MOMO: MoMoAdapter(test_settings.momo(), http_client_factory("MOMO")),
        PaymentMethod.PAYOS: PayOSAdapter(test_settings.payos(), http_client_factory("PAYOS")),
        PaymentMethod.VIETQR: VietQRAdapter(
            test_settings.vietqr(), http_client_factory("VIETQR")
        ),
    }


@pytest_asyncio.fixture
async def service(
    store: PaymentStore,
    adapters: Dict[PaymentMethod, ProviderAdapter],
    emitter: RecordingEmitter,
    test_settings: Settings,
) -> AsyncGenerator[PaymentService, Any]:
    payment_service = PaymentService(
        store=store, adapters=adapters, emitter=emitter, settings=test_settings
    )
    yield payment_service
    await payment_service.close()


@pytest.fixture
def vnpay_ipn() -> Callable[..., Dict[str, str]]:
    """Build a signed VNPay IPN / return query."""

    def build(
        reference: str,
        amount: int,
        response_code: str = "00",
        transaction_no: str = "14123456",
        secret: str = VNPAY_SECRET,
    ) -> Dict[str, str]:
        params = {
            "vnp_Amount": str(amount * 100),
            "vnp_BankCode": "NCB",
            "vnp_BankTranNo": "VNP14123456",
            "vnp_CardType": "ATM",
            "vnp_OrderInfo": "Thanh toan booking",
            "vnp_PayDate": "20261019103500",
            "vnp_ResponseCode": response_code,
            "vnp_TmnCode": "TESTTMN1",
            "vnp_TransactionNo": transaction_no,
            "vnp_TransactionStatus": response_code,
            "vnp_TxnRef": reference,
        }
        params["vnp_SecureHashType"] = "HmacSHA512"
        params["vnp_SecureHash"] = VNPAY_CODEC.sign_params(params, secret)
        return params

    return build


@pytest.fixture
def momo_ipn() -> Callable[..., Dict[str, Any]]:
    """Build a signed MoMo IPN body."""

    def build(
        reference: str,
        amount: int,
        result_code: int = 0,
        trans_id: int = 4088878653,
        secret: str = MOMO_SECRET,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "partnerCode": "MOMO",
            "orderId": reference,
            "requestId": reference,
            "amount": amount,
            "orderInfo": "Thanh toan booking",
            "orderType": "momo_wallet",
            "transId": trans_id,
            "resultCode": result_code,
            "message": "Successful." if result_code == 0 else "Transaction denied by user.",
            "payType": "qr",
            "responseTime": 1760844700000,
            "extraData": "",
        }
        body["signature"] = MOMO_NOTIFY_CODEC.sign_params(
            {**body, "accessKey": MOMO_ACCESS_KEY}, secret
        )
        return body

    return build


@pytest.fixture
def payos_webhook() -> Callable[..., Dict[str, Any]]:
    """Build a signed payOS webhook body."""

    def build(
        order_code: str,
        amount: int,
        code: str = "00",
        payment_link_id: str = "124c33293c43417ab7879e14c8d9eb18",
        secret: str = PAYOS_CHECKSUM_KEY,
    ) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "orderCode": int(order_code),
            "amount": amount,
            "description": f"Booking {order_code}",
            "accountNumber": "12345678",
            "reference": "TF230204212323",
            "transactionDateTime": "2026-10-19 10:31:00",
            "currency": "VND",
            "paymentLinkId": payment_link_id,
            "code": code,
            "desc": "success" if code == "00" else "failed",
            "counterAccountName": None,
        }
        return {
            "code": "00",
            "desc": "success",
            "success": True,
            "data": data,
            "signature": PAYOS_WEBHOOK_CODEC.sign_params(data, secret),
        }

    return build
