"""
API routes for payment orchestration.

Creation and admin routes speak the API's own error shape; webhook routes
only ever answer with the provider's acknowledgement envelope.
"""
import hmac
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlencode

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, Response, status
from fastapi.responses import JSONResponse, RedirectResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from paybroker.config import Settings
from paybroker.core.payment_service import PaymentService
from paybroker.core.types import Acknowledgement, PaymentMethod
from paybroker.monitoring.health import HealthCheck

from .schemas import (
    CreatePaymentRequest,
    ForceSuccessRequest,
    HealthCheckResponse,
    PaymentListResponse,
    PaymentResponse,
)

logger = structlog.get_logger(__name__)

payment_router = APIRouter(prefix="/payments", tags=["payments"])
webhook_router = APIRouter(prefix="/webhooks", tags=["webhooks"])
admin_router = APIRouter(prefix="/admin", tags=["admin"])
monitoring_router = APIRouter(tags=["monitoring"])


def get_payment_service(request: Request) -> PaymentService:
    return request.app.state.payment_service


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_health_check(request: Request) -> HealthCheck:
    return request.app.state.health_check


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "127.0.0.1"


def ack_response(ack: Acknowledgement) -> Response:
    if ack.body is None:
        return Response(status_code=ack.status_code)
    return JSONResponse(content=ack.body, status_code=ack.status_code)


async def json_body(request: Request) -> Dict[str, Any]:
    """Decoded JSON object body, or {} so the adapter reports it as malformed."""
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


@payment_router.post(
    "",
    response_model=PaymentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a payment",
    description="Create a payment at the selected provider and persist it as PENDING",
)
async def create_payment(
    body: CreatePaymentRequest,
    request: Request,
    user_id: str = Header(..., alias="X-User-Id"),
    service: PaymentService = Depends(get_payment_service),
) -> Any:
    logger.info(
        "api_create_payment_request",
        booking_id=body.booking_id,
        amount=body.amount,
        method=body.method.value,
    )
    return await service.create_payment(
        user_id=user_id,
        booking_id=body.booking_id,
        amount=body.amount,
        method=body.method,
        client_ip=client_ip(request),
        description=body.description,
    )


@payment_router.get("", response_model=PaymentListResponse, summary="List payments")
async def list_payments(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: Optional[str] = Query(None, max_length=100),
    service: PaymentService = Depends(get_payment_service),
) -> Dict[str, Any]:
    items, total = await service.list_payments(page, limit, search)
    return {
        "items": [PaymentResponse.model_validate(payment) for payment in items],
        "total": total,
        "page": page,
        "limit": limit,
    }


@payment_router.get("/{payment_id}", response_model=PaymentResponse, summary="Get a payment")
async def get_payment(
    payment_id: str,
    service: PaymentService = Depends(get_payment_service),
) -> Any:
    return await service.get_payment(payment_id)


@webhook_router.get("/vnpay/ipn", summary="VNPay IPN")
async def vnpay_ipn(
    request: Request, service: PaymentService = Depends(get_payment_service)
) -> Response:
    ack = await service.handle_notification(PaymentMethod.VNPAY, dict(request.query_params))
    return ack_response(ack)


@webhook_router.post("/momo/ipn", summary="MoMo IPN")
async def momo_ipn(
    request: Request, service: PaymentService = Depends(get_payment_service)
) -> Response:
    ack = await service.handle_notification(PaymentMethod.MOMO, await json_body(request))
    return ack_response(ack)


@webhook_router.post("/vietqr", summary="payOS webhook (VietQR channel)")
async def vietqr_webhook(
    request: Request, service: PaymentService = Depends(get_payment_service)
) -> Response:
    ack = await service.handle_notification(PaymentMethod.VIETQR, await json_body(request))
    return ack_response(ack)


@webhook_router.post("/payos", summary="payOS webhook")
async def payos_webhook(
    request: Request, service: PaymentService = Depends(get_payment_service)
) -> Response:
    ack = await service.handle_notification(PaymentMethod.PAYOS, await json_body(request))
    return ack_response(ack)


async def _browser_return(
    method: PaymentMethod,
    params: Mapping[str, Any],
    service: PaymentService,
    settings: Settings,
) -> RedirectResponse:
    outcome, ack_outcome = await service.handle_return(method, params)
    if outcome is not None:
        query = {
            "status": outcome.payment.status,
            "paymentId": str(outcome.payment.id),
            "bookingId": outcome.payment.booking_id,
        }
    else:
        query = {"status": ack_outcome.name}

    target = settings.frontend_return_url
    separator = "&" if "?" in target else "?"
    return RedirectResponse(
        url=f"{target}{separator}{urlencode(query)}", status_code=status.HTTP_302_FOUND
    )


@webhook_router.get("/vnpay/return", summary="VNPay browser return")
async def vnpay_return(
    request: Request,
    service: PaymentService = Depends(get_payment_service),
    settings: Settings = Depends(get_app_settings),
) -> RedirectResponse:
    return await _browser_return(PaymentMethod.VNPAY, dict(request.query_params), service, settings)


@webhook_router.get("/momo/return", summary="MoMo browser return")
async def momo_return(
    request: Request,
    service: PaymentService = Depends(get_payment_service),
    settings: Settings = Depends(get_app_settings),
) -> RedirectResponse:
    return await _browser_return(PaymentMethod.MOMO, dict(request.query_params), service, settings)


def require_admin(
    settings: Settings = Depends(get_app_settings),
    api_key: Optional[str] = Header(None, alias="X-API-Key"),
) -> None:
    if not settings.admin_api_key:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Operator endpoints are disabled"
        )
    if not api_key or not hmac.compare_digest(
        api_key.encode("utf-8"), settings.admin_api_key.encode("utf-8")
    ):
        logger.warning("admin_auth_failed")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")


@admin_router.post(
    "/payments/{payment_id}/force-success",
    response_model=PaymentResponse,
    summary="Force a payment to SUCCESS",
    description="Audited operator override; bypasses provider signature verification",
    dependencies=[Depends(require_admin)],
)
async def force_success(
    payment_id: str,
    body: ForceSuccessRequest,
    service: PaymentService = Depends(get_payment_service),
) -> Any:
    return await service.force_success(
        payment_id,
        operator=body.operator,
        transaction_id=body.transaction_id,
        reason=body.reason,
    )


@monitoring_router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Health check",
    description="Check overall system health",
)
async def health(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    return await health_check.check_all()


@monitoring_router.get("/health/live", response_model=HealthCheckResponse, summary="Liveness probe")
async def liveness(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    return await health_check.liveness()


@monitoring_router.get("/health/ready", response_model=HealthCheckResponse, summary="Readiness probe")
async def readiness(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    result = await health_check.readiness()
    if result["status"] != "healthy":
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=result)
    return result


@monitoring_router.get(
    "/metrics",
    summary="Prometheus metrics",
    include_in_schema=False,
)
async def prometheus_metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
