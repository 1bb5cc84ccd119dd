"""
Payment orchestrator.

Drives every payment through PENDING -> SUCCESS | FAILED:

Creation:
1. Validate input
2. Pick the adapter for the method
3. Generate a reference under the adapter's policy
4. Initiate the payment at the provider
5. Persist the PENDING record (only once a payment affordance exists)

Notification:
1. Verify the signature (adapter)
2. Lock the reference
3. Look up the payment by (method, reference)
4. Check amount, then current status
5. Compare-and-set the status and write the outbox event
6. Publish the event (failures leave the row for the outbox worker)
7. Map the outcome onto the provider's acknowledgement envelope
"""
import asyncio
import time
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import structlog
from sqlalchemy.exc import SQLAlchemyError

from paybroker.config import Settings, get_settings
from paybroker.core.exceptions import (
    AmountMismatchError,
    ConfigError,
    ConflictError,
    MalformedPayloadError,
    NotFoundError,
    PaymentError,
    SignatureError,
    TransportError,
    ValidationError,
)
from paybroker.core.locking import LocalReferenceLock, ReferenceLock
from paybroker.core.references import generate_reference
from paybroker.core.types import (
    TOPIC_PAYMENT_FAILED,
    TOPIC_PAYMENT_SUCCESS,
    Acknowledgement,
    AckOutcome,
    CreateRequest,
    NotificationResult,
    PaymentMethod,
    PaymentStatus,
)
from paybroker.database.models import OutboxEvent, Payment, utcnow
from paybroker.database.repository import EventFactory, PaymentStore, outbox_message
from paybroker.integrations.event_bus import EventEmitter
from paybroker.integrations.providers.base import ProviderAdapter
from paybroker.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

MAX_PAGE_SIZE = 100
# Width of the user_id and booking_id columns.
MAX_ID_LENGTH = 100

# (browser return path, server callback path) per method, below PUBLIC_BASE_URL.
# payOS returns are unsigned, so they go straight to the frontend.
_CALLBACK_PATHS: Dict[PaymentMethod, Tuple[Optional[str], str]] = {
    PaymentMethod.VNPAY: ("/webhooks/vnpay/return", "/webhooks/vnpay/ipn"),
    PaymentMethod.MOMO: ("/webhooks/momo/return", "/webhooks/momo/ipn"),
    PaymentMethod.PAYOS: (None, "/webhooks/payos"),
    PaymentMethod.VIETQR: (None, "/webhooks/vietqr"),
}

_REJECTIONS: Tuple[Tuple[type, AckOutcome], ...] = (
    (SignatureError, AckOutcome.INVALID_SIGNATURE),
    (MalformedPayloadError, AckOutcome.MALFORMED),
    (NotFoundError, AckOutcome.NOT_FOUND),
    (AmountMismatchError, AckOutcome.AMOUNT_MISMATCH),
)


@dataclass
class NotificationOutcome:
    """What processing a verified notification did to the payment."""

    outcome: AckOutcome
    payment: Payment
    event_published: Optional[bool] = None


class PaymentService:
    """
    Payment orchestration state machine.

    The only component that mutates payments; adapters never see the store.
    """

    def __init__(
        self,
        store: PaymentStore,
        adapters: Mapping[PaymentMethod, ProviderAdapter],
        emitter: EventEmitter,
        settings: Optional[Settings] = None,
        lock: Optional[ReferenceLock] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize payment service.

        Args:
            store: Payment record store
            adapters: One adapter per supported method
            emitter: Event bus for payment.success / payment.failed
            settings: Application settings (callback URLs)
            lock: Per-reference lock, in-process by default
            clock: Source of "now" for payment dates
        """
        self.store = store
        self.adapters = dict(adapters)
        self.emitter = emitter
        self.settings = settings or get_settings()
        self.lock = lock or LocalReferenceLock(self.settings.redis_lock_wait)
        self._now = clock or utcnow

        logger.info(
            "payment_service_initialized",
            methods=sorted(method.value for method in self.adapters),
            lock=type(self.lock).__name__,
            emitter=type(self.emitter).__name__,
        )

    def adapter(self, method: PaymentMethod) -> ProviderAdapter:
        try:
            return self.adapters[method]
        except KeyError:
            raise ConfigError(f"No adapter registered for {method.value}", method=method.value)

    def _urls(self, method: PaymentMethod) -> Tuple[Optional[str], Optional[str]]:
        base = self.settings.public_base_url
        return_path, callback_path = _CALLBACK_PATHS[method]
        return_url = f"{base}{return_path}" if base and return_path else None
        if return_path is None:
            return_url = self.settings.frontend_return_url
        callback_url = f"{base}{callback_path}" if base else None
        return return_url, callback_url

    @staticmethod
    def _validate_create_request(
        user_id: Any, booking_id: Any, amount: Any, method: Any
    ) -> PaymentMethod:
        """
        Validate payment creation parameters.

        Raises:
            ValidationError: If validation fails
        """
        if not user_id or not str(user_id).strip():
            raise ValidationError("User ID is required")
        if len(str(user_id)) > MAX_ID_LENGTH:
            raise ValidationError(f"User ID must be at most {MAX_ID_LENGTH} characters")
        if not booking_id or not str(booking_id).strip():
            raise ValidationError("Booking ID is required")
        if len(str(booking_id).strip()) > MAX_ID_LENGTH:
            raise ValidationError(f"Booking ID must be at most {MAX_ID_LENGTH} characters")
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise ValidationError("Amount must be an integer number of base currency units")
        if amount <= 0:
            raise ValidationError("Amount must be positive")
        try:
            return PaymentMethod.parse(method)
        except ValueError:
            raise ValidationError(f"Unsupported payment method: {method}")

    async def create_payment(
        self,
        user_id: str,
        booking_id: str,
        amount: int,
        method: PaymentMethod | str,
        client_ip: str = "127.0.0.1",
        description: Optional[str] = None,
    ) -> Payment:
        """
        Create a payment at the provider and persist it as PENDING.

        Nothing is persisted when the provider call fails.

        Args:
            user_id: Owner of the payment
            booking_id: Caller's correlation key (not unique)
            amount: Amount in base currency units
            method: Payment method
            client_ip: End-user IP, forwarded to providers that want it
            description: Order description shown by the provider

        Returns:
            Payment: The persisted PENDING payment

        Raises:
            ValidationError: If input validation fails
            ConfigError: If the provider is not configured
            UpstreamError: If the provider call fails
            ConflictError: If the generated reference already exists
        """
        correlation_id = str(uuid.uuid4())
        start_time = time.time()
        payment_method = self._validate_create_request(user_id, booking_id, amount, method)
        booking_id = str(booking_id).strip()

        logger.info(
            "payment_creation_started",
            correlation_id=correlation_id,
            booking_id=booking_id,
            method=payment_method.value,
            amount=amount,
        )

        adapter = self.adapter(payment_method)
        reference = adapter.sanitize_reference(
            generate_reference(booking_id, adapter.reference_policy)
        )
        return_url, callback_url = self._urls(payment_method)
        request = CreateRequest(
            reference=reference,
            amount=amount,
            description=description or f"Thanh toan booking {booking_id}",
            return_url=return_url,
            callback_url=callback_url,
            client_ip=client_ip or "127.0.0.1",
        )

        try:
            result = await adapter.initiate(request)
        except PaymentError as e:
            metrics.record_payment_request(payment_method.value, "failed", amount)
            logger.error(
                "payment_initiation_failed",
                correlation_id=correlation_id,
                method=payment_method.value,
                reference=reference,
                error_code=e.error_code,
                error=e.message,
            )
            raise

        payment = Payment(
            booking_id=booking_id,
            user_id=str(user_id),
            method=payment_method.value,
            amount=amount,
            reference=adapter.sanitize_reference(result.provider_reference),
            payment_url=result.redirect_url,
            qr_image_url=result.qr_image_url,
            status=PaymentStatus.PENDING.value,
            payment_date=self._now(),
        )
        try:
            await self.store.create(payment)
        except ConflictError:
            metrics.record_payment_request(payment_method.value, "conflict", amount)
            raise

        metrics.record_payment_request(payment_method.value, "created", amount)
        metrics.record_payment_duration(payment_method.value, time.time() - start_time)
        logger.info(
            "payment_created",
            correlation_id=correlation_id,
            payment_id=str(payment.id),
            booking_id=booking_id,
            method=payment_method.value,
            reference=payment.reference,
        )
        return payment

    def _event_factory(
        self,
        topic: str,
        forced: bool = False,
        operator: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> EventFactory:
        def build(payment: Payment) -> Tuple[str, Dict[str, Any]]:
            payload: Dict[str, Any] = {
                "paymentId": str(payment.id),
                "bookingId": payment.booking_id,
                "userId": payment.user_id,
                "amount": payment.amount,
                "method": payment.method,
                "status": payment.status,
                "transactionId": payment.transaction_id,
                "reference": payment.reference,
                "occurredAt": self._now().isoformat(),
                "forced": forced,
            }
            if forced:
                payload["operator"] = operator
                payload["reason"] = reason
            return topic, payload

        return build

    async def _publish(self, event: OutboxEvent) -> bool:
        """
        Publish a freshly written outbox event.

        Returns:
            bool: False if the bus rejected it; the outbox worker retries later
        """
        try:
            await self.emitter.publish(
                event.event_type, outbox_message(event), message_id=str(event.id)
            )
        except TransportError as e:
            metrics.record_event_publish_failure(event.event_type)
            logger.error(
                "event_publish_failed",
                event_id=event.id,
                topic=event.event_type,
                payment_id=str(event.aggregate_id),
                error=e.message,
            )
            return False

        metrics.record_event_published(event.event_type)
        try:
            await self.store.mark_published([event.id])
        except SQLAlchemyError as e:
            # Already delivered; the outbox worker will send it again.
            logger.error(
                "event_mark_published_failed",
                event_id=event.id,
                topic=event.event_type,
                error=str(e),
            )
        return True

    async def _apply(self, method: PaymentMethod, result: NotificationResult) -> NotificationOutcome:
        async with self.lock.hold(f"{method.value}:{result.reference}"):
            payment = await self.store.find_by_reference(method, result.reference)

            if result.amount != payment.amount:
                logger.error(
                    "notification_amount_mismatch",
                    method=method.value,
                    reference=result.reference,
                    payment_id=str(payment.id),
                    expected=payment.amount,
                    received=result.amount,
                )
                raise AmountMismatchError(
                    "Notification amount does not match payment",
                    expected=payment.amount,
                    received=result.amount,
                    reference=result.reference,
                )

            if payment.status != PaymentStatus.PENDING.value:
                logger.info(
                    "notification_already_processed",
                    method=method.value,
                    payment_id=str(payment.id),
                    status=payment.status,
                    outcome_code=result.outcome_code,
                )
                return NotificationOutcome(AckOutcome.ALREADY_PROCESSED, payment)

            if result.succeeded:
                update = await self.store.update_status(
                    payment.id,
                    PaymentStatus.SUCCESS,
                    expected_status=PaymentStatus.PENDING,
                    transaction_id=result.provider_transaction_id,
                    payment_date=self._now(),
                    event=self._event_factory(TOPIC_PAYMENT_SUCCESS),
                )
            else:
                update = await self.store.update_status(
                    payment.id,
                    PaymentStatus.FAILED,
                    expected_status=PaymentStatus.PENDING,
                    transaction_id=result.provider_transaction_id,
                    event=self._event_factory(TOPIC_PAYMENT_FAILED),
                )

            if update is None:
                # Another writer (e.g. another process) got there first.
                current = await self.store.get(payment.id)
                return NotificationOutcome(AckOutcome.ALREADY_PROCESSED, current)

        logger.info(
            "payment_transitioned",
            method=method.value,
            payment_id=str(update.payment.id),
            status=update.payment.status,
            transaction_id=update.payment.transaction_id,
            outcome_code=result.outcome_code,
        )
        published = await self._publish(update.event)
        return NotificationOutcome(AckOutcome.ACCEPTED, update.payment, published)

    async def process_notification(
        self, method: PaymentMethod | str, payload: Mapping[str, Any]
    ) -> NotificationOutcome:
        """
        Verify a provider notification and apply it.

        Raises:
            SignatureError: Signature did not verify; nothing changed
            MalformedPayloadError: Required fields missing
            NotFoundError: Unknown reference
            AmountMismatchError: Amount differs from the stored payment
            LockUnavailableError: The reference lock could not be acquired
        """
        payment_method = PaymentMethod.parse(method)
        result = self.adapter(payment_method).verify_notification(payload)
        return await self._apply(payment_method, result)

    async def _resolve(
        self, method: PaymentMethod, work: Callable[[], Any], source: str
    ) -> Tuple[Optional[NotificationOutcome], AckOutcome, Optional[str]]:
        start_time = time.time()
        outcome: Optional[NotificationOutcome] = None
        message: Optional[str] = None
        try:
            # Runs to completion even if the HTTP request is cancelled.
            outcome = await asyncio.shield(work())
            ack_outcome = outcome.outcome
        except PaymentError as e:
            ack_outcome = next(
                (ack for error_type, ack in _REJECTIONS if isinstance(e, error_type)),
                AckOutcome.ERROR,
            )
            message = e.message
            log = logger.error if ack_outcome is AckOutcome.ERROR else logger.warning
            log(
                "notification_rejected",
                source=source,
                method=method.value,
                outcome=ack_outcome.value,
                error_code=e.error_code,
                error=e.message,
            )
        except Exception:
            ack_outcome = AckOutcome.ERROR
            logger.exception("notification_processing_error", source=source, method=method.value)

        metrics.record_notification(method.value, ack_outcome.value, time.time() - start_time)
        return outcome, ack_outcome, message

    async def handle_notification(
        self, method: PaymentMethod | str, payload: Mapping[str, Any]
    ) -> Acknowledgement:
        """
        Process a server-to-server notification and build the acknowledgement.

        Never raises: every failure becomes the provider's rejection envelope.
        """
        payment_method = PaymentMethod.parse(method)
        adapter = self.adapter(payment_method)
        _, ack_outcome, message = await self._resolve(
            payment_method,
            lambda: self.process_notification(payment_method, payload),
            source="webhook",
        )
        return adapter.acknowledge(ack_outcome, message)

    async def handle_return(
        self, method: PaymentMethod | str, payload: Mapping[str, Any]
    ) -> Tuple[Optional[NotificationOutcome], AckOutcome]:
        """
        Process a signed browser return redirect.

        Applied exactly like a notification, since the return may arrive
        before the provider's server-to-server call.
        """
        payment_method = PaymentMethod.parse(method)
        adapter = self.adapter(payment_method)

        async def work() -> NotificationOutcome:
            return await self._apply(payment_method, adapter.verify_return(payload))

        outcome, ack_outcome, _ = await self._resolve(payment_method, work, source="return")
        return outcome, ack_outcome

    async def force_success(
        self,
        payment_id: uuid.UUID | str,
        operator: str,
        transaction_id: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> Payment:
        """
        Operator override: mark a PENDING payment successful without a
        provider signature.

        Already-successful payments are returned unchanged with no event.

        Raises:
            ValidationError: If no operator is given
            NotFoundError: Unknown payment
            ConflictError: The payment already FAILED
        """
        if not operator or not str(operator).strip():
            raise ValidationError("Operator is required for a forced success")

        payment = await self.get_payment(payment_id)
        method = PaymentMethod.parse(payment.method)

        async with self.lock.hold(f"{method.value}:{payment.reference}"):
            payment = await self.store.get(payment.id)
            if payment.status == PaymentStatus.SUCCESS.value:
                logger.info("force_success_noop", payment_id=str(payment.id), operator=operator)
                return payment
            if payment.status == PaymentStatus.FAILED.value:
                raise ConflictError(
                    "Cannot force success on a failed payment", payment_id=str(payment.id)
                )

            logger.warning(
                "payment_force_success",
                payment_id=str(payment.id),
                booking_id=payment.booking_id,
                method=payment.method,
                amount=payment.amount,
                operator=operator,
                reason=reason,
            )
            update = await self.store.update_status(
                payment.id,
                PaymentStatus.SUCCESS,
                expected_status=PaymentStatus.PENDING,
                transaction_id=transaction_id,
                payment_date=self._now(),
                event=self._event_factory(
                    TOPIC_PAYMENT_SUCCESS, forced=True, operator=operator, reason=reason
                ),
            )
            if update is None:
                current = await self.store.get(payment.id)
                if current.status == PaymentStatus.SUCCESS.value:
                    return current
                raise ConflictError(
                    "Payment left PENDING during forced success", payment_id=str(payment.id)
                )

        metrics.record_forced_success()
        await self._publish(update.event)
        return update.payment

    async def get_payment(self, payment_id: uuid.UUID | str) -> Payment:
        """
        Raises:
            NotFoundError: Unknown or malformed payment id
        """
        try:
            key = payment_id if isinstance(payment_id, uuid.UUID) else uuid.UUID(str(payment_id))
        except ValueError:
            raise NotFoundError(f"Payment {payment_id} not found", payment_id=str(payment_id))
        return await self.store.get(key)

    async def list_payments(
        self, page: int = 1, limit: int = 20, search: Optional[str] = None
    ) -> Tuple[List[Payment], int]:
        if page < 1 or limit < 1:
            raise ValidationError("page and limit must be at least 1")
        return await self.store.list(page, min(limit, MAX_PAGE_SIZE), search or None)

    async def close(self) -> None:
        for adapter in self.adapters.values():
            await adapter.close()
        await self.emitter.close()
