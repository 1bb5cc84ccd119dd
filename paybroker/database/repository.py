"""
Payment record store.

All payment mutation goes through ``PaymentStore.update_status``, a single
conditional UPDATE (``WHERE id = :id AND status = :expected``) so two
writers can never both move a payment out of PENDING. The domain event for
the transition is written to the outbox in the same transaction.
"""
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import structlog
from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from paybroker.core.exceptions import ConflictError, NotFoundError
from paybroker.core.types import PaymentMethod, PaymentStatus
from paybroker.database.models import OutboxEvent, Payment, utcnow

logger = structlog.get_logger(__name__)

# Builds (topic, payload) from the payment as it looks after the transition.
EventFactory = Callable[[Payment], Tuple[str, Dict[str, Any]]]


@dataclass
class StatusUpdate:
    """Result of a transition that won the compare-and-set."""

    payment: Payment
    event: Optional[OutboxEvent] = None


def outbox_message(event: OutboxEvent) -> Dict[str, Any]:
    """Wire payload for an outbox row; ``eventId`` is the row id."""
    return {"eventId": event.id, **event.payload}


class PaymentStore:
    """Async store over ``payments`` and ``outbox_events``."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def create(self, payment: Payment) -> Payment:
        """
        Insert a new payment.

        Raises:
            ConflictError: If ``(method, reference)`` already exists
        """
        async with self.session_factory() as session:
            session.add(payment)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                logger.error(
                    "payment_insert_conflict",
                    method=payment.method,
                    reference=payment.reference,
                    error=str(e.orig),
                )
                raise ConflictError(
                    "Payment reference already exists",
                    method=payment.method,
                    reference=payment.reference,
                )
        return payment

    async def get(self, payment_id: uuid.UUID) -> Payment:
        async with self.session_factory() as session:
            payment = await session.get(Payment, payment_id)
        if payment is None:
            raise NotFoundError(f"Payment {payment_id} not found", payment_id=str(payment_id))
        return payment

    async def find_by_reference(self, method: PaymentMethod, reference: str) -> Payment:
        """
        Resolve a notification reference to its payment.

        Raises:
            NotFoundError: If no payment of this method carries the reference
        """
        async with self.session_factory() as session:
            result = await session.execute(
                select(Payment).where(
                    Payment.method == method.value, Payment.reference == reference
                )
            )
            payment = result.scalar_one_or_none()
        if payment is None:
            raise NotFoundError(
                f"No {method.value} payment with reference {reference}",
                method=method.value,
                reference=reference,
            )
        return payment

    async def update_status(
        self,
        payment_id: uuid.UUID,
        status: PaymentStatus,
        expected_status: PaymentStatus = PaymentStatus.PENDING,
        transaction_id: Optional[str] = None,
        payment_date: Optional[datetime] = None,
        event: Optional[EventFactory] = None,
    ) -> Optional[StatusUpdate]:
        """
        Compare-and-set the status of a payment.

        Args:
            payment_id: Payment to transition
            status: New status
            expected_status: Status the row must still have
            transaction_id: Provider transaction id to record
            payment_date: New payment date
            event: Builds the outbox event from the updated payment

        Returns:
            StatusUpdate if this call applied the transition, None if the
            payment was no longer in ``expected_status``
        """
        values: Dict[str, Any] = {"status": status.value, "updated_at": utcnow()}
        if transaction_id is not None:
            values["transaction_id"] = transaction_id
        if payment_date is not None:
            values["payment_date"] = payment_date

        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(Payment)
                    .where(Payment.id == payment_id, Payment.status == expected_status.value)
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    return None

                payment = await session.get(Payment, payment_id, populate_existing=True)
                outbox_event = None
                if event is not None:
                    topic, payload = event(payment)
                    outbox_event = OutboxEvent(
                        aggregate_id=payment.id, event_type=topic, payload=payload
                    )
                    session.add(outbox_event)
                    await session.flush()

        logger.info(
            "payment_status_updated",
            payment_id=str(payment_id),
            from_status=expected_status.value,
            to_status=status.value,
            outbox_event_id=outbox_event.id if outbox_event else None,
        )
        return StatusUpdate(payment=payment, event=outbox_event)

    async def list(
        self, page: int = 1, limit: int = 20, search: Optional[str] = None
    ) -> Tuple[List[Payment], int]:
        """Page through payments, newest first, with an optional substring search."""
        conditions = []
        if search:
            pattern = f"%{search.strip()}%"
            conditions.append(
                or_(
                    Payment.user_id.ilike(pattern),
                    Payment.booking_id.ilike(pattern),
                    Payment.reference.ilike(pattern),
                    Payment.transaction_id.ilike(pattern),
                )
            )

        async with self.session_factory() as session:
            total = await session.scalar(
                select(func.count()).select_from(Payment).where(*conditions)
            )
            result = await session.execute(
                select(Payment)
                .where(*conditions)
                .order_by(Payment.created_at.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            )
            return list(result.scalars().all()), int(total or 0)

    async def list_unpublished(self, limit: int = 100) -> List[OutboxEvent]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(OutboxEvent)
                .where(OutboxEvent.published == False)  # noqa: E712
                .order_by(OutboxEvent.created_at, OutboxEvent.id)
                .limit(limit)
            )
            return list(result.scalars().all())

    async def count_unpublished(self) -> int:
        async with self.session_factory() as session:
            total = await session.scalar(
                select(func.count())
                .select_from(OutboxEvent)
                .where(OutboxEvent.published == False)  # noqa: E712
            )
            return int(total or 0)

    async def mark_published(self, event_ids: Sequence[int]) -> None:
        """Mark outbox rows as delivered."""
        if not event_ids:
            return
        async with self.session_factory() as session:
            async with session.begin():
                await session.execute(
                    update(OutboxEvent)
                    .where(OutboxEvent.id.in_(list(event_ids)))
                    .values(published=True, published_at=utcnow())
                )
