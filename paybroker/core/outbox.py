"""
Transactional outbox publisher.

Status transitions write their event to ``outbox_events`` in the same
transaction as the status change. The orchestrator publishes right after
commit; this publisher picks up whatever is still unpublished (bus outage,
crash between commit and publish) and retries it. Delivery is
at-least-once.
"""
import asyncio

import structlog
from sqlalchemy.exc import SQLAlchemyError

from paybroker.core.exceptions import TransportError
from paybroker.database.models import OutboxEvent
from paybroker.database.repository import PaymentStore, outbox_message
from paybroker.integrations.event_bus import EventEmitter
from paybroker.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class OutboxPublisher:
    """
    Publishes events from the outbox table to the event bus.

    1. Read unpublished events, oldest first
    2. Publish each one
    3. Mark the delivered ones as published
    """

    def __init__(
        self,
        store: PaymentStore,
        emitter: EventEmitter,
        batch_size: int = 100,
        poll_interval_seconds: float = 1.0,
    ):
        """
        Initialize outbox publisher.

        Args:
            store: Store owning the outbox table
            emitter: Event bus to publish to
            batch_size: Number of events to process per batch
            poll_interval_seconds: Polling interval when the outbox is empty
        """
        self.store = store
        self.emitter = emitter
        self.batch_size = batch_size
        self.poll_interval_seconds = poll_interval_seconds
        self._running = False

        logger.info(
            "outbox_publisher_initialized",
            batch_size=batch_size,
            poll_interval=poll_interval_seconds,
        )

    async def _publish_event(self, event: OutboxEvent) -> bool:
        try:
            await self.emitter.publish(
                event.event_type, outbox_message(event), message_id=str(event.id)
            )
        except TransportError as e:
            metrics.record_event_publish_failure(event.event_type)
            logger.error(
                "outbox_event_publish_failed",
                event_id=event.id,
                event_type=event.event_type,
                error=e.message,
            )
            return False

        metrics.record_event_published(event.event_type)
        logger.info(
            "outbox_event_published",
            event_id=event.id,
            event_type=event.event_type,
            aggregate_id=str(event.aggregate_id),
        )
        return True

    async def process_batch(self) -> int:
        """
        Process a batch of unpublished events.

        Stops at the first publish failure so events for one payment are
        never delivered out of order.

        Returns:
            int: Number of events published
        """
        events = await self.store.list_unpublished(self.batch_size)
        if not events:
            metrics.set_outbox_queue_depth(0)
            return 0

        logger.info("outbox_batch_processing_started", batch_size=len(events))

        published_ids = []
        for event in events:
            if not await self._publish_event(event):
                break
            published_ids.append(event.id)

        await self.store.mark_published(published_ids)
        metrics.set_outbox_queue_depth(await self.store.count_unpublished())

        logger.info(
            "outbox_batch_processed",
            total=len(events),
            published=len(published_ids),
            failed=len(events) - len(published_ids),
        )
        return len(published_ids)

    async def start(self) -> None:
        """
        Start the outbox publisher loop.

        Continuously polls for unpublished events and publishes them.
        """
        self._running = True
        logger.info("outbox_publisher_started")

        try:
            while self._running:
                try:
                    published_count = await self.process_batch()
                except SQLAlchemyError as e:
                    logger.error("outbox_publisher_error", error=str(e))
                    published_count = 0

                if published_count < self.batch_size:
                    await asyncio.sleep(self.poll_interval_seconds)
                else:
                    # Full batch, more are probably waiting
                    await asyncio.sleep(0)
        finally:
            logger.info("outbox_publisher_stopped")

    def stop(self) -> None:
        """Stop the outbox publisher."""
        self._running = False
        logger.info("outbox_publisher_stop_requested")

    async def get_pending_count(self) -> int:
        return await self.store.count_unpublished()
