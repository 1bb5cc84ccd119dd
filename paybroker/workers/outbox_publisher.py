"""
Outbox publisher background worker.

Continuously polls the outbox table and re-publishes events the API could
not deliver right after the status change.
"""
import asyncio
import signal

import structlog

from paybroker.config import get_settings
from paybroker.core.outbox import OutboxPublisher
from paybroker.database.connection import close_db, get_session_factory, init_db
from paybroker.database.repository import PaymentStore
from paybroker.integrations.event_bus import build_event_emitter
from paybroker.monitoring.logging import setup_logging

logger = structlog.get_logger(__name__)


async def start_outbox_publisher() -> None:
    """
    Start the outbox publisher worker.

    Runs until SIGINT/SIGTERM, then finishes the current batch and exits.
    """
    settings = get_settings()
    setup_logging(settings)

    logger.info("outbox_publisher_worker_starting")
    await init_db()

    emitter = build_event_emitter(settings.rabbitmq_url, settings.rabbitmq_exchange)
    publisher = OutboxPublisher(
        store=PaymentStore(get_session_factory()),
        emitter=emitter,
        batch_size=100,
        poll_interval_seconds=1.0,
    )

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, publisher.stop)

    try:
        await publisher.start()
    except Exception as e:
        logger.error("outbox_publisher_worker_error", error=str(e))
        raise
    finally:
        await emitter.close()
        await close_db()
        logger.info("outbox_publisher_worker_stopped")


def main() -> None:
    asyncio.run(start_outbox_publisher())


if __name__ == "__main__":
    main()
