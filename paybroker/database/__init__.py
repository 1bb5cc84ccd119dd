"""Database models, connection management and the payment store."""
from paybroker.database.connection import (
    close_db,
    create_engine,
    create_session_factory,
    get_engine,
    get_session_factory,
    init_db,
)
from paybroker.database.models import Base, OutboxEvent, Payment
from paybroker.database.repository import PaymentStore, StatusUpdate, outbox_message

__all__ = [
    "Base",
    "OutboxEvent",
    "Payment",
    "PaymentStore",
    "StatusUpdate",
    "close_db",
    "create_engine",
    "create_session_factory",
    "get_engine",
    "get_session_factory",
    "init_db",
    "outbox_message",
]
