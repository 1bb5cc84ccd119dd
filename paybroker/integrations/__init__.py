"""Provider integrations, signing and the event bus."""
from paybroker.integrations.event_bus import (
    EventEmitter,
    LoggingEventEmitter,
    RabbitMQEventEmitter,
    build_event_emitter,
)
from paybroker.integrations.http_client import CircuitBreaker, ProviderHTTPClient

__all__ = [
    "CircuitBreaker",
    "EventEmitter",
    "LoggingEventEmitter",
    "ProviderHTTPClient",
    "RabbitMQEventEmitter",
    "build_event_emitter",
]
