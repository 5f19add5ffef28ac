"""
PulseKit Client Library

Captures telemetry events without blocking application code and
delivers them to a PulseKit ingestion service in batches.

Usage:
    from pulsekit_client import PulseKit, ClientConfig

    client = PulseKit(ClientConfig(
        endpoint="https://pulse.example.com",
        api_key="pk_...",
        environment="staging",
    ))

    # Business event
    client.capture(type="payment.success", metadata={"amount": 99.99, "currency": "USD"})

    # Errors
    try:
        risky()
    except Exception as e:
        client.capture_exception(e)

    # Shared context
    scope = client.scope(tags={"tenant": "acme"})
    scope.capture_message("checkout started")

    # Before shutdown
    client.flush()
    client.close()
"""

from .buffer import EventBuffer
from .client import PulseKit, Scope
from .config import ClientConfig, ConfigError, PulseKitError
from .dispatcher import BatchDispatcher, DispatcherState, RetryPolicy
from .events import Event, EventLevel, ExceptionInfo, StackFrame
from .transport import (
    Batch,
    BatchRejectedError,
    DeliveryError,
    HttpTransport,
    TransportError,
)

__version__ = "0.1.0"

__all__ = [
    # Core classes
    "PulseKit",
    "Scope",
    "ClientConfig",
    # Event types
    "Event",
    "EventLevel",
    "ExceptionInfo",
    "StackFrame",
    # Delivery pipeline
    "EventBuffer",
    "BatchDispatcher",
    "DispatcherState",
    "RetryPolicy",
    "Batch",
    "HttpTransport",
    # Exceptions
    "PulseKitError",
    "ConfigError",
    "DeliveryError",
    "TransportError",
    "BatchRejectedError",
]
