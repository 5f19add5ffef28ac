"""Main client class."""

from __future__ import annotations

import atexit
import logging
import sys
from dataclasses import replace
from typing import Any, Mapping

import httpx

from .buffer import EventBuffer
from .config import ClientConfig
from .dispatcher import BatchDispatcher, RetryPolicy
from .events import Event, EventLevel, ExceptionInfo, merge_fields
from .transport import HttpTransport


logger = logging.getLogger(__name__)

_PACKAGE_LOGGER = "pulsekit_client"
_EVENT_FIELDS = frozenset({
    "type", "level", "message", "metadata", "tags", "timestamp", "fingerprint",
})


def _enable_debug_logging() -> None:
    """Send SDK diagnostics to stderr (once per process)."""
    package_logger = logging.getLogger(_PACKAGE_LOGGER)
    package_logger.setLevel(logging.DEBUG)
    if not any(getattr(h, "_pulsekit", False) for h in package_logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("[PulseKit] %(levelname)s %(name)s: %(message)s"))
        handler._pulsekit = True
        package_logger.addHandler(handler)


class PulseKit:
    """
    Client for capturing telemetry events.

    capture() only builds the event and puts it in the buffer; a
    background dispatcher batches and delivers it. Delivery failures
    are logged, never raised to the caller.

    Usage:
        client = PulseKit(ClientConfig(
            endpoint="https://pulse.example.com",
            api_key="pk_...",
            release="1.4.2",
        ))

        client.capture(type="payment.success", metadata={"amount": 99.99})

        try:
            charge()
        except Exception as e:
            client.capture_exception(e)

        client.flush()
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        *,
        http_client: httpx.Client | None = None,
        **overrides: Any,
    ) -> None:
        """
        Args:
            config: Client configuration (defaults read PULSEKIT_* env vars)
            http_client: Optional pre-built httpx.Client (proxies, tests)
            **overrides: Field overrides applied on top of config
        """
        config = replace(config or ClientConfig(), **overrides)
        config.validate()
        self.config = config

        if config.debug:
            _enable_debug_logging()

        self._buffer = EventBuffer(max_size=config.max_buffer_size)
        self._transport = HttpTransport(config=config, client=http_client)
        self._dispatcher = BatchDispatcher(
            buffer=self._buffer,
            transport=self._transport,
            batch_size=config.batch_size,
            flush_interval_seconds=config.flush_interval_seconds,
            retry=RetryPolicy(
                max_retries=config.max_retries,
                backoff_seconds=config.retry_backoff_seconds,
                max_backoff_seconds=config.max_backoff_seconds,
            ),
        )
        self._closed = False
        self._previous_excepthook = None

        self._dispatcher.start()

        if config.auto_capture:
            self._install_excepthook()
        if config.flush_on_exit:
            atexit.register(self.close)

        logger.debug(f"PulseKit initialized (endpoint={config.endpoint}, environment={config.environment})")

    def capture(self, event: Mapping[str, Any] | None = None, **fields: Any) -> Event:
        """
        Capture an event.

        Accepts a mapping, keyword fields, or both (keywords win):

            client.capture({"type": "signup", "tags": {"plan": "pro"}})
            client.capture(type="cache.miss", level="debug")

        Never blocks on the network. Returns the enqueued Event.

        Raises:
            ValueError: missing type or unknown level
        """
        data = merge_fields(event, fields)
        return self._enqueue(data)

    def capture_exception(
        self,
        error: BaseException,
        stack_trace: Any = None,
        **fields: Any,
    ) -> Event:
        """
        Capture an exception as a type="exception", level="error" event.

        stack_trace defaults to the exception's own traceback.
        """
        info = ExceptionInfo.from_exception(error, stack_trace)
        data = {
            "type": "exception",
            "level": EventLevel.ERROR,
            "message": info.message,
        }
        data.update({k: v for k, v in fields.items() if v is not None})
        return self._enqueue(data, exception=info)

    def capture_message(self, message: str, level: EventLevel | str = EventLevel.INFO, **fields: Any) -> Event:
        """Capture a plain message as a type="message" event."""
        data = {"type": "message", "level": level, "message": message}
        data.update({k: v for k, v in fields.items() if v is not None})
        return self._enqueue(data)

    def scope(
        self,
        tags: Mapping[str, str] | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> Scope:
        """Create a scope whose tags/metadata are added to every event captured through it."""
        return Scope(self, tags=tags, metadata=metadata)

    def flush(self, timeout: float | None = None) -> bool:
        """
        Send everything buffered now, bypassing batch size and interval.

        Returns True when all those events were delivered or permanently
        failed, False if the timeout (default flush_timeout_seconds)
        elapsed first.
        """
        if timeout is None:
            timeout = self.config.flush_timeout_seconds
        return self._dispatcher.flush(timeout)

    def close(self, timeout: float | None = None) -> None:
        """Flush, stop the dispatcher and release the HTTP session."""
        if self._closed:
            return
        self._closed = True

        if timeout is None:
            timeout = self.config.flush_timeout_seconds
        self.flush(timeout)
        self._dispatcher.stop(timeout)
        self._transport.close()

        if self._previous_excepthook is not None and sys.excepthook == self._excepthook:
            sys.excepthook = self._previous_excepthook
        if self.config.flush_on_exit:
            atexit.unregister(self.close)

        logger.debug(f"PulseKit closed. Stats: {self.stats}")

    def __enter__(self) -> PulseKit:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc is not None and not isinstance(exc, (KeyboardInterrupt, SystemExit)):
            self.capture_exception(exc, tb)
        self.close()

    def _enqueue(self, data: dict[str, Any], exception: ExceptionInfo | None = None) -> Event:
        unknown = set(data) - _EVENT_FIELDS
        if unknown:
            raise ValueError(f"Unknown event field(s): {', '.join(sorted(unknown))}")

        event = Event.create(
            type=data.get("type"),
            level=data.get("level"),
            message=data.get("message"),
            metadata=data.get("metadata"),
            tags=data.get("tags"),
            timestamp=data.get("timestamp"),
            fingerprint=data.get("fingerprint"),
            exception=exception,
            environment=self.config.environment,
            release=self.config.release,
            default_tags={
                "environment": self.config.environment,
                "release": self.config.release,
            },
        )

        if self._closed:
            logger.warning(f"PulseKit client is closed, dropping event {event.type}")
            return event

        self._buffer.append(event)
        self._dispatcher.notify()
        logger.debug(f"Event queued: {event.type}")
        return event

    def _install_excepthook(self) -> None:
        self._previous_excepthook = sys.excepthook
        sys.excepthook = self._excepthook

    def _excepthook(self, exc_type, exc, tb) -> None:
        try:
            if not issubclass(exc_type, KeyboardInterrupt):
                self.capture_exception(exc, tb, level=EventLevel.FATAL)
                self.flush()
        finally:
            previous = self._previous_excepthook or sys.__excepthook__
            previous(exc_type, exc, tb)

    @property
    def stats(self) -> dict:
        """Client statistics (buffer + dispatcher)."""
        return self._dispatcher.stats


class Scope:
    """
    Extra context applied to events captured through it.

    Usage:
        scope = client.scope(tags={"tenant": "acme"})
        scope.set_extra("request_id", rid)
        scope.capture_message("checkout started")
    """

    def __init__(
        self,
        client: PulseKit,
        tags: Mapping[str, str] | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> None:
        self._client = client
        self._tags: dict[str, str] = dict(tags or {})
        self._metadata: dict[str, Any] = dict(metadata or {})

    def set_tag(self, key: str, value: str) -> Scope:
        self._tags[key] = value
        return self

    def set_tags(self, tags: Mapping[str, str]) -> Scope:
        self._tags.update(tags)
        return self

    def set_extra(self, key: str, value: Any) -> Scope:
        self._metadata[key] = value
        return self

    def set_extras(self, extras: Mapping[str, Any]) -> Scope:
        self._metadata.update(extras)
        return self

    def _merge(self, fields: dict[str, Any]) -> dict[str, Any]:
        fields["tags"] = {**self._tags, **(fields.get("tags") or {})}
        fields["metadata"] = {**self._metadata, **(fields.get("metadata") or {})}
        return fields

    def capture(self, event: Mapping[str, Any] | None = None, **fields: Any) -> Event:
        return self._client.capture(self._merge(merge_fields(event, fields)))

    def capture_exception(self, error: BaseException, stack_trace: Any = None, **fields: Any) -> Event:
        return self._client.capture_exception(error, stack_trace, **self._merge(fields))

    def capture_message(self, message: str, level: EventLevel | str = EventLevel.INFO, **fields: Any) -> Event:
        return self._client.capture_message(message, level, **self._merge(fields))
