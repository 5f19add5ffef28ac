"""Tests for the PulseKit client."""

import logging
import sys
from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

import httpx
import pytest

from pulsekit_client import ClientConfig, ConfigError, EventLevel, PulseKit, PulseKitError

from conftest import FakeIngestion, wait_until


class TestClientConfig:
    def test_defaults_from_environment(self, monkeypatch):
        monkeypatch.setenv("PULSEKIT_ENDPOINT", "https://pulse.example.com/")
        monkeypatch.setenv("PULSEKIT_API_KEY", "pk_env")
        monkeypatch.setenv("PULSEKIT_RELEASE", "9.9.9")
        monkeypatch.setenv("PULSEKIT_DEBUG", "true")

        config = ClientConfig()

        assert config.endpoint == "https://pulse.example.com/"
        assert config.api_key == "pk_env"
        assert config.release == "9.9.9"
        assert config.environment == "production"
        assert config.debug is True
        assert config.batch_url == "https://pulse.example.com/api/v1/events/batch"

    def test_missing_endpoint(self):
        with pytest.raises(ConfigError, match="endpoint"):
            PulseKit(ClientConfig(endpoint="", api_key="pk_x", flush_on_exit=False))

    def test_config_error_is_a_pulsekit_error(self):
        assert issubclass(ConfigError, PulseKitError)
        assert issubclass(ConfigError, ValueError)

    def test_missing_api_key(self):
        with pytest.raises(ConfigError, match="api_key"):
            PulseKit(ClientConfig(endpoint="http://pulse.test", api_key="", flush_on_exit=False))

    def test_invalid_batch_size(self):
        config = ClientConfig(endpoint="http://pulse.test", api_key="pk_x", batch_size=0)
        with pytest.raises(ConfigError, match="batch_size"):
            config.validate()

    def test_overrides_do_not_mutate_config(self, client_config, fake_server, make_client):
        client = make_client(fake_server, batch_size=2)

        assert client.config.batch_size == 2
        assert client_config.batch_size == 10


class TestCapture:
    def test_capture_then_flush_delivers_event(self, fake_server, make_client):
        client = make_client(fake_server)

        event = client.capture(type="payment.success", metadata={"amount": 99.99})
        assert client.flush()

        assert event.level == EventLevel.INFO
        delivered = fake_server.delivered_events
        assert len(delivered) == 1
        body = delivered[0]
        assert body["type"] == "payment.success"
        assert body["level"] == "info"
        assert body["metadata"] == {"amount": 99.99}
        assert body["tags"] == {"environment": "test", "release": "1.2.3"}
        assert body["environment"] == "test"
        assert body["release"] == "1.2.3"
        assert "timestamp" in body
        assert fake_server.requests[0].headers["X-PulseKit-Key"] == "pk_test_0123456789"

    def test_capture_accepts_mapping(self, fake_server, make_client):
        client = make_client(fake_server)

        client.capture({"type": "signup", "tags": {"plan": "pro"}}, level="warning")
        client.flush()

        body = fake_server.delivered_events[0]
        assert body["level"] == "warning"
        assert body["tags"]["plan"] == "pro"

    def test_caller_tags_override_defaults(self, fake_server, make_client):
        client = make_client(fake_server)

        client.capture(type="deploy", tags={"environment": "canary", "region": 1})
        client.flush()

        assert fake_server.delivered_events[0]["tags"] == {
            "environment": "canary",
            "release": "1.2.3",
            "region": "1",
        }

    def test_datetime_timestamp_is_serialized(self, fake_server, make_client):
        client = make_client(fake_server)
        ts = datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)

        client.capture(type="job.done", timestamp=ts)
        client.flush()

        assert fake_server.delivered_events[0]["timestamp"] == "2024-01-15T10:30:00+00:00"

    def test_missing_type_is_rejected(self, fake_server, make_client):
        client = make_client(fake_server)

        with pytest.raises(ValueError, match="type is required"):
            client.capture(metadata={"a": 1})
        assert client.stats["buffer_size"] == 0

    def test_invalid_level_is_rejected(self, fake_server, make_client):
        client = make_client(fake_server)

        with pytest.raises(ValueError, match="Invalid level"):
            client.capture(type="x", level="catastrophic")
        assert client.stats["buffer_size"] == 0

    def test_unknown_field_is_rejected(self, fake_server, make_client):
        client = make_client(fake_server)

        with pytest.raises(ValueError, match="Unknown event field"):
            client.capture(type="x", colour="red")

    def test_batch_size_triggers_send_without_flush(self, fake_server, make_client):
        client = make_client(fake_server, batch_size=3)

        for i in range(3):
            client.capture(type=f"e{i}")

        assert wait_until(lambda: len(fake_server.delivered_events) == 3)
        assert len(fake_server.requests) == 1

    def test_interval_triggers_send(self, fake_server, make_client):
        client = make_client(fake_server, flush_interval_seconds=0.05)

        client.capture(type="lonely")

        assert wait_until(lambda: len(fake_server.delivered_events) == 1)

    def test_events_stay_in_capture_order(self, fake_server, make_client):
        client = make_client(fake_server, batch_size=4)
        types = [f"e{i}" for i in range(10)]

        for t in types:
            client.capture(type=t)
        assert client.flush()

        assert [e["type"] for e in fake_server.delivered_events] == types

    def test_nested_metadata_is_detached_from_caller(self, fake_server, make_client):
        client = make_client(fake_server)
        cart = {"items": [{"sku": "A1"}], "totals": {"amount": 10}}

        client.capture(type="cart.updated", metadata={"cart": cart})
        cart["items"].append({"sku": "B2"})
        cart["totals"]["amount"] = 99
        client.flush()

        assert fake_server.delivered_events[0]["metadata"] == {
            "cart": {"items": [{"sku": "A1"}], "totals": {"amount": 10}},
        }

    def test_unencodable_metadata_does_not_sink_batch(self, fake_server, make_client):
        client = make_client(fake_server, batch_size=100)

        client.capture(type="a")
        client.capture(type="invoice.paid", metadata={"amount": Decimal("9.99"), "id": UUID(int=1)})
        client.capture(type="c")
        assert client.flush()

        delivered = fake_server.delivered_events
        assert [e["type"] for e in delivered] == ["a", "invoice.paid", "c"]
        assert delivered[1]["metadata"] == {
            "amount": "9.99",
            "id": "00000000-0000-0000-0000-000000000001",
        }
        assert client.stats["events_dropped"] == 0

    def test_non_finite_metadata_is_rejected(self, fake_server, make_client):
        client = make_client(fake_server)

        with pytest.raises(ValueError, match="not serializable"):
            client.capture(type="x", metadata={"ratio": float("nan")})
        assert client.stats["buffer_size"] == 0


class TestCaptureException:
    def test_capture_exception_builds_error_event(self, fake_server, make_client):
        client = make_client(fake_server)

        try:
            raise ValueError("card declined")
        except ValueError as e:
            client.capture_exception(e, metadata={"order": 42})
        client.flush()

        body = fake_server.delivered_events[0]
        assert body["type"] == "exception"
        assert body["level"] == "error"
        assert body["message"] == "card declined"
        assert body["metadata"] == {"order": 42}
        assert body["exception"]["exception_type"] == "ValueError"
        assert body["exception"]["message"] == "card declined"
        frames = body["exception"]["stack"]
        assert frames
        assert frames[-1]["function"] == "test_capture_exception_builds_error_event"

    def test_explicit_stack_trace(self, fake_server, make_client):
        client = make_client(fake_server)
        stack = [{"file": "app.py", "line": 10, "function": "main"}]

        client.capture_exception(RuntimeError("boom"), stack_trace=stack, level="fatal")
        client.flush()

        body = fake_server.delivered_events[0]
        assert body["level"] == "fatal"
        assert body["exception"]["stack"] == [
            {"file": "app.py", "line": 10, "function": "main", "context": None},
        ]

    def test_exception_without_traceback(self, fake_server, make_client):
        client = make_client(fake_server)

        client.capture_exception(KeyError("missing"))
        client.flush()

        assert fake_server.delivered_events[0]["exception"]["stack"] == []

    def test_capture_message(self, fake_server, make_client):
        client = make_client(fake_server)

        client.capture_message("cache warmed", level=EventLevel.DEBUG)
        client.flush()

        body = fake_server.delivered_events[0]
        assert body["type"] == "message"
        assert body["level"] == "debug"
        assert body["message"] == "cache warmed"


class TestScope:
    def test_scope_merges_tags_and_metadata(self, fake_server, make_client):
        client = make_client(fake_server)
        scope = client.scope(tags={"tenant": "acme"})
        scope.set_extra("request_id", "r-1").set_tag("route", "/pay")

        scope.capture(type="checkout", metadata={"step": 2}, tags={"route": "/checkout"})
        scope.capture_message("hello")
        client.flush()

        first, second = fake_server.delivered_events
        assert first["tags"]["tenant"] == "acme"
        assert first["tags"]["route"] == "/checkout"
        assert first["metadata"] == {"request_id": "r-1", "step": 2}
        assert second["tags"]["route"] == "/pay"
        assert second["metadata"] == {"request_id": "r-1"}

    def test_scope_capture_exception(self, fake_server, make_client):
        client = make_client(fake_server)

        client.scope(tags={"job": "nightly"}).capture_exception(OSError("disk full"))
        client.flush()

        body = fake_server.delivered_events[0]
        assert body["type"] == "exception"
        assert body["tags"]["job"] == "nightly"

    def test_scope_metadata_changes_do_not_reach_captured_events(self, fake_server, make_client):
        client = make_client(fake_server)
        request = {"headers": {"accept": "json"}}
        scope = client.scope(metadata={"request": request})

        scope.capture(type="page.view")
        request["headers"]["accept"] = "html"
        client.flush()

        assert fake_server.delivered_events[0]["metadata"] == {"request": {"headers": {"accept": "json"}}}


class TestDelivery:
    def test_transient_failure_is_retried_with_same_batch_id(self, make_client):
        server = FakeIngestion(outcomes=[503, 429])
        client = make_client(server)

        client.capture(type="a")
        client.capture(type="b")
        assert client.flush()

        assert len(server.requests) == 3
        assert len(set(server.batch_ids)) == 1
        assert [e["type"] for e in server.delivered_events] == ["a", "b"]
        assert client.stats["retries"] == 2

    def test_network_error_is_retried(self, make_client):
        server = FakeIngestion(outcomes=[httpx.ConnectError("connection refused")])
        client = make_client(server)

        client.capture(type="a")
        assert client.flush()

        assert len(server.requests) == 2
        assert len(server.delivered_events) == 1

    def test_client_error_is_dropped_without_retry(self, make_client, caplog):
        server = FakeIngestion(outcomes=[422])
        client = make_client(server)

        with caplog.at_level(logging.WARNING, logger="pulsekit_client"):
            client.capture(type="a")
            assert client.flush()

        assert len(server.requests) == 1
        assert client.stats["events_dropped"] == 1
        assert "Dropping batch" in caplog.text

    def test_capture_never_raises_when_server_is_down(self, make_client):
        server = FakeIngestion(outcomes=[500] * 20)
        client = make_client(server, max_retries=2)

        for i in range(3):
            client.capture(type=f"e{i}")
        assert client.flush()

        assert len(server.requests) == 3
        assert server.delivered_events == []
        assert client.stats["events_dropped"] == 3

    def test_buffer_overflow_keeps_newest(self, fake_server, make_client):
        client = make_client(fake_server, max_buffer_size=3, batch_size=100)

        for i in range(5):
            client.capture(type=f"e{i}")
        client.flush()

        assert [e["type"] for e in fake_server.delivered_events] == ["e2", "e3", "e4"]
        assert client.stats["evicted"] == 2


class TestLifecycle:
    def test_close_flushes_and_is_idempotent(self, fake_server, make_client):
        client = make_client(fake_server)

        client.capture(type="a")
        client.close()
        client.close()

        assert len(fake_server.delivered_events) == 1
        assert client.stats["state"] == "stopped"

    def test_capture_after_close_is_dropped(self, fake_server, make_client, caplog):
        client = make_client(fake_server)
        client.close()

        with caplog.at_level(logging.WARNING, logger="pulsekit_client"):
            event = client.capture(type="late")

        assert event.type == "late"
        assert client.stats["buffer_size"] == 0
        assert "closed" in caplog.text

    def test_context_manager_captures_exception(self, fake_server, make_client):
        client = make_client(fake_server)

        with pytest.raises(RuntimeError):
            with client:
                client.capture(type="start")
                raise RuntimeError("crashed")

        types = [e["type"] for e in fake_server.delivered_events]
        assert types == ["start", "exception"]

    def test_excepthook_captures_fatal(self, monkeypatch, fake_server, make_client):
        seen = []
        monkeypatch.setattr(sys, "excepthook", lambda *args: seen.append(args))
        client = make_client(fake_server, auto_capture=True)

        try:
            raise ZeroDivisionError("division by zero")
        except ZeroDivisionError:
            sys.excepthook(*sys.exc_info())

        body = fake_server.delivered_events[0]
        assert body["level"] == "fatal"
        assert body["exception"]["exception_type"] == "ZeroDivisionError"
        assert len(seen) == 1

        client.close()
        assert sys.excepthook != client._excepthook

    def test_independent_clients(self, make_client):
        first_server, second_server = FakeIngestion(), FakeIngestion()
        first = make_client(first_server, environment="staging")
        second = make_client(second_server, environment="production")

        first.capture(type="a")
        second.capture(type="b")
        first.flush()
        second.flush()

        assert first_server.delivered_events[0]["environment"] == "staging"
        assert second_server.delivered_events[0]["environment"] == "production"
