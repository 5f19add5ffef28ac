"""FastAPI application - PulseKit Ingestion Service.

Accepts telemetry events from SDK clients, persists them, and hands
each persisted event to the alert dispatcher without waiting for
evaluation.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from . import __version__
from .alerts.dispatcher import AlertDispatcher, Evaluator
from .alerts.rules import InMemoryRuleStore, RuleEvaluator
from .alerts.webhook import WebhookNotifier
from .auth.api_keys import ApiKeyRegistry, AuthenticationError
from .config import Config
from .events import routes as event_routes
from .events.models import HealthResponse
from .events.receipts import ReceiptCache
from .events.service import EventValidationError, IngestionService, MalformedRequestError
from .events.store import EventStore, InMemoryEventStore


logger = logging.getLogger(__name__)


def create_app(
    config: Config | None = None,
    store: EventStore | None = None,
    evaluator: Evaluator | None = None,
    api_key_registry: ApiKeyRegistry | None = None,
) -> FastAPI:
    """
    Build the application.

    Args:
        config: Service configuration (defaults to Config())
        store: Event persistence (defaults to an in-memory store)
        evaluator: Alert evaluator (defaults to rule matching + webhooks
            using the rules in config.alerts.rules)
        api_key_registry: API keys (defaults to config.auth.api_keys)
    """
    config = config or Config()
    if store is None:
        store = InMemoryEventStore()
    registry = api_key_registry
    if registry is None:
        registry = ApiKeyRegistry.from_config(config.auth)

    notifier: WebhookNotifier | None = None
    if evaluator is None and config.alerts.enabled:
        notifier = WebhookNotifier(timeout=config.alerts.webhook_timeout_seconds)
        evaluator = RuleEvaluator(
            rules=InMemoryRuleStore.from_config(config.alerts.rules),
            events=store,
            notifier=notifier,
        )

    dispatcher = AlertDispatcher(
        evaluator=evaluator,
        workers=config.alerts.workers,
        max_queue_size=config.alerts.max_queue_size,
        evaluation_timeout_seconds=config.alerts.evaluation_timeout_seconds,
    )
    service = IngestionService(
        store=store,
        alerts=dispatcher if config.alerts.enabled else None,
        receipts=ReceiptCache(
            max_size=config.ingestion.dedup_max_entries,
            ttl_seconds=config.ingestion.dedup_ttl_seconds,
        ),
        max_batch_size=config.ingestion.max_batch_size,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan - startup and shutdown."""
        logger.info("Starting PulseKit ingestion service...")
        if config.alerts.enabled:
            await dispatcher.start()
        logger.info("PulseKit ingestion service started")

        yield

        logger.info("Shutting down PulseKit ingestion service...")
        await dispatcher.stop()
        if notifier is not None:
            await notifier.close()
        logger.info("PulseKit ingestion service stopped")

    app = FastAPI(
        title="PulseKit Ingestion Service",
        description="Accepts telemetry events and dispatches alert evaluation.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.store = store
    app.state.service = service
    app.state.alert_dispatcher = dispatcher
    app.state.api_key_registry = registry
    app.state.api_key_header = config.auth.header

    app.include_router(event_routes.router)

    @app.exception_handler(AuthenticationError)
    async def authentication_error_handler(request: Request, exc: AuthenticationError):
        return JSONResponse(
            status_code=401,
            content={"error": exc.error, "message": exc.message},
        )

    @app.exception_handler(EventValidationError)
    async def validation_error_handler(request: Request, exc: EventValidationError):
        return JSONResponse(
            status_code=422,
            content={"success": False, "errors": exc.errors},
        )

    @app.exception_handler(MalformedRequestError)
    async def malformed_request_handler(request: Request, exc: MalformedRequestError):
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": exc.error, "message": exc.message},
        )

    @app.get("/api/v1/health", response_model=HealthResponse)
    async def health():
        """Health check endpoint."""
        return HealthResponse(
            status="ok",
            version=__version__,
            timestamp=datetime.now(timezone.utc).isoformat(),
            alerts=dispatcher.stats,
        )

    @app.get("/")
    async def root():
        """Root endpoint with service info."""
        return {
            "service": "PulseKit Ingestion Service",
            "version": __version__,
            "endpoints": {
                "/api/v1/events": "POST - Ingest a single event",
                "/api/v1/events/batch": "POST - Ingest a batch of events",
                "/api/v1/health": "Health check",
            },
            "client_library": "pip install pulsekit",
        }

    return app


def load_app() -> FastAPI:
    """App factory for uvicorn (config from PULSEKIT_CONFIG if set)."""
    return create_app(Config.load())


def run():
    """Run the service with uvicorn."""
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = Config.load()
    uvicorn.run(
        "pulsekit_svc.main:load_app",
        factory=True,
        host=config.server.host,
        port=config.server.port,
        reload=config.server.reload,
    )


if __name__ == "__main__":
    run()
