"""
HTTP surface for the metrics stream.

Endpoints:
    GET /                     - Usage info
    GET /health               - Health check
    GET /metrics?timePeriod=N - SSE stream of aggregation progress and result

Usage:
    app = create_app(config, build_sources(config, MemoryCache()))
    web.run_app(app, host=config.server.host, port=config.server.port)

    curl -N -H "Authorization: Bearer $TOKEN" "http://localhost:3000/metrics?timePeriod=30"
"""

import asyncio
import hmac
import logging
from datetime import datetime, timezone
from typing import Optional

from aiohttp import web
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from core.config import Config
from core.errors import AppError, OperationCancelledError, UnauthorizedError
from services.metrics.aggregation import AggregationContext, MetricsAggregationService
from services.metrics.store import MetricsStore
from services.sources.base import DataSource
from services.streaming import SSEStreamManager

logger = logging.getLogger(__name__)

PUBLIC_PATHS = frozenset({"/", "/health"})

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Content-Security-Policy": "default-src 'none'",
}


class MetricsQuery(BaseModel):
    """Query string of GET /metrics."""
    model_config = ConfigDict(populate_by_name=True)

    time_period: int = Field(90, ge=1, le=365, alias="timePeriod")


def error_body(status: int, message: str) -> dict:
    return {"success": False, "error": message, "statusCode": status}


@web.middleware
async def error_middleware(request: web.Request, handler):
    """Render errors raised before a stream started as JSON."""
    try:
        return await handler(request)
    except AppError as e:
        return web.json_response(e.to_dict(), status=e.status_code)
    except web.HTTPException as e:
        if e.status < 400:
            raise
        return web.json_response(error_body(e.status, e.reason), status=e.status)
    except Exception as e:
        logger.error(f"Unhandled error on {request.path}: {e}", exc_info=True)
        return web.json_response(error_body(500, "An unexpected error occurred"), status=500)


def _request_token(request: web.Request) -> Optional[str]:
    header = request.headers.get("Authorization", "")
    if header.startswith("Bearer "):
        return header[len("Bearer "):].strip()
    # EventSource cannot set headers, so the query string is accepted too
    return request.query.get("token")


def auth_middleware(api_tokens: list[str]):
    """Require one of `api_tokens` on every non-public path."""

    @web.middleware
    async def middleware(request: web.Request, handler):
        if request.path in PUBLIC_PATHS:
            return await handler(request)

        token = _request_token(request)
        if not token or not any(hmac.compare_digest(token, known) for known in api_tokens):
            logger.warning(f"Rejected unauthenticated request to {request.path} from {request.remote}")
            raise UnauthorizedError("Invalid or missing API token")
        return await handler(request)

    return middleware


async def add_security_headers(request: web.Request, response: web.StreamResponse):
    for name, value in SECURITY_HEADERS.items():
        response.headers.setdefault(name, value)


class MetricsAPI:
    """Request handlers; one aggregation run and one stream per request."""

    def __init__(
        self,
        config: Config,
        sources: list[DataSource],
        store: Optional[MetricsStore] = None,
    ):
        self.config = config
        self.sources = sources
        self.store = store
        self._tasks: set[asyncio.Task] = set()

    async def handle_index(self, request: web.Request) -> web.Response:
        return web.Response(
            text="""
Team Health Metrics Stream

Endpoints:
  GET /metrics?timePeriod=<days>  - SSE stream of progress and metrics (1-365, default 90)
  GET /health                     - Health check

Events:
  progress   {"progress": 45, "message": "...", "current": 45, "total": 100}
  heartbeat  {"timestamp": "..."}
  result     {"success": true, "data": {"metrics": [...], "errors": [...]}}
  error      {"success": false, "error": "...", "statusCode": 500}
            """,
            content_type="text/plain",
        )

    async def handle_health(self, request: web.Request) -> web.Response:
        return web.json_response({
            "status": "healthy",
            "sources": [source.name for source in self.sources],
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

    async def handle_metrics(self, request: web.Request) -> web.StreamResponse:
        try:
            query = MetricsQuery.model_validate(dict(request.query))
        except ValidationError:
            return web.json_response(
                error_body(400, "timePeriod must be an integer between 1 and 365"),
                status=400,
            )

        stream = SSEStreamManager.from_config(self.config.streaming)
        service = MetricsAggregationService(self.sources)
        context = AggregationContext()

        await stream.initialize(request)
        logger.info(f"Metrics stream opened (timePeriod={query.time_period})")

        task = asyncio.create_task(self._run(stream, service, context, query.time_period))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        try:
            await stream.wait_closed()
        except asyncio.CancelledError:
            stream.handle_client_disconnection()
            raise
        finally:
            if not task.done():
                service.cancel_operation()

        return stream.response

    async def _run(
        self,
        stream: SSEStreamManager,
        service: MetricsAggregationService,
        context: AggregationContext,
        time_period: int,
    ):
        try:
            outcome = await service.get_all_metrics(stream.progress_callback, time_period, context)
        except OperationCancelledError:
            logger.info("Metrics aggregation cancelled after the stream ended")
            stream.end_response()
            return
        except Exception as e:
            stream.handle_error(e)
            return

        if self.store is not None:
            try:
                await self.store.save_metrics(outcome.metrics)
            except Exception as e:
                logger.warning(f"Failed to persist metrics: {e}")

        stream.send_result_event(outcome)

    async def on_cleanup(self, app: web.Application):
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)


def create_app(
    config: Config,
    sources: list[DataSource],
    store: Optional[MetricsStore] = None,
) -> web.Application:
    """Build the aiohttp application."""
    if not sources:
        raise ValueError("At least one data source is required")

    middlewares = [error_middleware]
    if config.auth.enabled:
        middlewares.append(auth_middleware(config.auth.api_tokens))
    else:
        logger.warning("API_TOKENS not configured: /metrics is open to anyone")

    api = MetricsAPI(config, sources, store)
    app = web.Application(middlewares=middlewares)
    app.router.add_get("/", api.handle_index)
    app.router.add_get("/health", api.handle_health)
    app.router.add_get("/metrics", api.handle_metrics)
    app.on_response_prepare.append(add_security_headers)
    app.on_cleanup.append(api.on_cleanup)
    return app
