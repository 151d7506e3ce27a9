import logging
import time
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.exceptions import RequestValidationError

from app.api.v1.admin import router as admin_router
from app.api.v1.bookings import router as bookings_router
from app.api.v1.services import router as services_router
from app.api.v1.specialists import router as specialists_router
from app.core.config import settings
from app.core.exceptions import http_exception_handler, validation_exception_handler
from app.core.logging import setup_logging
from app.core.metrics import REQUEST_COUNT, REQUEST_LATENCY, render_metrics
from app.core.request_context import request_id_ctx_var

logger = logging.getLogger("app.request")


def _route_path(request: Request) -> str:
    # label by route template so booking ids do not explode metric cardinality
    route = request.scope.get("route")
    return getattr(route, "path", request.url.path)


def _observe(request: Request, status_code: int, started: float) -> float:
    elapsed = time.perf_counter() - started
    path = _route_path(request)
    REQUEST_COUNT.labels(method=request.method, path=path, status_code=status_code).inc()
    REQUEST_LATENCY.labels(method=request.method, path=path).observe(elapsed)
    return elapsed * 1000


async def observability_middleware(request: Request, call_next):
    request_id = request.headers.get("x-request-id") or str(uuid4())
    token = request_id_ctx_var.set(request_id)
    started = time.perf_counter()
    try:
        try:
            response = await call_next(request)
        except Exception:
            duration_ms = _observe(request, 500, started)
            logger.exception(
                "request_failed method=%s path=%s status=500 duration_ms=%.2f",
                request.method,
                _route_path(request),
                duration_ms,
            )
            raise

        duration_ms = _observe(request, response.status_code, started)
        response.headers["X-Request-ID"] = request_id
        logger.info(
            "request_completed method=%s path=%s status=%s duration_ms=%.2f",
            request.method,
            _route_path(request),
            response.status_code,
            duration_ms,
        )
        return response
    finally:
        request_id_ctx_var.reset(token)


def health() -> dict[str, str]:
    return {"status": "ok"}


def metrics() -> Response:
    payload, content_type = render_metrics()
    return Response(content=payload, media_type=content_type)


def create_app() -> FastAPI:
    setup_logging(settings.log_level)

    application = FastAPI(title="Clinic Booking API", version="0.1.0")
    application.add_exception_handler(HTTPException, http_exception_handler)
    application.add_exception_handler(RequestValidationError, validation_exception_handler)
    application.middleware("http")(observability_middleware)

    for router in (services_router, specialists_router, bookings_router, admin_router):
        application.include_router(router)

    application.add_api_route("/health", health, methods=["GET"], tags=["health"])
    application.add_api_route("/metrics", metrics, methods=["GET"], tags=["observability"])
    return application


app = create_app()
