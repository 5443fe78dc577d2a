"""
Avatar Banner Service - Main Application

FastAPI application that composites Discord avatars onto banner templates:
- Per-template routes (/enter, /exit) and /images/{kind}
- Origin allow-list enforced before any upstream fetch
- Structured logging with structlog
- Prometheus metrics
- Global exception handling
"""

import time
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.core.config import Settings, settings as default_settings
from src.core.logging import LogContext, setup_logging, get_logger
from src.core.exceptions import register_exception_handlers
from src.core.metrics import set_app_info, http_requests_total, http_request_duration_seconds
from src.api.dependencies import build_fetcher, build_handler
from src.api.v1 import api_v1_router
from src.api.v1.images import build_template_router, router as images_router
from src.pipeline.fetcher import RemoteFetcher
from src.pipeline.handler import OriginPolicy
from src.pipeline.templates import TemplateRegistry, TemplateStore, default_registry

logger = get_logger(__name__)


# =============================================================================
# Lifespan Handler
# =============================================================================
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Load templates once, build the shared handler, close the HTTP client."""
    startup_start = time.time()
    config: Settings = app.state.settings

    logger.info(
        "application_starting",
        app_name=config.APP_NAME,
        version=config.APP_VERSION,
        environment=config.NODE_ENV,
        server_addr=config.server_addr
    )

    if app.state.templates is None:
        app.state.templates = TemplateStore.load(config.TEMPLATE_DIR, app.state.registry)
    if app.state.handler is None:
        app.state.handler = build_handler(
            config, app.state.templates, app.state.fetcher, app.state.origin_policy
        )

    set_app_info(version=config.APP_VERSION, environment=config.NODE_ENV)
    logger.info("application_ready", startup_time_seconds=round(time.time() - startup_start, 3))

    yield

    logger.info("application_shutting_down")
    await app.state.fetcher.aclose()
    logger.info("application_shutdown_complete")


# =============================================================================
# Application Factory
# =============================================================================
def create_app(
    settings: Optional[Settings] = None,
    templates: Optional[TemplateStore] = None,
    fetcher: Optional[RemoteFetcher] = None,
    origin_policy: Optional[OriginPolicy] = None,
    registry: Optional[TemplateRegistry] = None
) -> FastAPI:
    """
    Build the application.

    Collaborators left as None are created from ``settings``; templates are
    then loaded from disk during startup.
    """
    config = settings or default_settings
    registry = registry or (templates.registry if templates else default_registry())
    origin_policy = origin_policy or OriginPolicy.from_settings(config)
    fetcher = fetcher or build_fetcher(config)

    app = FastAPI(
        title=config.APP_NAME,
        description="Composites a user's avatar onto enter/exit banner templates.",
        version=config.APP_VERSION,
        lifespan=lifespan,
        docs_url=None if config.in_production else "/api/docs",
        redoc_url=None,
        openapi_url=None if config.in_production else "/api/openapi.json"
    )

    app.state.settings = config
    app.state.registry = registry
    app.state.templates = templates
    app.state.fetcher = fetcher
    app.state.origin_policy = origin_policy
    app.state.handler = (
        build_handler(config, templates, fetcher, origin_policy) if templates is not None else None
    )

    # =========================================================================
    # Middleware
    # =========================================================================

    # CORS preflight; actual requests are also checked by the handler
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[] if origin_policy.allow_all else sorted(origin_policy.origins),
        allow_origin_regex=origin_policy.cors_origin_regex(),
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
        expose_headers=["Time-Taken", "X-Request-ID"],
    )

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):
        """Request id for logs and timing for metrics."""
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
        start_time = time.time()
        with LogContext(request_id=request_id):
            response = await call_next(request)
        duration = time.time() - start_time

        route = request.scope.get("route")
        endpoint = getattr(route, "path", "unmatched")

        http_request_duration_seconds.labels(
            method=request.method,
            endpoint=endpoint
        ).observe(duration)

        http_requests_total.labels(
            method=request.method,
            endpoint=endpoint,
            status=response.status_code
        ).inc()

        response.headers["X-Process-Time"] = str(duration)
        response.headers.setdefault("X-Request-ID", request_id)
        return response

    register_exception_handlers(app)

    # =========================================================================
    # Routers
    # =========================================================================
    app.include_router(build_template_router(registry.kinds))
    app.include_router(api_v1_router)

    # Legacy route shape, kept for existing clients
    app.include_router(images_router, tags=["images-legacy"])

    # =========================================================================
    # Root Endpoints
    # =========================================================================

    @app.get("/", tags=["root"])
    async def root():
        """Service information."""
        return {
            "name": config.APP_NAME,
            "version": config.APP_VERSION,
            "environment": config.NODE_ENV,
            "templates": registry.kinds,
            "metrics": "/api/v1/metrics"
        }

    @app.get("/health", tags=["health"])
    async def health():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "version": config.APP_VERSION
        }

    @app.get("/ready", tags=["health"])
    async def ready(request: Request):
        """Readiness check - templates loaded and handler built."""
        templates_loaded = request.app.state.templates is not None
        all_ready = templates_loaded and request.app.state.handler is not None

        return JSONResponse(
            status_code=200 if all_ready else 503,
            content={
                "ready": all_ready,
                "checks": {
                    "templates": templates_loaded,
                    "template_count": len(request.app.state.templates) if templates_loaded else 0
                }
            }
        )

    return app


# =============================================================================
# Initialize Logging & Module-level app for uvicorn
# =============================================================================
setup_logging(
    log_level=default_settings.LOG_LEVEL,
    json_format=default_settings.LOG_FORMAT_JSON and default_settings.in_production,
    version=default_settings.APP_VERSION
)

app = create_app()


# =============================================================================
# Development Server
# =============================================================================
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "src.main:app",
        host=default_settings.server_host,
        port=default_settings.IMAGE_API_PORT,
        reload=not default_settings.in_production,
        log_level="info"
    )
