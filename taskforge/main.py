from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from .api.routes import router as api_router
from .core.audit import AuditLoggingMiddleware
from .core.config import get_settings
from .core.logging import configure_logging, get_logger
from .dependencies import shutdown_dependencies

settings = get_settings()
configure_logging(settings.observability.log_level, json_output=settings.environment != "local")
logger = get_logger(name=__name__)


@asynccontextmanager
async def app_lifespan(app: FastAPI):
    logger.info("taskforge_starting", environment=settings.environment)
    try:
        yield
    finally:
        await shutdown_dependencies()
        logger.info("taskforge_stopped")


app = FastAPI(title="Taskforge", version="0.1.0", lifespan=app_lifespan)
app.add_middleware(AuditLoggingMiddleware, include_prefixes=(settings.api_v1_prefix,))
app.include_router(api_router, prefix=settings.api_v1_prefix)


@app.get("/", tags=["health"])
async def root() -> dict[str, str]:
    return {"message": "Taskforge orchestration engine running"}


if settings.observability.prometheus_enabled:

    @app.get("/metrics", tags=["observability"])
    async def metrics() -> Response:
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
