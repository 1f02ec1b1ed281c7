from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from certvault.api.certificates import router as certificates_router
from certvault.api.errors import install_exception_handlers
from certvault.api.health import router as health_router
from certvault.api.metrics_endpoint import router as metrics_router
from certvault.api.uploads import router as uploads_router
from certvault.api.verification import router as verification_router
from certvault.core.config import SETTINGS
from certvault.core.logging import setup_logging
from certvault.db.redis import check_redis
from certvault.middleware.metrics import MetricsMiddleware
from certvault.middleware.request_context import (
    RequestContextMiddleware,
    install_request_context_filter,
)
from certvault.services.registry import build_services

# Configure logging before anything else runs.
setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)
for _handler in logging.getLogger().handlers:
    install_request_context_filter(_handler)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Tests may install a prebuilt bundle with fake collaborators.
    services = getattr(app.state, "services", None)
    owned = services is None
    if owned:
        services = build_services(SETTINGS)
        app.state.services = services
    if services.redis is not None:
        await check_redis(services.redis)
    try:
        yield
    finally:
        if owned:
            await services.aclose()
            app.state.services = None


app = FastAPI(
    title="certvault",
    lifespan=lifespan,
    docs_url="/docs" if SETTINGS.is_dev else None,
    redoc_url="/redoc" if SETTINGS.is_dev else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Last-added runs first: RequestContext (outermost) -> Metrics -> CORS -> route
app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestContextMiddleware)

install_exception_handlers(app)

app.include_router(metrics_router)
app.include_router(health_router)
app.include_router(certificates_router)
app.include_router(uploads_router)
app.include_router(verification_router)

logger.info(
    "certvault started  env=%s log_level=%s port=%d kdf=%s docs=%s",
    SETTINGS.app_env,
    SETTINGS.log_level,
    SETTINGS.port,
    SETTINGS.kdf_algorithm,
    "on" if SETTINGS.is_dev else "off",
)
