"""FastAPI application entry point."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.v1.router import api_v1_router
from app.core.config import settings
from app.core.database import async_session_factory, close_db, init_db
from app.core.errors import ShopError, ValidationFailed
from app.core.redis import close_redis, init_redis
from app.db.seed import seed_if_empty
from app.services.audit import AuditSink, session_writer

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle."""
    logger.info("Starting %s ...", settings.PROJECT_NAME)

    # Startup
    await init_db()
    logger.info("Database initialized")

    if settings.SEED_DEMO_DATA:
        async with async_session_factory() as session:
            result = await seed_if_empty(session)
            if result:
                await session.commit()
                logger.info("Demo data seeded: %s", result)
            else:
                logger.info("Database already has data, skipping seed")

    if await init_redis(app.state) is not None:
        logger.info("Redis connected")

    sink = AuditSink(
        session_writer(async_session_factory),
        max_pending=settings.AUDIT_SINK_MAX_PENDING,
        batch_size=settings.AUDIT_SINK_BATCH_SIZE,
    )
    sink.start()
    app.state.audit_sink = sink
    logger.info("Audit sink started")

    yield

    # Shutdown
    await sink.stop()
    logger.info("Audit sink drained: %s", sink.stats())

    await close_redis(app.state)
    logger.info("Redis disconnected")

    await close_db()
    logger.info("Database disconnected")


app = FastAPI(
    title=settings.PROJECT_NAME,
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
)


@app.exception_handler(ShopError)
async def shop_error_handler(request: Request, exc: ShopError) -> JSONResponse:
    """Render domain errors as ``{"success": false, "error": <code>}``."""
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    error = ValidationFailed(detail="; ".join(str(e.get("msg")) for e in exc.errors()))
    payload = error.to_payload()
    payload["errors"] = jsonable_encoder(exc.errors())
    return JSONResponse(status_code=error.status_code, content=payload)


# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS.split(","),
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=[
        "Authorization",
        "Content-Type",
        "X-API-Key",
        "X-User-Id",
        "X-Company-Id",
        "X-User-Roles",
        "Accept",
    ],
)

# Register API v1 router
app.include_router(api_v1_router, prefix="/api/v1")
