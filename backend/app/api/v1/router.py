"""API v1 router aggregating all sub-routers."""

from fastapi import APIRouter, Depends, Request

from app.api.v1.dispatch import router as dispatch_router
from app.api.v1.machines import router as machines_router
from app.api.v1.transitions import router as transitions_router
from app.api.v1.workflows import router as workflows_router
from app.core.auth import verify_api_key
from app.core.rate_limit import rate_limit_default
from app.db.init_db import check_db_connection

# Public router (no authentication required)
api_v1_router = APIRouter()


@api_v1_router.get("/health")
async def health_check(request: Request) -> dict:
    """Health check with database reachability and audit sink backlog counters."""
    sink = getattr(request.app.state, "audit_sink", None)
    return {
        "status": "ok",
        "database": "ok" if await check_db_connection() else "unavailable",
        "auditSink": sink.stats() if sink is not None else None,
    }


# Authenticated router with default rate limiting (120 req/min per user).
# Mutating endpoints additionally enforce the write limit (30 req/min).
_authenticated = APIRouter(dependencies=[Depends(verify_api_key), Depends(rate_limit_default)])
_authenticated.include_router(dispatch_router)
_authenticated.include_router(machines_router)
_authenticated.include_router(workflows_router)
_authenticated.include_router(transitions_router)

api_v1_router.include_router(_authenticated)
