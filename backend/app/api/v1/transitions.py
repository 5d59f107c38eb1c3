"""Read-only access to the transition audit log for reporting."""

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.deps import CurrentActor
from app.core.database import get_db
from app.models.transition_log import TransitionLogEntry
from app.schemas.workflow import TransitionLogResponse
from app.services.transition_guard import registered_graphs

router = APIRouter(prefix="/transitions", tags=["transitions"])


@router.get("", response_model=list[TransitionLogResponse])
async def list_transitions(
    actor: CurrentActor,
    entity_id: uuid.UUID | None = Query(None, alias="entityId"),
    graph: str | None = Query(None),
    result_filter: str | None = Query(None, alias="result"),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
) -> list[TransitionLogEntry]:
    """List audit entries, newest first."""
    query = select(TransitionLogEntry).where(TransitionLogEntry.company_id == actor.company_id)
    if entity_id is not None:
        query = query.where(TransitionLogEntry.entity_id == entity_id)
    if graph is not None:
        query = query.where(TransitionLogEntry.graph == graph)
    if result_filter is not None:
        query = query.where(TransitionLogEntry.result == result_filter)
    query = query.order_by(TransitionLogEntry.created_at.desc()).offset(skip).limit(limit)
    result = await db.execute(query)
    return list(result.scalars().all())


@router.get("/graphs")
async def list_graphs() -> list[str]:
    return registered_graphs()
