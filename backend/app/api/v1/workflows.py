"""Lead pipeline and delivery status endpoints."""

import uuid

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.deps import CurrentActor
from app.core.database import get_db
from app.core.rate_limit import rate_limit_write
from app.models.workflow import LeadGateRecord
from app.schemas.workflow import (
    DeliveryStatusRequest,
    GateRecordCreate,
    GateRecordResponse,
    LeadStageRequest,
    TransitionResponse,
)
from app.services.audit import AuditSink, AuditTrail, get_audit_sink
from app.services.workflows import WorkflowService

router = APIRouter(tags=["workflows"], dependencies=[Depends(rate_limit_write)])


@router.post("/leads/{lead_id}/stage", response_model=TransitionResponse)
async def change_lead_stage(
    lead_id: uuid.UUID,
    payload: LeadStageRequest,
    actor: CurrentActor,
    sink: AuditSink = Depends(get_audit_sink),
    db: AsyncSession = Depends(get_db),
) -> TransitionResponse:
    """Advance a lead through the pipeline; 428 lists any missing gate records."""
    trail = AuditTrail(sink, actor, triggered_by=payload.triggered_by)
    decision = await WorkflowService(db, trail).transition_lead(lead_id, payload.to_stage)
    return TransitionResponse(
        entity_id=lead_id,
        graph=decision.graph,
        from_state=decision.from_state,
        to_state=decision.to_state,
        result=decision.result,
    )


@router.post(
    "/leads/{lead_id}/gates",
    response_model=GateRecordResponse,
    status_code=status.HTTP_201_CREATED,
)
async def record_lead_gate(
    lead_id: uuid.UUID,
    payload: GateRecordCreate,
    actor: CurrentActor,
    sink: AuditSink = Depends(get_audit_sink),
    db: AsyncSession = Depends(get_db),
) -> LeadGateRecord:
    service = WorkflowService(db, AuditTrail(sink, actor))
    return await service.record_gate(lead_id, payload.gate, payload.payload)


@router.post("/deliveries/{delivery_id}/status", response_model=TransitionResponse)
async def change_delivery_status(
    delivery_id: uuid.UUID,
    payload: DeliveryStatusRequest,
    actor: CurrentActor,
    sink: AuditSink = Depends(get_audit_sink),
    db: AsyncSession = Depends(get_db),
) -> TransitionResponse:
    decision = await WorkflowService(db, AuditTrail(sink, actor)).transition_delivery(
        delivery_id, payload.to_status
    )
    return TransitionResponse(
        entity_id=delivery_id,
        graph=decision.graph,
        from_state=decision.from_state,
        to_state=decision.to_state,
        result=decision.result,
    )
