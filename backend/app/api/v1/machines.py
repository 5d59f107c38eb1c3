"""Machine management: action envelope plus read-only machine views."""

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.deps import CurrentActor, Trail
from app.core.database import get_db
from app.core.rate_limit import rate_limit_write
from app.models.machine import Machine
from app.models.machine_run import MachineRun
from app.schemas.machine import (
    CapabilityResponse,
    MachineActionRequest,
    MachineActionResponse,
    MachineResponse,
    MachineRunResponse,
)
from app.services.capability_registry import CapabilityRegistry
from app.services.machine_lifecycle import RUN_ACTIONS, MachineLifecycle
from app.services.shop_helpers import load_machine, queued_counts

router = APIRouter(prefix="/machines", tags=["machines"])


@router.post("/actions", response_model=MachineActionResponse, response_model_exclude_none=True)
async def machine_action(
    payload: MachineActionRequest,
    trail: Trail,
    db: AsyncSession = Depends(get_db),
    _limit: None = Depends(rate_limit_write),
) -> MachineActionResponse:
    """Run one lifecycle action against a machine."""
    lifecycle = MachineLifecycle(db, trail)
    response = MachineActionResponse(machine_id=payload.machine_id, action=payload.action)

    if payload.action == "update-status":
        machine = await lifecycle.update_status(payload.machine_id, payload.status)
        response.status = machine.status
    elif payload.action == "assign-operator":
        machine = await lifecycle.assign_operator(payload.machine_id, payload.operator_profile_id)
        response.status = machine.status
    elif payload.action == "start-run":
        run = await lifecycle.start(
            payload.machine_id,
            payload.process,
            payload.bar_code,
            payload.qty,
            length_mm=payload.length_mm,
            work_order_id=payload.work_order_id,
            operator_profile_id=payload.operator_profile_id,
            notes=payload.notes,
        )
        response.machine_run_id = run.id
        response.status = "running"
    elif payload.action == "start-queued-run":
        run = await lifecycle.start_queued(payload.queue_item_id, machine_id=payload.machine_id)
        response.machine_run_id = run.id
        response.status = "running"
    else:
        to_status = RUN_ACTIONS[payload.action.removesuffix("-run")]
        outcome = await lifecycle.transition_run(
            payload.machine_id,
            to_status,
            run_id=payload.run_id,
            notes=payload.notes,
            output_qty=payload.output_qty,
            scrap_qty=payload.scrap_qty,
        )
        response.machine_run_id = outcome.run.id
        response.next_run_id = outcome.next_run.id if outcome.next_run else None
        response.status = "running" if outcome.next_run else outcome.machine.status
    return response


@router.get("", response_model=list[MachineResponse])
async def list_machines(
    actor: CurrentActor,
    status_filter: str | None = Query(None, alias="status"),
    db: AsyncSession = Depends(get_db),
) -> list[MachineResponse]:
    """List the caller's machines with their queued item counts."""
    query = select(Machine).where(Machine.company_id == actor.company_id)
    if status_filter is not None:
        query = query.where(Machine.status == status_filter)
    result = await db.execute(query.order_by(Machine.created_at, Machine.id))
    machines = list(result.scalars().all())
    counts = await queued_counts(db, [m.id for m in machines])
    return [
        MachineResponse.model_validate(m).model_copy(update={"queued_count": counts.get(m.id, 0)})
        for m in machines
    ]


@router.get("/{machine_id}", response_model=MachineResponse)
async def get_machine(
    machine_id: uuid.UUID,
    actor: CurrentActor,
    db: AsyncSession = Depends(get_db),
) -> MachineResponse:
    machine = await load_machine(db, actor, machine_id)
    counts = await queued_counts(db, [machine.id])
    return MachineResponse.model_validate(machine).model_copy(
        update={"queued_count": counts.get(machine.id, 0)}
    )


@router.get("/{machine_id}/capabilities", response_model=list[CapabilityResponse])
async def list_capabilities(
    machine_id: uuid.UUID,
    actor: CurrentActor,
    db: AsyncSession = Depends(get_db),
) -> list:
    machine = await load_machine(db, actor, machine_id)
    return await CapabilityRegistry(db).list_for_machine(machine.id)


@router.get("/{machine_id}/runs", response_model=list[MachineRunResponse])
async def list_runs(
    machine_id: uuid.UUID,
    actor: CurrentActor,
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
) -> list[MachineRun]:
    """Most recent runs first."""
    machine = await load_machine(db, actor, machine_id)
    result = await db.execute(
        select(MachineRun)
        .where(MachineRun.machine_id == machine.id)
        .order_by(MachineRun.started_at.desc())
        .limit(limit)
    )
    return list(result.scalars().all())
