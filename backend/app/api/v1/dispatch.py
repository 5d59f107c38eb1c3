"""Dispatch action endpoint: dispatch, start, move, cancel and list queues."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.deps import Trail
from app.core.database import get_db
from app.core.rate_limit import rate_limit_write
from app.models.queue_item import QueueItem
from app.models.task import Task
from app.schemas.dispatch import DispatchRequest, DispatchResponse, QueueItemView, TaskSummary
from app.services.dispatcher import Dispatcher

router = APIRouter(prefix="/dispatch", tags=["dispatch"])


def _queue_view(item: QueueItem, task: Task) -> QueueItemView:
    view = QueueItemView.model_validate(item)
    view.task = TaskSummary.model_validate(task)
    return view


@router.post("", response_model=DispatchResponse, response_model_exclude_none=True)
async def dispatch_action(
    payload: DispatchRequest,
    trail: Trail,
    db: AsyncSession = Depends(get_db),
    _limit: None = Depends(rate_limit_write),
) -> DispatchResponse:
    """Run one dispatcher action described by the envelope."""
    dispatcher = Dispatcher(db, trail)

    if payload.action == "dispatch":
        outcome = await dispatcher.dispatch(payload.task_id)
        return DispatchResponse(
            action=payload.action,
            outcome=outcome.kind,
            machine_id=outcome.machine.id,
            machine_run_id=outcome.run.id if outcome.run else None,
            queue_item_id=outcome.queue_item.id if outcome.queue_item else None,
            queue_items=[_queue_view(i, t) for i, t in outcome.queue_items] or None,
        )

    if payload.action == "start-task":
        run = await dispatcher.start_task(payload.queue_item_id)
        return DispatchResponse(
            action=payload.action,
            outcome="started",
            machine_id=run.machine_id,
            machine_run_id=run.id,
            queue_item_id=payload.queue_item_id,
        )

    if payload.action == "move-task":
        item = await dispatcher.move_task(
            payload.queue_item_id, payload.target_machine_id, payload.target_position
        )
        rows = await dispatcher.get_queues(machine_id=item.machine_id)
        return DispatchResponse(
            action=payload.action,
            machine_id=item.machine_id,
            queue_item_id=item.id,
            queue_items=[_queue_view(i, t) for i, t in rows],
        )

    if payload.action == "cancel-task":
        item = await dispatcher.cancel_task(payload.queue_item_id)
        return DispatchResponse(action=payload.action, machine_id=item.machine_id, queue_item_id=item.id)

    rows = await dispatcher.get_queues(payload.machine_id, payload.project_id, payload.status)
    return DispatchResponse(
        action=payload.action,
        queue_items=[_queue_view(i, t) for i, t in rows],
    )
