"""Shared shop-floor lookup helpers.

Provides tenant-scoped loaders used by the lifecycle, queue and dispatch
services:
- Machine loading with a fresh re-read of its current state
- Task, queue item and run loading
- Active queue position queries
"""

import uuid

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import Actor
from app.core.errors import NotFoundError
from app.models.machine import Machine
from app.models.machine_run import ACTIVE_RUN_STATUSES, MachineRun
from app.models.queue_item import QueueItem
from app.models.task import Task


async def load_machine(db: AsyncSession, actor: Actor, machine_id: uuid.UUID) -> Machine:
    """Load a machine, overwriting any cached copy with the committed row."""
    result = await db.execute(
        select(Machine)
        .where(Machine.id == machine_id)
        .execution_options(populate_existing=True)
    )
    machine = result.scalar_one_or_none()
    if machine is None or machine.company_id != actor.company_id:
        raise NotFoundError("machine_not_found", f"Machine {machine_id} not found")
    return machine


async def load_task(db: AsyncSession, actor: Actor, task_id: uuid.UUID) -> Task:
    task = await db.get(Task, task_id)
    if task is None or task.company_id != actor.company_id:
        raise NotFoundError("task_not_found", f"Task {task_id} not found")
    return task


async def load_queue_item(db: AsyncSession, actor: Actor, item_id: uuid.UUID) -> QueueItem:
    result = await db.execute(
        select(QueueItem)
        .where(QueueItem.id == item_id)
        .execution_options(populate_existing=True)
    )
    item = result.scalar_one_or_none()
    if item is None or item.company_id != actor.company_id:
        raise NotFoundError("queue_item_not_found", f"Queue item {item_id} not found")
    return item


async def current_run(db: AsyncSession, machine: Machine) -> MachineRun | None:
    """The machine's active run, or None when it has none."""
    if machine.current_run_id is None:
        return None
    run = await db.get(MachineRun, machine.current_run_id)
    if run is None or run.status not in ACTIVE_RUN_STATUSES:
        return None
    return run


async def next_position(db: AsyncSession, machine_id: uuid.UUID) -> int:
    """Tail position for a machine queue: one past the highest live slot."""
    result = await db.execute(
        select(func.max(QueueItem.position)).where(
            QueueItem.machine_id == machine_id,
            QueueItem.status != "cancelled",
        )
    )
    highest = result.scalar()
    return 0 if highest is None else highest + 1


async def queued_counts(db: AsyncSession, machine_ids: list[uuid.UUID]) -> dict[uuid.UUID, int]:
    """Number of queued items per machine."""
    if not machine_ids:
        return {}
    result = await db.execute(
        select(QueueItem.machine_id, func.count(QueueItem.id))
        .where(QueueItem.machine_id.in_(machine_ids), QueueItem.status == "queued")
        .group_by(QueueItem.machine_id)
    )
    return {row[0]: row[1] for row in result.all()}
