"""Per-machine work queues.

Each machine owns an ordered backlog of queue items keyed by an integer
``position``. Positions are unique per machine among non-cancelled items and
may have gaps; only relative order matters. Taking an occupied slot pushes
the occupant and everything after it back by one.
"""

import logging
import uuid
from collections.abc import Collection

from sqlalchemy import and_, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import CapabilityViolation, ConflictError, ValidationFailed
from app.models.machine import Machine
from app.models.queue_item import QueueItem
from app.models.task import Task
from app.services.audit import AuditTrail
from app.services.capability_registry import CapabilityRegistry, report_violation
from app.services.shop_helpers import (
    load_machine,
    load_queue_item,
    load_task,
    next_position,
)
from app.services.transition_guard import BLOCKED, Decision

logger = logging.getLogger(__name__)

# Temporary slot for an item while the slots around it are renumbered
_PARKED = -1

QUEUE_ASSIGNMENT = "queue_assignment"


class QueueManager:
    """Enqueue, reorder, pop and snapshot machine queues."""

    def __init__(self, db: AsyncSession, trail: AuditTrail) -> None:
        self.db = db
        self.trail = trail
        self.actor = trail.actor
        self.registry = CapabilityRegistry(db)

    # -------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------

    async def enqueue(
        self, task: Task, machine: Machine, position: int | None = None
    ) -> QueueItem:
        """Queue ``task`` on ``machine`` at ``position`` or at the tail."""
        decision = Decision(QUEUE_ASSIGNMENT, task.status, str(machine.id), BLOCKED)
        if task.status in ("running", "done"):
            raise self._reject(
                decision, task.id, f"task_already_{task.status}", f"Task already {task.status}"
            )
        if await self._active_item_for(task.id) is not None:
            raise self._reject(
                decision, task.id, "task_already_queued", "Task already in an active queue"
            )

        if position is None:
            position = await next_position(self.db, machine.id)
        else:
            if position < 0:
                raise ValidationFailed("invalid_position", "Position must be >= 0")
            await self._make_room(machine.id, position, decision)

        item = QueueItem(
            id=uuid.uuid4(),
            company_id=task.company_id,
            task_id=task.id,
            machine_id=machine.id,
            project_id=task.project_id,
            work_order_id=task.work_order_id,
            position=position,
            status="queued",
        )
        self.db.add(item)
        task.status = "queued"
        await self._flush(decision, task.id)

        logger.info("Task %s queued on %s at position %d", task.id, machine.name, position)
        self.trail.event(
            "task_dispatched",
            "production_task",
            task.id,
            f"Task queued: {task.bar_code} {task.task_type} -> {machine.name} (pos {position})",
            {
                "taskId": task.id,
                "machineId": machine.id,
                "machineName": machine.name,
                "position": position,
                "locked": task.locked_to_machine_id is not None,
            },
        )
        return item

    async def move(
        self,
        item_id: uuid.UUID,
        target_machine_id: uuid.UUID | None = None,
        target_position: int | None = None,
    ) -> QueueItem:
        """Relocate a queued item to another slot and/or machine.

        Cross-machine moves revalidate capability against the target. A
        rejected move leaves the item where it was; replaying a completed
        move is a no-op.
        """
        if target_position is not None and target_position < 0:
            raise ValidationFailed("invalid_position", "Position must be >= 0")
        item = await load_queue_item(self.db, self.actor, item_id)
        source_machine_id = item.machine_id
        target_id = target_machine_id or source_machine_id
        decision = Decision(QUEUE_ASSIGNMENT, str(source_machine_id), str(target_id), BLOCKED)
        if item.status != "queued":
            raise self._reject(
                decision, item.id, "queue_item_not_queued", "Can only move queued items"
            )

        cross_machine = target_id != source_machine_id

        if cross_machine:
            task = await load_task(self.db, self.actor, item.task_id)
            target = await load_machine(self.db, self.actor, target_id)
            try:
                await self.registry.validate(
                    target.id, task.process, task.bar_code, task.qty_remaining, task.cut_length_mm
                )
            except CapabilityViolation as exc:
                report_violation(self.trail, exc, target, decision, item.id)
                raise
        elif target_position is None or target_position == item.position:
            return item

        if target_position is None:
            new_position = await next_position(self.db, target_id)
        else:
            item.position = _PARKED
            await self._flush(decision, item.id)
            await self._make_room(target_id, target_position, decision, exclude_id=item.id)
            new_position = target_position

        item.machine_id = target_id
        item.position = new_position
        await self._flush(decision, item.id)

        logger.info(
            "Queue item %s moved %s -> %s position %d",
            item.id, source_machine_id, target_id, new_position,
        )
        self.trail.event(
            "task_rerouted",
            "production_task",
            item.task_id,
            f"Task moved to machine {target_id} position {new_position}",
            {
                "queueItemId": item.id,
                "taskId": item.task_id,
                "fromMachine": source_machine_id,
                "toMachine": target_id,
                "position": new_position,
            },
        )
        return item

    async def cancel(self, item_id: uuid.UUID) -> QueueItem:
        item = await load_queue_item(self.db, self.actor, item_id)
        decision = Decision(QUEUE_ASSIGNMENT, item.status, "cancelled", BLOCKED)
        if item.status != "queued":
            raise self._reject(
                decision, item.id, "queue_item_not_queued", "Can only cancel queued items"
            )
        task = await load_task(self.db, self.actor, item.task_id)
        item.status = "cancelled"
        if task.status == "queued":
            task.status = "pending"
        await self._flush(decision, item.id)
        self.trail.event(
            "task_rerouted",
            "production_task",
            task.id,
            "Task removed from queue",
            {"queueItemId": item.id, "taskId": task.id, "machineId": item.machine_id},
        )
        return item

    async def pop_next(
        self, machine_id: uuid.UUID, skip: Collection[uuid.UUID] = ()
    ) -> QueueItem | None:
        """Lowest-position queued item for a machine, if any, ignoring ``skip``."""
        query = select(QueueItem).where(
            QueueItem.machine_id == machine_id, QueueItem.status == "queued"
        )
        if skip:
            query = query.where(QueueItem.id.not_in(skip))
        result = await self.db.execute(query.order_by(QueueItem.position).limit(1))
        return result.scalar_one_or_none()

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------

    async def snapshot(
        self,
        machine_id: uuid.UUID | None = None,
        project_id: uuid.UUID | None = None,
        status: str | None = None,
    ) -> list[tuple[QueueItem, Task]]:
        """Queued items plus started items whose task is still running."""
        query = (
            select(QueueItem, Task)
            .join(Task, Task.id == QueueItem.task_id)
            .where(QueueItem.company_id == self.actor.company_id)
        )
        if status is not None:
            query = query.where(QueueItem.status == status)
        else:
            query = query.where(
                or_(
                    QueueItem.status == "queued",
                    and_(QueueItem.status == "started", Task.status == "running"),
                )
            )
        if machine_id is not None:
            query = query.where(QueueItem.machine_id == machine_id)
        if project_id is not None:
            query = query.where(QueueItem.project_id == project_id)
        query = query.order_by(QueueItem.machine_id, QueueItem.position)

        result = await self.db.execute(query)
        return [(row[0], row[1]) for row in result.all()]

    # -------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------

    async def _active_item_for(self, task_id: uuid.UUID) -> QueueItem | None:
        result = await self.db.execute(
            select(QueueItem).where(QueueItem.task_id == task_id, QueueItem.status == "queued")
        )
        return result.scalars().first()

    async def _make_room(
        self,
        machine_id: uuid.UUID,
        position: int,
        decision: Decision,
        exclude_id: uuid.UUID | None = None,
    ) -> None:
        """Free ``position`` by shifting it and every later slot back by one."""
        query = select(QueueItem).where(
            QueueItem.machine_id == machine_id,
            QueueItem.status != "cancelled",
            QueueItem.position >= position,
        )
        if exclude_id is not None:
            query = query.where(QueueItem.id != exclude_id)
        result = await self.db.execute(query.order_by(QueueItem.position.desc()))
        later = list(result.scalars().all())
        if not later or later[-1].position != position:
            return
        # Highest first, one statement each, so no two live items ever share a slot
        for item in later:
            item.position += 1
            await self._flush(decision, item.id)

    def _reject(
        self, decision: Decision, entity_id: uuid.UUID, code: str, detail: str
    ) -> ConflictError:
        self.trail.transition(decision, entity_id, code, detail)
        return ConflictError(code, detail)

    async def _flush(self, decision: Decision, entity_id: uuid.UUID) -> None:
        try:
            await self.db.flush()
        except IntegrityError as exc:
            logger.warning("Queue write rejected by constraint: %s", exc.orig)
            raise self._reject(
                decision, entity_id, "queue_conflict", "Queue changed concurrently"
            ) from exc
