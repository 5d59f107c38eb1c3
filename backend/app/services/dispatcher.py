"""Dispatcher: assigns tasks to capable machines.

Selection policy is first-fit, not optimisation: the first capability-matching
idle machine (by creation order) gets the task immediately; otherwise the task
joins the shortest queue among eligible machines that are not down. A machine
that turns busy between selection and start is skipped, so a losing race falls
back to the next machine or to a queue instead of failing.
"""

import logging
import uuid
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import require_write_role
from app.core.errors import ConflictError
from app.models.machine import Machine
from app.models.machine_run import MachineRun
from app.models.queue_item import QueueItem
from app.models.task import Task
from app.services.audit import AuditTrail
from app.services.capability_registry import (
    CapabilityRegistry,
    check_capability,
    report_violation,
    validate_bar_code,
    violation_for,
)
from app.services.machine_lifecycle import MachineLifecycle
from app.services.queue_manager import QueueManager
from app.services.shop_helpers import load_machine, load_task, queued_counts
from app.services.transition_guard import BLOCKED, MACHINE_RUN, Decision

logger = logging.getLogger(__name__)


@dataclass
class DispatchOutcome:
    """What ``dispatch`` did with a task."""

    kind: str  # "started" or "enqueued"
    machine: Machine
    run: MachineRun | None = None
    queue_item: QueueItem | None = None
    queue_items: list[tuple[QueueItem, Task]] = field(default_factory=list)


class Dispatcher:
    """Single entry point behind the dispatch action envelope."""

    def __init__(self, db: AsyncSession, trail: AuditTrail) -> None:
        self.db = db
        self.trail = trail
        self.actor = trail.actor
        self.registry = CapabilityRegistry(db)
        self.lifecycle = MachineLifecycle(db, trail)
        self.queues = QueueManager(db, trail)

    async def dispatch(self, task_id: uuid.UUID) -> DispatchOutcome:
        require_write_role(self.actor)
        task = await load_task(self.db, self.actor, task_id)
        decision = Decision(MACHINE_RUN.name, "idle", "running", BLOCKED)
        if task.status != "pending":
            code = f"task_already_{task.status}"
            self.trail.transition(decision, task.id, code)
            raise ConflictError(code, f"Task is {task.status}")
        bar_code = validate_bar_code(task.bar_code)
        qty = task.qty_remaining

        candidates = await self.registry.capable_machines(
            self.actor.company_id, task.process, bar_code
        )
        if task.locked_to_machine_id is not None:
            candidates = [(m, c) for m, c in candidates if m.id == task.locked_to_machine_id]

        if not candidates:
            locked = None
            if task.locked_to_machine_id is not None:
                locked = await load_machine(self.db, self.actor, task.locked_to_machine_id)
            outcome = check_capability(None, qty, task.cut_length_mm)
            exc = violation_for(
                outcome, task.locked_to_machine_id, task.process, bar_code, qty, task.cut_length_mm
            )
            report_violation(self.trail, exc, locked, decision, task.id)
            raise exc

        eligible: list[Machine] = []
        first_failure = None
        for machine, capability in candidates:
            outcome = check_capability(capability, qty, task.cut_length_mm)
            if outcome.ok:
                eligible.append(machine)
            elif first_failure is None:
                first_failure = (machine, outcome)
        if not eligible:
            machine, outcome = first_failure
            exc = violation_for(
                outcome, machine.id, task.process, bar_code, qty, task.cut_length_mm
            )
            report_violation(self.trail, exc, machine, decision, task.id)
            raise exc

        for machine in eligible:
            if machine.status != "idle" or machine.current_run_id is not None:
                continue
            fresh = await load_machine(self.db, self.actor, machine.id)
            name = fresh.name
            try:
                # A lost race rolls back to here and leaves the request usable
                async with self.db.begin_nested():
                    run = await self.lifecycle.start_for_task(fresh, task)
            except ConflictError as exc:
                logger.info("Machine %s unavailable (%s), trying next", name, exc.code)
                await self.db.refresh(fresh)
                await self.db.refresh(task)
                continue
            logger.info("Task %s dispatched to idle machine %s", task.id, name)
            return DispatchOutcome(kind="started", machine=fresh, run=run)

        queueable = [m for m in eligible if m.status != "down"]
        if not queueable:
            self.trail.transition(decision, task.id, "no_available_machine")
            raise ConflictError("no_available_machine", "Every capable machine is down")
        counts = await queued_counts(self.db, [m.id for m in queueable])
        # min() keeps the first of equals, so ties go to the oldest machine
        target = min(queueable, key=lambda m: counts.get(m.id, 0))
        item = await self.queues.enqueue(task, target)
        return DispatchOutcome(
            kind="enqueued",
            machine=target,
            queue_item=item,
            queue_items=await self.queues.snapshot(machine_id=target.id),
        )

    async def start_task(self, queue_item_id: uuid.UUID) -> MachineRun:
        """Operator-triggered start of a specific queued item; capability is rechecked."""
        return await self.lifecycle.start_queued(queue_item_id)

    async def move_task(
        self,
        queue_item_id: uuid.UUID,
        target_machine_id: uuid.UUID | None,
        target_position: int | None,
    ) -> QueueItem:
        require_write_role(self.actor)
        return await self.queues.move(queue_item_id, target_machine_id, target_position)

    async def cancel_task(self, queue_item_id: uuid.UUID) -> QueueItem:
        require_write_role(self.actor)
        return await self.queues.cancel(queue_item_id)

    async def get_queues(
        self,
        machine_id: uuid.UUID | None = None,
        project_id: uuid.UUID | None = None,
        status: str | None = None,
    ) -> list[tuple[QueueItem, Task]]:
        return await self.queues.snapshot(machine_id, project_id, status)
