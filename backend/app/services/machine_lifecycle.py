"""Machine-run lifecycle.

Drives a machine's current run through the ``machine_run`` graph
(idle -> running -> paused/blocked/completed) and keeps ``Machine.status``
in step with it. Every operation follows the same order: role check, input
validation, fresh read of the machine, guard, capability, mutate, flush.
Anything that fails before the flush leaves the machine untouched.
"""

import logging
import uuid
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.core.auth import require_write_role
from app.core.database import utcnow
from app.core.errors import (
    CapabilityViolation,
    ConflictError,
    MachineBusy,
    TransitionBlocked,
    ValidationFailed,
)
from app.models.machine import Machine
from app.models.machine_run import RUN_PROCESSES, MachineRun
from app.models.queue_item import QueueItem
from app.models.task import Task
from app.services.audit import AuditTrail
from app.services.capability_registry import (
    CapabilityRegistry,
    report_violation,
    validate_bar_code,
)
from app.services.queue_manager import QueueManager
from app.services.shop_helpers import (
    current_run,
    load_machine,
    load_queue_item,
    load_task,
)
from app.services.transition_guard import MACHINE_RUN, MACHINE_STATUS, Decision, check

logger = logging.getLogger(__name__)

RUN_ACTIONS = {"pause": "paused", "block": "blocked", "resume": "running", "complete": "completed"}


@dataclass
class RunOutcome:
    """Result of a run transition; ``next_run`` is set when completion auto-started a successor."""

    machine: Machine
    run: MachineRun
    next_run: MachineRun | None = None


class MachineLifecycle:
    """Start, pause, block, resume and complete machine runs."""

    def __init__(self, db: AsyncSession, trail: AuditTrail) -> None:
        self.db = db
        self.trail = trail
        self.actor = trail.actor
        self.registry = CapabilityRegistry(db)
        self.queues = QueueManager(db, trail)

    # -------------------------------------------------------------------
    # Start
    # -------------------------------------------------------------------

    async def start(
        self,
        machine_id: uuid.UUID,
        process: str,
        bar_code: str | None,
        qty: int,
        length_mm: int | None = None,
        work_order_id: uuid.UUID | None = None,
        operator_profile_id: uuid.UUID | None = None,
        notes: str | None = None,
    ) -> MachineRun:
        """Start an ad-hoc run on a machine with no active run."""
        require_write_role(self.actor)
        if process not in RUN_PROCESSES:
            raise ValidationFailed("invalid_process", f"Unknown process: {process}")
        code = validate_bar_code(bar_code)
        if qty < 0:
            raise ValidationFailed("invalid_qty", "qty must be >= 0")

        machine = await load_machine(self.db, self.actor, machine_id)
        return await self._start_on(
            machine,
            process,
            code,
            qty,
            length_mm,
            work_order_id=work_order_id,
            operator_profile_id=operator_profile_id,
            notes=notes,
        )

    async def start_queued(
        self, queue_item_id: uuid.UUID, machine_id: uuid.UUID | None = None
    ) -> MachineRun:
        """Start the task behind a queued item on the item's machine and consume the item.

        ``machine_id``, when given, must be the machine the item is queued on.
        """
        require_write_role(self.actor)
        item = await load_queue_item(self.db, self.actor, queue_item_id)
        if machine_id is not None and item.machine_id != machine_id:
            raise ValidationFailed("machine_mismatch", "Queue item belongs to another machine")
        decision = check(MACHINE_RUN, "idle", "running")
        if item.status != "queued":
            self.trail.transition(decision, item.id, "queue_item_not_queued", item.status)
            raise ConflictError("queue_item_not_queued", f"Queue item is {item.status}")
        task = await load_task(self.db, self.actor, item.task_id)
        if task.status in ("running", "done"):
            code = f"task_already_{task.status}"
            self.trail.transition(decision, item.id, code)
            raise ConflictError(code, f"Task already {task.status}")

        machine = await load_machine(self.db, self.actor, item.machine_id)
        return await self._start_on(
            machine,
            task.process,
            validate_bar_code(task.bar_code),
            task.qty_remaining,
            task.cut_length_mm,
            work_order_id=task.work_order_id,
            operator_profile_id=machine.current_operator_profile_id,
            task=task,
            item=item,
        )

    async def start_for_task(self, machine: Machine, task: Task) -> MachineRun:
        """Start ``task`` directly on an already loaded machine, without a queue item."""
        return await self._start_on(
            machine,
            task.process,
            validate_bar_code(task.bar_code),
            task.qty_remaining,
            task.cut_length_mm,
            work_order_id=task.work_order_id,
            operator_profile_id=machine.current_operator_profile_id,
            task=task,
        )

    async def _start_on(
        self,
        machine: Machine,
        process: str,
        bar_code: str,
        qty: int,
        length_mm: int | None,
        work_order_id: uuid.UUID | None = None,
        operator_profile_id: uuid.UUID | None = None,
        notes: str | None = None,
        task: Task | None = None,
        item: QueueItem | None = None,
    ) -> MachineRun:
        active = await current_run(self.db, machine)
        decision = check(MACHINE_RUN, active.status if active else "idle", "running")
        if not decision.permitted or active is not None:
            self.trail.transition(decision, active.id if active else machine.id, "machine_busy")
            raise MachineBusy("machine_busy", f"{machine.name} already has an active run")
        if machine.status in ("down", "blocked"):
            self.trail.transition(decision, machine.id, f"machine_{machine.status}")
            raise ConflictError(f"machine_{machine.status}", f"{machine.name} is {machine.status}")

        try:
            await self.registry.validate(machine.id, process, bar_code, qty, length_mm)
        except CapabilityViolation as exc:
            report_violation(self.trail, exc, machine, decision, task.id if task else machine.id)
            raise

        now = utcnow()
        run = MachineRun(
            id=uuid.uuid4(),
            company_id=machine.company_id,
            machine_id=machine.id,
            task_id=task.id if task else None,
            process=process,
            bar_code=bar_code,
            work_order_id=work_order_id,
            operator_profile_id=operator_profile_id,
            status="running",
            started_at=now,
            input_qty=qty,
            notes=notes,
            created_by=self.actor.user_id,
        )
        self.db.add(run)
        previous_status = machine.status
        machine.status = "running"
        machine.current_run_id = run.id
        machine.last_event_at = now
        if task is not None:
            task.status = "running"
        if item is not None:
            item.status = "started"
        await self._flush(decision, machine.id)

        self.trail.transition(decision, run.id)
        logger.info("Run %s started on %s (%s %s x%d)", run.id, machine.name, process, bar_code, qty)
        self.trail.event(
            "machine_run_started",
            "machine_run",
            run.id,
            f"{machine.name}: {process} {bar_code} x{qty} started",
            {"machineId": machine.id, "process": process, "barCode": bar_code, "qty": qty},
        )
        self._status_event(machine, previous_status)
        if task is not None:
            self.trail.event(
                "task_started",
                "production_task",
                task.id,
                f"Task started on {machine.name}",
                {"taskId": task.id, "machineId": machine.id, "runId": run.id},
            )
        return run

    # -------------------------------------------------------------------
    # Run transitions
    # -------------------------------------------------------------------

    async def transition_run(
        self,
        machine_id: uuid.UUID,
        to_status: str,
        run_id: uuid.UUID | None = None,
        notes: str | None = None,
        output_qty: int | None = None,
        scrap_qty: int | None = None,
    ) -> RunOutcome:
        """Move the machine's active run to ``to_status``.

        Completing a run credits its output to the task, frees the machine
        and auto-starts the next queued item, if any.
        """
        require_write_role(self.actor)
        if output_qty is not None and output_qty < 0:
            raise ValidationFailed("invalid_qty", "outputQty must be >= 0")
        if scrap_qty is not None and scrap_qty < 0:
            raise ValidationFailed("invalid_qty", "scrapQty must be >= 0")

        machine = await load_machine(self.db, self.actor, machine_id)
        run = await current_run(self.db, machine)
        if run is None:
            decision = check(MACHINE_RUN, "idle", to_status)
            self.trail.transition(decision, machine.id, "no_active_run")
            raise TransitionBlocked("no_active_run", "idle", to_status, MACHINE_RUN.name)
        if run_id is not None and run_id != run.id:
            decision = check(MACHINE_RUN, run.status, to_status)
            self.trail.transition(decision, run_id, "stale_state", "run is no longer current")
            raise ConflictError("stale_state", f"Run {run_id} is not the machine's current run")

        decision = check(MACHINE_RUN, run.status, to_status)
        if not decision.permitted:
            self.trail.transition(decision, run.id)
            raise TransitionBlocked(decision.reason, run.status, to_status, MACHINE_RUN.name)

        now = utcnow()
        previous_status = machine.status
        run.status = to_status
        if notes:
            run.notes = f"{run.notes}\n{notes}" if run.notes else notes
        machine.last_event_at = now

        task = None
        if to_status == "completed":
            run.ended_at = now
            run.output_qty = output_qty or 0
            run.scrap_qty = scrap_qty or 0
            machine.status = "idle"
            machine.current_run_id = None
            if run.task_id is not None:
                task = await load_task(self.db, self.actor, run.task_id)
                task.qty_completed += run.output_qty
                task.status = "done" if task.qty_completed >= task.qty_required else "pending"
        else:
            machine.status = to_status
        await self._flush(decision, run.id)

        self.trail.transition(decision, run.id)
        logger.info("Run %s on %s: %s -> %s", run.id, machine.name, decision.from_state, to_status)
        self.trail.event(
            "machine_run_updated",
            "machine_run",
            run.id,
            f"{machine.name}: run {to_status}",
            {
                "machineId": machine.id,
                "from": decision.from_state,
                "to": to_status,
                "outputQty": run.output_qty,
                "scrapQty": run.scrap_qty,
            },
        )
        self._status_event(machine, previous_status)
        if task is not None and task.status == "done":
            self.trail.event(
                "task_completed",
                "production_task",
                task.id,
                f"Task completed: {task.qty_completed}/{task.qty_required}",
                {"taskId": task.id, "runId": run.id},
            )

        outcome = RunOutcome(machine=machine, run=run)
        if to_status == "completed":
            outcome.next_run = await self._start_next(machine)
        return outcome

    async def _start_next(self, machine: Machine) -> MachineRun | None:
        """Auto-start the first startable item in the machine's queue after a completion.

        Items that can no longer start (capabilities or task changed since
        enqueue) stay queued for an operator and are skipped.
        """
        skipped: set[uuid.UUID] = set()
        while True:
            item = await self.queues.pop_next(machine.id, skip=skipped)
            if item is None:
                return None
            item_id = item.id
            skipped.add(item_id)
            try:
                async with self.db.begin_nested():
                    return await self.start_queued(item_id)
            except (CapabilityViolation, ConflictError) as exc:
                await self.db.refresh(machine)
                logger.warning(
                    "Queued item %s not auto-started on %s: %s", item_id, machine.name, exc.code
                )

    # -------------------------------------------------------------------
    # Status and operator
    # -------------------------------------------------------------------

    async def update_status(self, machine_id: uuid.UUID, status: str) -> Machine:
        """Manual status change (idle, blocked, down) for a machine with no active run."""
        require_write_role(self.actor)
        if status not in MACHINE_STATUS.states:
            raise ValidationFailed("invalid_status", f"Unknown machine status: {status}")

        machine = await load_machine(self.db, self.actor, machine_id)
        if status == machine.status:
            return machine

        decision = check(MACHINE_STATUS, machine.status, status)
        if await current_run(self.db, machine) is not None:
            self.trail.transition(decision, machine.id, "machine_has_active_run")
            raise ConflictError("machine_has_active_run", "Finish or complete the active run first")
        if not decision.permitted:
            self.trail.transition(decision, machine.id)
            raise TransitionBlocked(decision.reason, machine.status, status, MACHINE_STATUS.name)

        previous_status = machine.status
        machine.status = status
        machine.last_event_at = utcnow()
        await self._flush(decision, machine.id)

        self.trail.transition(decision, machine.id)
        self._status_event(machine, previous_status)
        return machine

    async def assign_operator(
        self, machine_id: uuid.UUID, operator_profile_id: uuid.UUID | None
    ) -> Machine:
        require_write_role(self.actor)
        machine = await load_machine(self.db, self.actor, machine_id)
        machine.current_operator_profile_id = operator_profile_id
        machine.last_event_at = utcnow()
        try:
            await self.db.flush()
        except StaleDataError as exc:
            raise ConflictError("stale_state", "Machine changed concurrently") from exc
        self.trail.event(
            "operator_assigned",
            "machine",
            machine.id,
            f"{machine.name}: operator {'assigned' if operator_profile_id else 'cleared'}",
            {"machineId": machine.id, "operatorProfileId": operator_profile_id},
        )
        return machine

    # -------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------

    def _status_event(self, machine: Machine, previous_status: str) -> None:
        if machine.status == previous_status:
            return
        self.trail.event(
            "machine_status_changed",
            "machine",
            machine.id,
            f"{machine.name}: {previous_status} -> {machine.status}",
            {"machineId": machine.id, "from": previous_status, "to": machine.status},
        )

    async def _flush(self, decision: Decision, entity_id: uuid.UUID) -> None:
        """Flush pending writes, turning lost races into ``ConflictError``."""
        try:
            await self.db.flush()
        except StaleDataError as exc:
            self.trail.transition(decision, entity_id, "conflict", "stale_state")
            logger.warning("Stale machine state on %s -> %s", decision.from_state, decision.to_state)
            raise ConflictError("stale_state", "Machine changed since it was read") from exc
        except IntegrityError as exc:
            self.trail.transition(decision, entity_id, "conflict", "constraint")
            logger.warning("Constraint conflict on %s: %s", decision.graph, exc.orig)
            raise ConflictError("conflict", "Concurrent change detected") from exc
