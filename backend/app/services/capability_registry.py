"""Capability registry: which machine may process which bar size, and how much.

This is the single authoritative capability check. Any client-side
pre-check is a fast-fail convenience only.
"""

import logging
import uuid
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import CapabilityViolation, ValidationFailed
from app.models.machine import Machine, MachineCapability
from app.services.audit import AuditTrail
from app.services.transition_guard import Decision

logger = logging.getLogger(__name__)

# Canonical RSIC Canada bar sizes
BAR_CODES = frozenset({"10M", "15M", "20M", "25M", "30M", "35M", "45M", "55M"})

NO_MATCHING_CAPABILITY = "no_matching_capability"
QTY_EXCEEDS_MAX = "qty_exceeds_max"
LENGTH_EXCEEDS_MAX = "length_exceeds_max"


@dataclass(frozen=True)
class CapabilityCheck:
    """Result of checking a request against one capability row."""

    ok: bool
    reason: str | None = None
    capability: MachineCapability | None = None


def validate_bar_code(bar_code: str | None) -> str:
    if not bar_code:
        raise ValidationFailed("missing_bar_code", "barCode is required to start a run")
    code = bar_code.strip().upper()
    if code not in BAR_CODES:
        raise ValidationFailed(
            "invalid_bar_code",
            f"Invalid bar_code: {bar_code}. Must be a valid RSIC Canada size (10M-55M).",
        )
    return code


def check_capability(
    capability: MachineCapability | None,
    qty: int,
    length_mm: int | None = None,
) -> CapabilityCheck:
    """Pure decision: does ``capability`` admit a batch of ``qty`` at ``length_mm``?"""
    if capability is None:
        return CapabilityCheck(False, NO_MATCHING_CAPABILITY)
    if qty > capability.max_bars:
        return CapabilityCheck(False, QTY_EXCEEDS_MAX, capability)
    if (
        length_mm is not None
        and capability.max_length_mm is not None
        and length_mm > capability.max_length_mm
    ):
        return CapabilityCheck(False, LENGTH_EXCEEDS_MAX, capability)
    return CapabilityCheck(True, None, capability)


class CapabilityRegistry:
    """Read-only access to machine capability rows."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def lookup(
        self, machine_id: uuid.UUID, process: str, bar_code: str
    ) -> MachineCapability | None:
        result = await self.db.execute(
            select(MachineCapability).where(
                MachineCapability.machine_id == machine_id,
                MachineCapability.process == process,
                MachineCapability.bar_code == bar_code,
            )
        )
        return result.scalar_one_or_none()

    async def validate(
        self,
        machine_id: uuid.UUID,
        process: str,
        bar_code: str,
        qty: int,
        length_mm: int | None = None,
    ) -> MachineCapability:
        """Return the matching capability or raise ``CapabilityViolation``."""
        capability = await self.lookup(machine_id, process, bar_code)
        outcome = check_capability(capability, qty, length_mm)
        if not outcome.ok:
            raise violation_for(outcome, machine_id, process, bar_code, qty, length_mm)
        return capability

    async def capable_machines(
        self, company_id: uuid.UUID, process: str, bar_code: str
    ) -> list[tuple[Machine, MachineCapability]]:
        """Machines with a row for (process, bar_code), oldest machine first."""
        result = await self.db.execute(
            select(Machine, MachineCapability)
            .join(MachineCapability, MachineCapability.machine_id == Machine.id)
            .where(
                Machine.company_id == company_id,
                MachineCapability.process == process,
                MachineCapability.bar_code == bar_code,
            )
            .order_by(Machine.created_at, Machine.id)
        )
        return [(row[0], row[1]) for row in result.all()]

    async def list_for_machine(self, machine_id: uuid.UUID) -> list[MachineCapability]:
        result = await self.db.execute(
            select(MachineCapability)
            .where(MachineCapability.machine_id == machine_id)
            .order_by(MachineCapability.process, MachineCapability.bar_code)
        )
        return list(result.scalars().all())


def violation_for(
    outcome: CapabilityCheck,
    machine_id: uuid.UUID | None,
    process: str,
    bar_code: str,
    qty: int,
    length_mm: int | None = None,
) -> CapabilityViolation:
    cap = outcome.capability
    violation = {
        "machineId": str(machine_id) if machine_id else None,
        "barCode": bar_code,
        "process": process,
        "requestedQty": qty,
    }
    if outcome.reason == QTY_EXCEEDS_MAX and cap is not None:
        violation["maxBars"] = cap.max_bars
        detail = f"Capacity exceeded: max {cap.max_bars} x {bar_code} for {process} (requested {qty})"
    elif outcome.reason == LENGTH_EXCEEDS_MAX and cap is not None:
        violation["lengthMm"] = length_mm
        violation["maxLengthMm"] = cap.max_length_mm
        detail = f"Length {length_mm}mm exceeds max {cap.max_length_mm}mm for {bar_code} {process}"
    else:
        detail = f"No capability to {process} {bar_code}"
    return CapabilityViolation(outcome.reason or NO_MATCHING_CAPABILITY, detail, violation)


def report_violation(
    trail: AuditTrail,
    exc: CapabilityViolation,
    machine: Machine | None,
    decision: Decision | None = None,
    entity_id: uuid.UUID | None = None,
) -> None:
    """Record an attempted policy breach: security event, audit entry, warning."""
    logger.warning(
        "capability_violation reason=%s machine=%s user=%s %s",
        exc.reason,
        machine.id if machine else None,
        trail.actor.user_id,
        exc.violation,
    )
    name = machine.name if machine else "no machine"
    trail.event(
        "capability_violation",
        "machine",
        machine.id if machine else None,
        f"BLOCKED: {name}: {exc.detail}",
        {**exc.violation, "reason": exc.reason, "machineName": machine.name if machine else None},
    )
    if decision is not None:
        trail.transition(
            decision,
            entity_id,
            reason_code="capability_violation",
            reason_detail=exc.reason,
        )
