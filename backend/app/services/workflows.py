"""Business workflows guarded by the transition engine: lead pipeline and deliveries."""

import logging
import uuid
from collections.abc import Iterable
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import GateRequired, NotFoundError, TransitionBlocked, ValidationFailed
from app.models.workflow import GATE_KINDS, Delivery, Lead, LeadGateRecord
from app.services.audit import AuditTrail
from app.services.transition_guard import (
    DELIVERY_STATUS,
    GATE_REQUIRED,
    PIPELINE_STAGE,
    Decision,
    apply,
)

logger = logging.getLogger(__name__)


class WorkflowService:
    def __init__(self, db: AsyncSession, trail: AuditTrail) -> None:
        self.db = db
        self.trail = trail
        self.actor = trail.actor

    async def transition_lead(self, lead_id: uuid.UUID, to_stage: str) -> Decision:
        """Move a lead to ``to_stage``, enforcing any gate on the target stage.

        Returns the decision (``allowed`` or ``gate_completed``). Raises
        ``GateRequired`` while a gate record is missing and
        ``TransitionBlocked`` when the pipeline graph has no such edge.
        """
        lead = await self._load_lead(lead_id)

        async def missing_gates(required: tuple[str, ...]) -> Iterable[str]:
            result = await self.db.execute(
                select(LeadGateRecord.gate)
                .where(LeadGateRecord.lead_id == lead.id, LeadGateRecord.gate.in_(required))
                .distinct()
            )
            present = set(result.scalars().all())
            return [gate for gate in required if gate not in present]

        decision = await apply(PIPELINE_STAGE, lead.stage, to_stage, missing_gates)
        self.trail.transition(decision, lead.id)
        if decision.result == GATE_REQUIRED:
            logger.info("Lead %s -> %s waiting on %s", lead.id, to_stage, decision.missing)
            raise GateRequired(list(decision.missing), f"Record {', '.join(decision.missing)} first")
        if not decision.permitted:
            raise TransitionBlocked(decision.reason, decision.from_state, to_stage, PIPELINE_STAGE.name)

        lead.stage = to_stage
        await self.db.flush()
        self.trail.event(
            "lead_stage_changed",
            "lead",
            lead.id,
            f"{lead.title}: {decision.from_state} -> {to_stage}",
            {"from": decision.from_state, "to": to_stage, "result": decision.result},
        )
        return decision

    async def record_gate(
        self, lead_id: uuid.UUID, gate: str, payload: dict[str, Any] | None = None
    ) -> LeadGateRecord:
        if gate not in GATE_KINDS:
            raise ValidationFailed("invalid_gate", f"Gate must be one of: {', '.join(GATE_KINDS)}")
        lead = await self._load_lead(lead_id)
        record = LeadGateRecord(
            id=uuid.uuid4(),
            company_id=lead.company_id,
            lead_id=lead.id,
            gate=gate,
            payload=payload,
            created_by=self.actor.user_id,
        )
        self.db.add(record)
        await self.db.flush()
        return record

    async def transition_delivery(self, delivery_id: uuid.UUID, to_status: str) -> Decision:
        delivery = await self.db.get(Delivery, delivery_id)
        if delivery is None or delivery.company_id != self.actor.company_id:
            raise NotFoundError("delivery_not_found", f"Delivery {delivery_id} not found")

        decision = await apply(DELIVERY_STATUS, delivery.status, to_status)
        self.trail.transition(decision, delivery.id)
        if not decision.permitted:
            raise TransitionBlocked(
                decision.reason, decision.from_state, to_status, DELIVERY_STATUS.name
            )

        delivery.status = to_status
        await self.db.flush()
        self.trail.event(
            "delivery_status_changed",
            "delivery",
            delivery.id,
            f"Delivery {delivery.delivery_number}: {decision.from_state} -> {to_status}",
            {"from": decision.from_state, "to": to_status},
        )
        return decision

    async def _load_lead(self, lead_id: uuid.UUID) -> Lead:
        lead = await self.db.get(Lead, lead_id)
        if lead is None or lead.company_id != self.actor.company_id:
            raise NotFoundError("lead_not_found", f"Lead {lead_id} not found")
        return lead
