"""Tests for gated pipeline stages and delivery status transitions."""

import uuid

import pytest

from app.core.errors import GateRequired, NotFoundError, TransitionBlocked, ValidationFailed
from app.models.workflow import Delivery, Lead
from app.services.workflows import WorkflowService


@pytest.fixture
def workflows(db, trail) -> WorkflowService:
    return WorkflowService(db, trail)


async def _lead(db, actor, stage: str = "new") -> Lead:
    lead = Lead(id=uuid.uuid4(), company_id=actor.company_id, title="Warehouse slab", stage=stage)
    db.add(lead)
    await db.flush()
    return lead


async def _delivery(db, actor, status: str = "pending") -> Delivery:
    delivery = Delivery(
        id=uuid.uuid4(), company_id=actor.company_id, delivery_number="DLV-1", status=status
    )
    db.add(delivery)
    await db.flush()
    return delivery


class TestPipelineGates:
    @pytest.mark.asyncio
    async def test_gate_required_then_completed(self, db, actor, workflows, recorder):
        lead = await _lead(db, actor)

        with pytest.raises(GateRequired) as exc_info:
            await workflows.transition_lead(lead.id, "qualified")
        assert exc_info.value.missing == ["qualification"]
        assert exc_info.value.to_payload()["missing"] == ["qualification"]
        assert lead.stage == "new"

        await workflows.record_gate(lead.id, "qualification", {"budget": "confirmed"})
        decision = await workflows.transition_lead(lead.id, "qualified")
        assert decision.result == "gate_completed"
        assert lead.stage == "qualified"

        entries = await recorder.transitions("pipeline_stage")
        assert [(e.result, e.block_reason_code) for e in entries] == [
            ("blocked", "gate_required"),
            ("gate_completed", None),
        ]
        assert entries[0].block_reason_detail == "qualification"

    @pytest.mark.asyncio
    async def test_ungated_stage_is_allowed(self, db, actor, workflows):
        lead = await _lead(db, actor, stage="qualified")
        decision = await workflows.transition_lead(lead.id, "estimation")
        assert decision.result == "allowed"

    @pytest.mark.asyncio
    async def test_gate_for_other_stage_does_not_count(self, db, actor, workflows):
        lead = await _lead(db, actor, stage="estimation")
        await workflows.record_gate(lead.id, "loss")
        with pytest.raises(GateRequired) as exc_info:
            await workflows.transition_lead(lead.id, "quotation_bids")
        assert exc_info.value.missing == ["pricing"]

    @pytest.mark.asyncio
    async def test_structurally_invalid_stage_is_blocked(self, db, actor, workflows, recorder):
        lead = await _lead(db, actor)
        with pytest.raises(TransitionBlocked) as exc_info:
            await workflows.transition_lead(lead.id, "won")
        assert exc_info.value.code == "transition_not_permitted"
        entry = (await recorder.transitions())[0]
        assert entry.result == "blocked"
        assert entry.block_reason_code == "transition_not_permitted"

    @pytest.mark.asyncio
    async def test_unknown_gate_kind(self, db, actor, workflows):
        lead = await _lead(db, actor)
        with pytest.raises(ValidationFailed):
            await workflows.record_gate(lead.id, "vibes")

    @pytest.mark.asyncio
    async def test_other_tenant_lead_is_not_found(self, db, workflows):
        foreign = Lead(id=uuid.uuid4(), company_id=uuid.uuid4(), title="Not ours")
        db.add(foreign)
        await db.flush()
        with pytest.raises(NotFoundError):
            await workflows.transition_lead(foreign.id, "telephonic_enquiries")


class TestDeliveryStatus:
    @pytest.mark.asyncio
    async def test_pending_to_in_transit(self, db, actor, workflows, recorder):
        delivery = await _delivery(db, actor)
        decision = await workflows.transition_delivery(delivery.id, "in-transit")
        assert decision.result == "allowed"
        assert delivery.status == "in-transit"
        assert len(await recorder.events("delivery_status_changed")) == 1

    @pytest.mark.asyncio
    async def test_completed_is_terminal(self, db, actor, workflows):
        delivery = await _delivery(db, actor, status="completed")
        for target in ("pending", "in-transit", "delivered"):
            with pytest.raises(TransitionBlocked):
                await workflows.transition_delivery(delivery.id, target)
        assert delivery.status == "completed"

    @pytest.mark.asyncio
    async def test_unlisted_status_treated_as_pending(self, db, actor, workflows):
        delivery = await _delivery(db, actor, status="draft")
        decision = await workflows.transition_delivery(delivery.id, "scheduled")
        assert decision.from_state == "pending"
        assert delivery.status == "scheduled"

    @pytest.mark.asyncio
    async def test_failed_delivery_can_retry(self, db, actor, workflows):
        delivery = await _delivery(db, actor, status="in-transit")
        await workflows.transition_delivery(delivery.id, "failed")
        await workflows.transition_delivery(delivery.id, "pending")
        assert delivery.status == "pending"
