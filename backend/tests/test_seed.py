"""Tests for demo data seeding."""

import pytest
from sqlalchemy import select

from app.db.seed import DEMO_COMPANY_ID, MACHINE_IDS, seed_demo_data, seed_if_empty
from app.models.machine import Machine
from app.services.capability_registry import CapabilityRegistry


@pytest.mark.asyncio
async def test_seed_counts(db):
    result = await seed_demo_data(db)
    assert result["machines"] == len(MACHINE_IDS)
    assert result["production_tasks"] == 7
    assert result["lead_gate_records"] == 1


@pytest.mark.asyncio
async def test_seed_if_empty_only_once(db):
    assert await seed_if_empty(db) is not None
    await db.commit()
    assert await seed_if_empty(db) is None


@pytest.mark.asyncio
async def test_seeded_machines_ordered_by_creation(db):
    await seed_demo_data(db)
    result = await db.execute(select(Machine.name).order_by(Machine.created_at))
    assert list(result.scalars().all()) == list(MACHINE_IDS)


@pytest.mark.asyncio
async def test_only_heavy_cutter_takes_55m(db):
    await seed_demo_data(db)
    capable = await CapabilityRegistry(db).capable_machines(DEMO_COMPANY_ID, "cut", "55M")
    assert [m.name for m, _ in capable] == ["CUT-02"]
