"""Seed script with demo data for a small rebar fabrication shop.

Scenarios covered:
1. Capability-constrained dispatch across two cutters with different limits
2. Bending work that only the benders may take (spiral maps to bend)
3. A task locked to one machine
4. Lead pipeline gates and delivery status transitions
"""

import uuid
from datetime import datetime, timedelta, timezone

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.machine import Machine, MachineCapability
from app.models.task import Task
from app.models.workflow import Delivery, Lead, LeadGateRecord

# Fixed UUIDs for deterministic seeding
DEMO_COMPANY_ID = uuid.UUID("d0000000-0000-0000-0000-000000000001")

MACHINE_IDS = {
    "CUT-01": uuid.UUID("e0000000-0000-0000-0000-000000000001"),
    "CUT-02": uuid.UUID("e0000000-0000-0000-0000-000000000002"),
    "BEND-01": uuid.UUID("e0000000-0000-0000-0000-000000000003"),
    "BEND-02": uuid.UUID("e0000000-0000-0000-0000-000000000004"),
    "LOAD-01": uuid.UUID("e0000000-0000-0000-0000-000000000005"),
}

# (machine, process) -> {bar_code: (max_bars, max_length_mm)}
CAPABILITY_TABLE: dict[tuple[str, str], dict[str, tuple[int, int | None]]] = {
    ("CUT-01", "cut"): {
        "10M": (50, 12000),
        "15M": (40, 12000),
        "20M": (30, 12000),
        "25M": (20, 12000),
    },
    ("CUT-02", "cut"): {
        "15M": (30, 18000),
        "20M": (25, 18000),
        "25M": (15, 18000),
        "30M": (12, 18000),
        "35M": (8, 18000),
        "45M": (4, 18000),
        "55M": (2, 18000),
    },
    ("BEND-01", "bend"): {
        "10M": (12, None),
        "15M": (10, None),
        "20M": (6, None),
    },
    ("BEND-02", "bend"): {
        "20M": (6, None),
        "25M": (4, None),
        "30M": (3, None),
        "35M": (2, None),
    },
    ("LOAD-01", "load"): {
        code: (200, None) for code in ("10M", "15M", "20M", "25M", "30M", "35M", "45M", "55M")
    },
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _create_machines() -> list[Machine]:
    """Five machines, created one second apart so dispatch order is stable."""
    base = _now() - timedelta(days=30)
    specs = [
        ("CUT-01", "Schnell Robomaster", "cutter"),
        ("CUT-02", "Peddinghaus Shear 60", "cutter"),
        ("BEND-01", "MEP Syntax Line", "bender"),
        ("BEND-02", "KRB Heavy Bender", "bender"),
        ("LOAD-01", "Overhead Crane Bay 1", "loader"),
    ]
    return [
        Machine(
            id=MACHINE_IDS[name],
            company_id=DEMO_COMPANY_ID,
            name=name,
            model=model,
            machine_type=machine_type,
            status="idle",
            created_at=base + timedelta(seconds=i),
            updated_at=base + timedelta(seconds=i),
        )
        for i, (name, model, machine_type) in enumerate(specs)
    ]


def _create_capabilities() -> list[MachineCapability]:
    return [
        MachineCapability(
            machine_id=MACHINE_IDS[machine],
            process=process,
            bar_code=bar_code,
            max_bars=max_bars,
            max_length_mm=max_length_mm,
        )
        for (machine, process), limits in CAPABILITY_TABLE.items()
        for bar_code, (max_bars, max_length_mm) in limits.items()
    ]


def _create_tasks() -> list[Task]:
    project_id = uuid.UUID("f0000000-0000-0000-0000-000000000001")
    specs = [
        ("cut", "10M", 40, 6000, "A1", None),
        ("cut", "10M", 10, 6000, "A2", None),
        ("cut", "20M", 24, 9000, "B1", None),
        ("cut", "35M", 6, 15000, "C1", None),
        ("bend", "15M", 8, None, "A3", None),
        ("spiral", "10M", 10, None, "S1", None),
        ("bend", "25M", 4, None, "D1", MACHINE_IDS["BEND-02"]),
    ]
    return [
        Task(
            company_id=DEMO_COMPANY_ID,
            task_type=task_type,
            bar_code=bar_code,
            grade="400W",
            qty_required=qty,
            cut_length_mm=length,
            mark_number=mark,
            project_id=project_id,
            locked_to_machine_id=locked,
        )
        for task_type, bar_code, qty, length, mark, locked in specs
    ]


def _create_leads() -> tuple[list[Lead], list[LeadGateRecord]]:
    fresh = Lead(id=uuid.uuid4(), company_id=DEMO_COMPANY_ID, title="Parking garage P2 slab")
    vetted = Lead(id=uuid.uuid4(), company_id=DEMO_COMPANY_ID, title="Bridge deck rehab")
    gates = [
        LeadGateRecord(
            company_id=DEMO_COMPANY_ID,
            lead_id=vetted.id,
            gate="qualification",
            payload={"budget": "confirmed", "timeline": "Q3"},
        )
    ]
    return [fresh, vetted], gates


def _create_deliveries() -> list[Delivery]:
    return [
        Delivery(company_id=DEMO_COMPANY_ID, delivery_number="DLV-0001"),
        Delivery(company_id=DEMO_COMPANY_ID, delivery_number="DLV-0002", status="scheduled"),
    ]


async def seed_demo_data(session: AsyncSession) -> dict[str, int]:
    """Seed the database with demo machines, capabilities, tasks and workflows.

    Args:
        session: An async SQLAlchemy session.

    Returns:
        Dictionary with counts of created entities.
    """
    machines = _create_machines()
    session.add_all(machines)
    await session.flush()

    capabilities = _create_capabilities()
    tasks = _create_tasks()
    leads, gates = _create_leads()
    deliveries = _create_deliveries()

    session.add_all(capabilities)
    session.add_all(tasks)
    session.add_all(leads)
    await session.flush()
    session.add_all(gates)
    session.add_all(deliveries)
    await session.flush()

    return {
        "machines": len(machines),
        "machine_capabilities": len(capabilities),
        "production_tasks": len(tasks),
        "leads": len(leads),
        "lead_gate_records": len(gates),
        "deliveries": len(deliveries),
    }


async def seed_if_empty(session: AsyncSession) -> dict[str, int] | None:
    """Seed demo data only if there are no machines yet.

    Returns:
        Seed counts if data was seeded, None if database already has data.
    """
    result = await session.execute(select(func.count(Machine.id)))
    if (result.scalar() or 0) > 0:
        return None
    return await seed_demo_data(session)
