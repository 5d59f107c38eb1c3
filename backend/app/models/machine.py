"""Machine and MachineCapability SQLAlchemy models."""

import uuid
from datetime import datetime

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base, utcnow

MACHINE_TYPES = ("cutter", "bender", "loader", "other")
MACHINE_STATUSES = ("idle", "running", "paused", "blocked", "down")


class Machine(Base):
    """A physical fabrication machine on the shop floor."""

    __tablename__ = "machines"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    company_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    warehouse_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    model: Mapped[str | None] = mapped_column(String(100), nullable=True)
    machine_type: Mapped[str] = mapped_column(
        String(20), nullable=False, server_default="other", comment="cutter, bender, loader, other"
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="idle", server_default="idle"
    )
    # Active run; kept FK-less because machine_runs.machine_id points back here
    current_run_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    current_operator_profile_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    last_event_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False,
    )

    __mapper_args__ = {"version_id_col": version}


class MachineCapability(Base):
    """What a machine may legally process: one (bar code, process) limit row."""

    __tablename__ = "machine_capabilities"
    __table_args__ = (
        UniqueConstraint("machine_id", "bar_code", "process", name="uq_machine_capability"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    machine_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("machines.id", ondelete="CASCADE"),
        nullable=False,
    )
    bar_code: Mapped[str] = mapped_column(
        String(10), nullable=False, comment="RSIC bar size, e.g. 10M"
    )
    process: Mapped[str] = mapped_column(String(20), nullable=False)
    max_bars: Mapped[int] = mapped_column(
        Integer, nullable=False, comment="Max quantity per batch"
    )
    max_length_mm: Mapped[int | None] = mapped_column(Integer, nullable=True)
