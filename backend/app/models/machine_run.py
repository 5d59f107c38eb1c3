"""MachineRun SQLAlchemy model."""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, Uuid, func, text
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base, utcnow

RUN_PROCESSES = ("cut", "bend", "load", "pickup", "delivery", "clearance", "other")
ACTIVE_RUN_STATUSES = ("running", "paused", "blocked")

_ACTIVE = text("status IN ('running', 'paused', 'blocked')")


class MachineRun(Base):
    """Lifecycle record of one machine executing one process instance."""

    __tablename__ = "machine_runs"
    __table_args__ = (
        # At most one active run per machine
        Index(
            "uq_machine_runs_active",
            "machine_id",
            unique=True,
            postgresql_where=_ACTIVE,
            sqlite_where=_ACTIVE,
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    company_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    machine_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("machines.id", ondelete="CASCADE"), nullable=False
    )
    task_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("production_tasks.id", ondelete="SET NULL"), nullable=True
    )
    process: Mapped[str] = mapped_column(String(20), nullable=False)
    bar_code: Mapped[str | None] = mapped_column(String(10), nullable=True)
    work_order_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    operator_profile_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    supervisor_profile_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    input_qty: Mapped[int | None] = mapped_column(Integer, nullable=True)
    output_qty: Mapped[int | None] = mapped_column(Integer, nullable=True)
    scrap_qty: Mapped[int | None] = mapped_column(Integer, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
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

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_RUN_STATUSES
