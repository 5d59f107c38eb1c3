"""Task (production task) SQLAlchemy model."""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, Integer, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base, utcnow

TASK_TYPES = ("cut", "bend", "spiral", "load", "other")
TASK_STATUSES = ("pending", "queued", "running", "done")

# Machine process that executes each task type
TASK_PROCESS = {"cut": "cut", "bend": "bend", "spiral": "bend", "load": "load", "other": "other"}


class Task(Base):
    """A unit of fabrication work created by the order/estimation flow."""

    __tablename__ = "production_tasks"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    company_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    task_type: Mapped[str] = mapped_column(String(20), nullable=False)
    bar_code: Mapped[str] = mapped_column(String(10), nullable=False)
    grade: Mapped[str | None] = mapped_column(String(20), nullable=True)
    setup_key: Mapped[str | None] = mapped_column(String(100), nullable=True)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=5, server_default="5")
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="pending", server_default="pending"
    )
    qty_required: Mapped[int] = mapped_column(Integer, nullable=False)
    qty_completed: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )
    cut_length_mm: Mapped[int | None] = mapped_column(Integer, nullable=True)
    mark_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    drawing_ref: Mapped[str | None] = mapped_column(String(100), nullable=True)
    project_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    work_order_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    barlist_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    locked_to_machine_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, nullable=True, comment="Dispatch only to this machine when set"
    )
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
    def process(self) -> str:
        return TASK_PROCESS.get(self.task_type, "other")

    @property
    def qty_remaining(self) -> int:
        return max(self.qty_required - self.qty_completed, 0)
