"""QueueItem SQLAlchemy model."""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Uuid, func, text
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base, utcnow

QUEUE_STATUSES = ("queued", "started", "cancelled")

_NOT_CANCELLED = text("status <> 'cancelled'")
_QUEUED = text("status = 'queued'")


class QueueItem(Base):
    """A task waiting on a specific machine at an ordering position."""

    __tablename__ = "machine_queue_items"
    __table_args__ = (
        Index(
            "uq_queue_machine_position",
            "machine_id",
            "position",
            unique=True,
            postgresql_where=_NOT_CANCELLED,
            sqlite_where=_NOT_CANCELLED,
        ),
        Index(
            "uq_queue_task_active",
            "task_id",
            unique=True,
            postgresql_where=_QUEUED,
            sqlite_where=_QUEUED,
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    company_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    task_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("production_tasks.id", ondelete="CASCADE"), nullable=False
    )
    machine_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("machines.id", ondelete="CASCADE"), nullable=False
    )
    project_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    work_order_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="queued", server_default="queued"
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
