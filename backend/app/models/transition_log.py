"""TransitionLogEntry SQLAlchemy model (append-only audit log)."""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, String, Text, Uuid, event, func
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base, utcnow


class TransitionLogEntry(Base):
    """One guarded transition attempt and its outcome."""

    __tablename__ = "transition_log"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    company_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True, index=True)
    entity_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True, index=True)
    graph: Mapped[str] = mapped_column(
        String(50), nullable=False, comment="pipeline_stage, delivery_status, machine_run, ..."
    )
    from_state: Mapped[str] = mapped_column(String(50), nullable=False)
    to_state: Mapped[str] = mapped_column(String(50), nullable=False)
    result: Mapped[str] = mapped_column(String(20), nullable=False)
    block_reason_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    block_reason_detail: Mapped[str | None] = mapped_column(Text, nullable=True)
    triggered_by: Mapped[str] = mapped_column(
        String(50), nullable=False, default="user", server_default="user"
    )
    user_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )


@event.listens_for(TransitionLogEntry, "before_update")
def _refuse_update(mapper, connection, target) -> None:
    raise RuntimeError("transition_log entries are immutable")


@event.listens_for(TransitionLogEntry, "before_delete")
def _refuse_delete(mapper, connection, target) -> None:
    raise RuntimeError("transition_log entries are immutable")
