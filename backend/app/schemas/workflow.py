"""Lead pipeline, delivery and transition log schemas."""

import uuid
from datetime import datetime
from typing import Any, Literal

from pydantic import Field

from app.schemas.base import CamelModel


class LeadStageRequest(CamelModel):
    to_stage: str = Field(..., min_length=1, max_length=50)
    triggered_by: Literal["user", "system", "automation"] = "user"


class GateRecordCreate(CamelModel):
    gate: str = Field(..., min_length=1, max_length=20)
    payload: dict[str, Any] | None = None


class GateRecordResponse(CamelModel):
    id: uuid.UUID
    lead_id: uuid.UUID
    gate: str
    created_at: datetime


class DeliveryStatusRequest(CamelModel):
    to_status: str = Field(..., min_length=1, max_length=30)


class TransitionResponse(CamelModel):
    """Outcome of a permitted business transition."""

    success: bool = True
    entity_id: uuid.UUID
    graph: str
    from_state: str
    to_state: str
    result: str


class TransitionLogResponse(CamelModel):
    id: uuid.UUID
    entity_id: uuid.UUID | None = None
    graph: str
    from_state: str
    to_state: str
    result: str
    block_reason_code: str | None = None
    block_reason_detail: str | None = None
    triggered_by: str
    user_id: uuid.UUID | None = None
    created_at: datetime
