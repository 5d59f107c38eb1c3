"""Machine, capability and run schemas."""

import uuid
from datetime import datetime
from typing import Literal

from pydantic import Field, field_validator, model_validator

from app.schemas.base import CamelModel, parse_required_id

MachineAction = Literal[
    "update-status",
    "assign-operator",
    "start-run",
    "start-queued-run",
    "resume-run",
    "pause-run",
    "block-run",
    "complete-run",
]


class MachineActionRequest(CamelModel):
    """Action envelope for machine management."""

    action: MachineAction
    machine_id: uuid.UUID
    status: str | None = None
    operator_profile_id: uuid.UUID | None = None
    process: str | None = None
    work_order_id: uuid.UUID | None = None
    notes: str | None = Field(default=None, max_length=2000)
    output_qty: int | None = Field(default=None, ge=0)
    scrap_qty: int | None = Field(default=None, ge=0)
    bar_code: str | None = None
    qty: int | None = Field(default=None, ge=0)
    length_mm: int | None = Field(default=None, gt=0)
    run_id: uuid.UUID | None = None
    queue_item_id: uuid.UUID | None = None

    @field_validator("machine_id", mode="before")
    @classmethod
    def _machine_id(cls, value: object) -> uuid.UUID:
        return parse_required_id(value, "machineId")

    @model_validator(mode="after")
    def _action_fields(self) -> "MachineActionRequest":
        if self.action == "update-status" and not self.status:
            raise ValueError("status is required for update-status")
        if self.action == "start-run" and (not self.process or self.qty is None):
            raise ValueError("process and qty are required for start-run")
        if self.action == "start-queued-run" and self.queue_item_id is None:
            raise ValueError("queueItemId is required for start-queued-run")
        return self


class MachineActionResponse(CamelModel):
    success: bool = True
    machine_id: uuid.UUID
    action: str
    machine_run_id: uuid.UUID | None = None
    next_run_id: uuid.UUID | None = None
    status: str | None = None


class MachineResponse(CamelModel):
    id: uuid.UUID
    name: str
    model: str | None = None
    machine_type: str
    status: str
    warehouse_id: uuid.UUID | None = None
    current_run_id: uuid.UUID | None = None
    current_operator_profile_id: uuid.UUID | None = None
    last_event_at: datetime | None = None
    queued_count: int = 0


class CapabilityResponse(CamelModel):
    id: uuid.UUID
    machine_id: uuid.UUID
    bar_code: str
    process: str
    max_bars: int
    max_length_mm: int | None = None


class MachineRunResponse(CamelModel):
    id: uuid.UUID
    machine_id: uuid.UUID
    task_id: uuid.UUID | None = None
    process: str
    bar_code: str | None = None
    status: str
    started_at: datetime
    ended_at: datetime | None = None
    input_qty: int | None = None
    output_qty: int | None = None
    scrap_qty: int | None = None
    notes: str | None = None
