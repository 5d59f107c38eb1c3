"""Dispatch envelope schemas."""

import uuid
from datetime import datetime
from typing import Literal

from pydantic import Field, field_validator, model_validator

from app.schemas.base import CamelModel, parse_required_id

DispatchAction = Literal["dispatch", "start-task", "move-task", "cancel-task", "get-queues"]


class DispatchRequest(CamelModel):
    """Action envelope for the dispatcher."""

    action: DispatchAction
    task_id: uuid.UUID | None = None
    queue_item_id: uuid.UUID | None = None
    target_machine_id: uuid.UUID | None = None
    target_position: int | None = Field(default=None, ge=0)
    machine_id: uuid.UUID | None = None
    project_id: uuid.UUID | None = None
    status: str | None = None

    @field_validator("target_machine_id", "machine_id", mode="before")
    @classmethod
    def _optional_machine_id(cls, value: object) -> object:
        if value is None:
            return None
        return parse_required_id(value, "machineId")

    @model_validator(mode="after")
    def _required_ids(self) -> "DispatchRequest":
        if self.action == "dispatch" and self.task_id is None:
            raise ValueError("taskId is required for dispatch")
        if self.action in ("start-task", "move-task", "cancel-task") and self.queue_item_id is None:
            raise ValueError(f"queueItemId is required for {self.action}")
        return self


class TaskSummary(CamelModel):
    id: uuid.UUID
    task_type: str
    bar_code: str
    grade: str | None = None
    mark_number: str | None = None
    priority: int
    status: str
    qty_required: int
    qty_completed: int
    cut_length_mm: int | None = None
    locked_to_machine_id: uuid.UUID | None = None


class QueueItemView(CamelModel):
    id: uuid.UUID
    task_id: uuid.UUID
    machine_id: uuid.UUID
    project_id: uuid.UUID | None = None
    work_order_id: uuid.UUID | None = None
    position: int
    status: str
    created_at: datetime
    task: TaskSummary | None = None


class DispatchResponse(CamelModel):
    success: bool = True
    action: str
    outcome: Literal["started", "enqueued"] | None = None
    machine_id: uuid.UUID | None = None
    machine_run_id: uuid.UUID | None = None
    queue_item_id: uuid.UUID | None = None
    queue_items: list[QueueItemView] | None = None
