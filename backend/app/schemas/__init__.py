"""Pydantic v2 schemas for request/response validation."""

from app.schemas.dispatch import DispatchRequest, DispatchResponse, QueueItemView, TaskSummary
from app.schemas.machine import (
    CapabilityResponse,
    MachineActionRequest,
    MachineActionResponse,
    MachineResponse,
    MachineRunResponse,
)
from app.schemas.workflow import (
    DeliveryStatusRequest,
    GateRecordCreate,
    GateRecordResponse,
    LeadStageRequest,
    TransitionLogResponse,
    TransitionResponse,
)

__all__ = [
    "CapabilityResponse",
    "DeliveryStatusRequest",
    "DispatchRequest",
    "DispatchResponse",
    "GateRecordCreate",
    "GateRecordResponse",
    "LeadStageRequest",
    "MachineActionRequest",
    "MachineActionResponse",
    "MachineResponse",
    "MachineRunResponse",
    "QueueItemView",
    "TaskSummary",
    "TransitionLogResponse",
    "TransitionResponse",
]
