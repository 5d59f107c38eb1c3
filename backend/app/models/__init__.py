"""SQLAlchemy ORM models."""

from app.models.event import ShopEvent
from app.models.machine import Machine, MachineCapability
from app.models.machine_run import MachineRun
from app.models.queue_item import QueueItem
from app.models.task import Task
from app.models.transition_log import TransitionLogEntry
from app.models.workflow import Delivery, Lead, LeadGateRecord

__all__ = [
    "Delivery",
    "Lead",
    "LeadGateRecord",
    "Machine",
    "MachineCapability",
    "MachineRun",
    "QueueItem",
    "ShopEvent",
    "Task",
    "TransitionLogEntry",
]
