"""Best-effort audit sink for transition log entries and shop events.

Writes happen outside the request transaction: callers ``emit`` rows into a
bounded in-memory buffer and a background task persists them in batches
through its own database session. When the buffer is full the oldest
pending row is dropped and counted. A failed write is logged and discarded;
it never reaches the caller and never rolls back the transition that
produced it.
"""

import asyncio
import logging
import uuid
from collections import deque
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.auth import Actor
from app.models.event import ShopEvent
from app.models.transition_log import TransitionLogEntry
from app.services.transition_guard import GATE_REQUIRED, Decision

logger = logging.getLogger(__name__)

AuditRow = TransitionLogEntry | ShopEvent
AuditWriter = Callable[[Sequence[AuditRow]], Awaitable[None]]


def session_writer(session_factory: async_sessionmaker[AsyncSession]) -> AuditWriter:
    """Writer that persists a batch in a fresh session of its own."""

    async def _write(batch: Sequence[AuditRow]) -> None:
        async with session_factory() as session:
            session.add_all(batch)
            await session.commit()

    return _write


class AuditSink:
    """Bounded drop-oldest buffer drained by a background writer task."""

    def __init__(
        self,
        writer: AuditWriter,
        max_pending: int = 10_000,
        batch_size: int = 200,
    ) -> None:
        self._writer = writer
        self._pending: deque[AuditRow] = deque()
        self._max_pending = max_pending
        self._batch_size = batch_size
        self._wakeup = asyncio.Event()
        self._task: asyncio.Task | None = None
        self._flush_lock = asyncio.Lock()
        self.dropped = 0
        self.written = 0
        self.failed = 0

    @property
    def pending(self) -> int:
        return len(self._pending)

    def emit(self, row: AuditRow) -> None:
        """Queue a row for persistence. Never blocks, never raises."""
        if len(self._pending) >= self._max_pending:
            self._pending.popleft()
            self.dropped += 1
            logger.warning("Audit buffer full (%d), dropped oldest row", self._max_pending)
        self._pending.append(row)
        self._wakeup.set()

    async def flush(self) -> None:
        """Persist everything currently buffered."""
        async with self._flush_lock:
            while self._pending:
                batch = [
                    self._pending.popleft()
                    for _ in range(min(self._batch_size, len(self._pending)))
                ]
                try:
                    await self._writer(batch)
                    self.written += len(batch)
                except Exception:
                    self.failed += len(batch)
                    logger.exception("Audit write failed, %d rows discarded", len(batch))

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name="audit-sink")

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        await self.flush()

    async def _run(self) -> None:
        while True:
            await self._wakeup.wait()
            self._wakeup.clear()
            await self.flush()

    def stats(self) -> dict[str, int]:
        return {
            "pending": self.pending,
            "dropped": self.dropped,
            "written": self.written,
            "failed": self.failed,
        }


class AuditTrail:
    """Builds audit rows for one actor and hands them to the sink."""

    def __init__(self, sink: AuditSink, actor: Actor, triggered_by: str = "user") -> None:
        self.sink = sink
        self.actor = actor
        self.triggered_by = triggered_by

    def transition(
        self,
        decision: Decision,
        entity_id: uuid.UUID | None,
        reason_code: str | None = None,
        reason_detail: str | None = None,
    ) -> TransitionLogEntry:
        """Record a guard decision.

        ``gate_required`` is stored as ``blocked`` with the missing gates as
        detail. An explicit ``reason_code`` marks a permitted transition that
        was refused later (capability, conflict).
        """
        if reason_code is not None:
            result = "blocked"
        elif decision.result == GATE_REQUIRED:
            result = "blocked"
            reason_code = GATE_REQUIRED
            reason_detail = reason_detail or ",".join(decision.missing)
        else:
            result = decision.result
            reason_code = decision.reason
        entry = TransitionLogEntry(
            company_id=self.actor.company_id,
            entity_id=entity_id,
            graph=decision.graph,
            from_state=decision.from_state,
            to_state=decision.to_state,
            result=result,
            block_reason_code=reason_code,
            block_reason_detail=reason_detail,
            triggered_by=self.triggered_by,
            user_id=self.actor.user_id,
        )
        self.sink.emit(entry)
        return entry

    def event(
        self,
        event_type: str,
        entity_type: str,
        entity_id: uuid.UUID | None,
        description: str,
        metadata: dict[str, Any] | None = None,
    ) -> ShopEvent:
        row = ShopEvent(
            company_id=self.actor.company_id,
            entity_type=entity_type,
            entity_id=entity_id,
            event_type=event_type,
            actor_id=self.actor.user_id,
            actor_type="user" if self.triggered_by == "user" else "system",
            description=description,
            event_metadata=_jsonable(metadata or {}),
        )
        self.sink.emit(row)
        return row


def _jsonable(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, uuid.UUID):
        return str(value)
    return value


def get_audit_sink(request: Request) -> AuditSink:
    """FastAPI dependency that returns the sink from app.state."""
    sink: AuditSink | None = getattr(request.app.state, "audit_sink", None)
    if sink is None:
        raise RuntimeError("Audit sink not initialized.")
    return sink
