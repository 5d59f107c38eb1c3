"""Tests for per-machine queue ordering."""

import uuid

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from app.core.errors import CapabilityViolation, ConflictError, ValidationFailed
from app.models.queue_item import QueueItem
from app.services.queue_manager import QUEUE_ASSIGNMENT, QueueManager
from app.services.transition_guard import BLOCKED, Decision


async def _positions(db, machine_id) -> list[tuple[int, str]]:
    result = await db.execute(
        select(QueueItem.position, QueueItem.status)
        .where(QueueItem.machine_id == machine_id, QueueItem.status != "cancelled")
        .order_by(QueueItem.position)
    )
    return [(row[0], row[1]) for row in result.all()]


class TestEnqueue:
    @pytest.mark.asyncio
    async def test_tail_positions_start_at_zero(self, db, shop, trail, recorder):
        machine = await shop.machine()
        queues = QueueManager(db, trail)
        items = [await queues.enqueue(await shop.task(), machine) for _ in range(3)]

        assert [i.position for i in items] == [0, 1, 2]
        assert len(await recorder.events("task_dispatched")) == 3

    @pytest.mark.asyncio
    async def test_explicit_occupied_position_shifts_later_items(self, db, shop, trail):
        machine = await shop.machine()
        queues = QueueManager(db, trail)
        first = await queues.enqueue(await shop.task(), machine)
        second = await queues.enqueue(await shop.task(), machine)
        wedged = await queues.enqueue(await shop.task(), machine, position=0)

        assert (wedged.position, first.position, second.position) == (0, 1, 2)
        positions = [p for p, _ in await _positions(db, machine.id)]
        assert positions == sorted(set(positions))

    @pytest.mark.asyncio
    async def test_free_gap_position_is_taken_as_is(self, db, shop, trail):
        machine = await shop.machine()
        queues = QueueManager(db, trail)
        first = await queues.enqueue(await shop.task(), machine)
        far = await queues.enqueue(await shop.task(), machine, position=10)
        assert (first.position, far.position) == (0, 10)
        tail = await queues.enqueue(await shop.task(), machine)
        assert tail.position == 11

    @pytest.mark.asyncio
    async def test_task_cannot_be_queued_twice(self, db, shop, trail, recorder):
        machine = await shop.machine()
        task = await shop.task()
        queues = QueueManager(db, trail)
        await queues.enqueue(task, machine)
        task.status = "pending"
        with pytest.raises(ConflictError) as exc_info:
            await queues.enqueue(task, machine)
        assert exc_info.value.code == "task_already_queued"

        [entry] = await recorder.transitions(QUEUE_ASSIGNMENT)
        assert (entry.result, entry.block_reason_code) == ("blocked", "task_already_queued")
        assert entry.entity_id == task.id

    @pytest.mark.asyncio
    async def test_done_task_rejected_and_logged(self, db, shop, trail, recorder):
        machine = await shop.machine()
        task = await shop.task(status="done")
        with pytest.raises(ConflictError) as exc_info:
            await QueueManager(db, trail).enqueue(task, machine)
        assert exc_info.value.code == "task_already_done"
        [entry] = await recorder.transitions(QUEUE_ASSIGNMENT)
        assert entry.block_reason_code == "task_already_done"

    @pytest.mark.asyncio
    async def test_negative_position_rejected(self, db, shop, trail):
        machine = await shop.machine()
        with pytest.raises(ValidationFailed):
            await QueueManager(db, trail).enqueue(await shop.task(), machine, position=-1)


class TestPopAndCancel:
    @pytest.mark.asyncio
    async def test_pop_next_returns_lowest_position(self, db, shop, trail):
        machine = await shop.machine()
        queues = QueueManager(db, trail)
        later = await queues.enqueue(await shop.task(), machine, position=5)
        sooner = await queues.enqueue(await shop.task(), machine, position=2)
        assert (await queues.pop_next(machine.id)).id == sooner.id
        await queues.cancel(sooner.id)
        assert (await queues.pop_next(machine.id)).id == later.id

    @pytest.mark.asyncio
    async def test_pop_next_on_empty_queue(self, db, shop, trail):
        machine = await shop.machine()
        assert await QueueManager(db, trail).pop_next(machine.id) is None

    @pytest.mark.asyncio
    async def test_cancel_returns_task_to_pending(self, db, shop, trail):
        machine = await shop.machine()
        task = await shop.task()
        queues = QueueManager(db, trail)
        item = await queues.enqueue(task, machine)
        await queues.cancel(item.id)
        assert item.status == "cancelled"
        assert task.status == "pending"
        # a cancelled slot is free again
        again = await queues.enqueue(task, machine)
        assert again.position == 0


class TestMove:
    @pytest.mark.asyncio
    async def test_reorder_within_machine(self, db, shop, trail):
        machine = await shop.machine()
        queues = QueueManager(db, trail)
        a, b, c = [await queues.enqueue(await shop.task(), machine) for _ in range(3)]

        await queues.move(c.id, target_position=0)
        assert (c.position, a.position, b.position) == (0, 1, 2)

    @pytest.mark.asyncio
    async def test_identical_replay_is_noop(self, db, shop, trail, recorder):
        machine = await shop.machine()
        queues = QueueManager(db, trail)
        a = await queues.enqueue(await shop.task(), machine)
        b = await queues.enqueue(await shop.task(), machine)

        await queues.move(b.id, target_position=0)
        await queues.move(b.id, target_position=0)
        assert (b.position, a.position) == (0, 1)
        assert len(await recorder.events("task_rerouted")) == 1

    @pytest.mark.asyncio
    async def test_cross_machine_move_to_capable_target(self, db, shop, trail):
        source = await shop.machine(capabilities=[("cut", "10M", 50, None)])
        target = await shop.machine(capabilities=[("cut", "10M", 20, None)])
        queues = QueueManager(db, trail)
        item = await queues.enqueue(await shop.task(qty_required=15), source)

        await queues.move(item.id, target_machine_id=target.id)
        assert item.machine_id == target.id
        assert item.position == 0

    @pytest.mark.asyncio
    async def test_move_to_incapable_machine_leaves_item_in_place(self, db, shop, trail, recorder):
        source = await shop.machine(capabilities=[("cut", "10M", 50, None)])
        bender = await shop.machine(capabilities=[("bend", "10M", 12, None)], machine_type="bender")
        queues = QueueManager(db, trail)
        await queues.enqueue(await shop.task(), source)
        item = await queues.enqueue(await shop.task(), source)

        with pytest.raises(CapabilityViolation) as exc_info:
            await queues.move(item.id, target_machine_id=bender.id, target_position=0)

        assert exc_info.value.reason == "no_matching_capability"
        assert (item.machine_id, item.position, item.status) == (source.id, 1, "queued")
        assert await _positions(db, bender.id) == []
        assert len(await recorder.events("capability_violation")) == 1
        entry = (await recorder.transitions("queue_assignment"))[0]
        assert entry.result == "blocked"

    @pytest.mark.asyncio
    async def test_only_queued_items_move(self, db, shop, trail, recorder):
        machine = await shop.machine()
        queues = QueueManager(db, trail)
        item = await queues.enqueue(await shop.task(), machine)
        await queues.cancel(item.id)
        with pytest.raises(ConflictError) as exc_info:
            await queues.move(item.id, target_position=3)
        assert exc_info.value.code == "queue_item_not_queued"
        with pytest.raises(ConflictError):
            await queues.cancel(item.id)

        entries = await recorder.transitions(QUEUE_ASSIGNMENT)
        assert [e.block_reason_code for e in entries] == ["queue_item_not_queued"] * 2
        assert all(e.entity_id == item.id and e.result == "blocked" for e in entries)

    @pytest.mark.asyncio
    async def test_mixed_operations_keep_positions_distinct(self, db, shop, trail):
        m1 = await shop.machine(capabilities=[("cut", "10M", 50, None)])
        m2 = await shop.machine(capabilities=[("cut", "10M", 50, None)])
        queues = QueueManager(db, trail)
        items = [await queues.enqueue(await shop.task(), m1) for _ in range(4)]
        await queues.enqueue(await shop.task(), m1, position=1)
        await queues.enqueue(await shop.task(), m2)
        await queues.move(items[3].id, target_position=0)
        await queues.cancel(items[1].id)
        await queues.enqueue(await shop.task(), m1, position=2)
        await queues.move(items[0].id, target_machine_id=m2.id, target_position=0)
        await queues.move(items[2].id, target_position=1)
        await db.commit()

        for machine in (m1, m2):
            positions = [p for p, _ in await _positions(db, machine.id)]
            assert len(positions) == len(set(positions))
            assert all(p >= 0 for p in positions)
        assert len(await _positions(db, m1.id)) == 4
        assert len(await _positions(db, m2.id)) == 2


class TestSnapshot:
    @pytest.mark.asyncio
    async def test_snapshot_joins_tasks_and_filters(self, db, shop, trail):
        m1 = await shop.machine()
        m2 = await shop.machine()
        queues = QueueManager(db, trail)
        await queues.enqueue(await shop.task(mark_number="A1"), m1)
        await queues.enqueue(await shop.task(mark_number="B1"), m2)
        cancelled = await queues.enqueue(await shop.task(mark_number="C1"), m1)
        await queues.cancel(cancelled.id)

        rows = await queues.snapshot(machine_id=m1.id)
        assert [task.mark_number for _, task in rows] == ["A1"]
        assert len(await queues.snapshot()) == 2


class TestFlushErrors:
    @pytest.mark.asyncio
    async def test_integrity_error_becomes_queue_conflict(self, mock_db, trail, recorder):
        mock_db.flush.side_effect = IntegrityError("INSERT", {}, Exception("duplicate position"))
        entity_id = uuid.uuid4()
        decision = Decision(QUEUE_ASSIGNMENT, "pending", "machine", BLOCKED)
        with pytest.raises(ConflictError) as exc_info:
            await QueueManager(mock_db, trail)._flush(decision, entity_id)
        assert exc_info.value.code == "queue_conflict"
        [entry] = await recorder.transitions(QUEUE_ASSIGNMENT)
        assert (entry.entity_id, entry.block_reason_code) == (entity_id, "queue_conflict")

    @pytest.mark.asyncio
    async def test_duplicate_live_position_rejected_by_database(self, db, shop, trail, recorder):
        machine = await shop.machine()
        queues = QueueManager(db, trail)
        first = await queues.enqueue(await shop.task(), machine)
        task = await shop.task()
        clash = QueueItem(
            company_id=task.company_id,
            task_id=task.id,
            machine_id=machine.id,
            position=first.position,
            status="queued",
        )
        db.add(clash)
        decision = Decision(QUEUE_ASSIGNMENT, "pending", str(machine.id), BLOCKED)

        with pytest.raises(ConflictError) as exc_info:
            await queues._flush(decision, task.id)

        assert exc_info.value.code == "queue_conflict"
        [entry] = await recorder.transitions(QUEUE_ASSIGNMENT)
        assert (entry.entity_id, entry.result) == (task.id, "blocked")

    @pytest.mark.asyncio
    async def test_cancelled_item_does_not_hold_its_position(self, db, shop, trail):
        machine = await shop.machine()
        queues = QueueManager(db, trail)
        first = await queues.enqueue(await shop.task(), machine)
        first.status = "cancelled"
        await db.flush()
        task = await shop.task()
        db.add(
            QueueItem(
                company_id=task.company_id,
                task_id=task.id,
                machine_id=machine.id,
                position=first.position,
                status="queued",
            )
        )
        await queues._flush(Decision(QUEUE_ASSIGNMENT, "pending", "m", BLOCKED), task.id)
        assert await _positions(db, machine.id) == [(0, "queued")]
