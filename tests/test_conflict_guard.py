"""
Tests for slot conflict detection and the reservation ledger.
"""

from datetime import datetime, time

import pytest
from sqlalchemy import func, select

from conftest import TOMORROW, booking_item
from vet_scheduling.exceptions import SlotConflictException, ValidationException
from vet_scheduling.models import SlotReservation
from vet_scheduling.services import ConflictGuard
from vet_scheduling.utils.config import SchedulingSettings


def at(hour: int, minute: int = 0) -> datetime:
    return datetime.combine(TOMORROW, time(hour, minute))


class TestValidateSlot:
    """Test cases for slot grid enforcement."""

    def test_on_grid_slot_passes(self):
        guard = ConflictGuard()

        guard.validate_slot(at(9, 0))
        guard.validate_slot(at(13, 55))
        guard.validate_slot(at(18, 0))

    @pytest.mark.parametrize("slot_at", [at(9, 32), at(8, 55), at(18, 5)])
    def test_off_grid_slot_rejected(self, slot_at):
        guard = ConflictGuard()

        with pytest.raises(ValidationException) as exc_info:
            guard.validate_slot(slot_at)

        assert "is not a bookable time slot" in exc_info.value.message
        assert exc_info.value.field == "appointment_time"

    def test_off_grid_message_names_item(self):
        guard = ConflictGuard()

        with pytest.raises(ValidationException) as exc_info:
            guard.validate_slot(at(9, 32), item_index=2)

        assert "(item #2)" in exc_info.value.message
        assert exc_info.value.item_index == 2

    def test_enforcement_can_be_disabled(self):
        guard = ConflictGuard(SchedulingSettings(enforce_slot_grid=False))

        guard.validate_slot(at(9, 32))


class TestFindConflict:
    """Test cases for ConflictGuard.find_conflict."""

    @pytest.mark.asyncio
    async def test_free_slot(self, scheduler, session_manager):
        async with session_manager.get_session() as session:
            assert await scheduler.guard.find_conflict(session, at(9, 30)) is None

    @pytest.mark.asyncio
    async def test_appointment_holds_slot(self, scheduler, session_manager, staff):
        await scheduler.create_appointment(booking_item(time="09:30"), staff)

        async with session_manager.get_session() as session:
            held_by = await scheduler.guard.find_conflict(session, at(9, 30))
            neighbour = await scheduler.guard.find_conflict(session, at(9, 35))

        assert held_by == "appointment"
        assert neighbour is None

    @pytest.mark.asyncio
    async def test_group_holds_slot(self, scheduler, session_manager, staff):
        result = await scheduler.create_group([booking_item(time="09:30")], staff)

        async with session_manager.get_session() as session:
            held_by = await scheduler.guard.find_conflict(session, at(9, 30))
            own = await scheduler.guard.find_conflict(
                session, at(9, 30), exclude_group_id=result.group.id
            )

        assert held_by == "group"
        assert own is None

    @pytest.mark.asyncio
    async def test_appointment_excluding_itself(self, scheduler, session_manager, staff):
        result = await scheduler.create_appointment(booking_item(time="09:30"), staff)

        async with session_manager.get_session() as session:
            held_by = await scheduler.guard.find_conflict(
                session, at(9, 30), exclude_appointment_id=result.appointment.id
            )

        assert held_by is None

    @pytest.mark.asyncio
    async def test_draft_holds_slot_for_other_keys(self, scheduler, session_manager, staff):
        await scheduler.save_drafts(
            [booking_item(time="10:00", draft_group_key="G1")], staff
        )

        async with session_manager.get_session() as session:
            other = await scheduler.guard.find_conflict(session, at(10, 0))
            same_key = await scheduler.guard.find_conflict(
                session, at(10, 0), exclude_draft_key="G1"
            )
            ignoring_drafts = await scheduler.guard.find_conflict(
                session, at(10, 0), check_drafts=False
            )

        assert other == "draft"
        assert same_key is None
        assert ignoring_drafts is None

    @pytest.mark.asyncio
    async def test_cancelled_group_does_not_hold_slot(
        self, scheduler, session_manager, owner, staff
    ):
        result = await scheduler.create_group([booking_item(time="09:30")], owner)
        await scheduler.request_group_cancellation(result.added_ids[0], owner)
        await scheduler.confirm_group_cancellation(result.group.id, staff)

        async with session_manager.get_session() as session:
            assert await scheduler.guard.find_conflict(session, at(9, 30)) is None


class TestReservationLedger:
    """Test cases for the unique slot reservation backing every booking."""

    @pytest.mark.asyncio
    async def test_double_booking_rejected(self, scheduler, staff):
        first = await scheduler.create_appointment(booking_item(pet_id=1), staff)

        with pytest.raises(SlotConflictException) as exc_info:
            await scheduler.create_appointment(booking_item(pet_id=3), staff)

        assert exc_info.value.error_code == "SLOT_CONFLICT"
        assert "is already taken" in exc_info.value.message
        unchanged = await scheduler.get_appointment(first.appointment.id)
        assert unchanged.pet_id == 1
        assert unchanged.appointment_at == at(9, 30)

    @pytest.mark.asyncio
    async def test_unique_constraint_backs_the_check(self, scheduler, session_manager, staff):
        """A second reservation for the same minute fails at flush time."""
        result = await scheduler.create_group([booking_item(time="09:30")], staff)

        with pytest.raises(SlotConflictException) as exc_info:
            async with session_manager.transaction_scope("race") as session:
                await scheduler.guard.reserve(session, at(9, 30), group_id=result.group.id + 1)

        assert exc_info.value.details["held_by"] == "reservation"
        async with session_manager.get_session() as session:
            count = await session.scalar(select(func.count()).select_from(SlotReservation))
        assert count == 1

    @pytest.mark.asyncio
    async def test_one_reservation_per_booking(self, scheduler, session_manager, staff):
        await scheduler.create_appointment(booking_item(time="09:30"), staff)
        await scheduler.create_group(
            [booking_item(pet_id=1, time="10:00"), booking_item(pet_id=2, time="10:00")],
            staff,
        )

        async with session_manager.get_session() as session:
            rows = list((await session.execute(select(SlotReservation))).scalars())

        assert sorted(row.slot_at for row in rows) == [at(9, 30), at(10, 0)]
        assert sum(1 for row in rows if row.group_id is not None) == 1
