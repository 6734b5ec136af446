"""
Tests for the daily slot grid.
"""

from datetime import timedelta

import pytest

from conftest import TODAY, TOMORROW, booking_item


class TestSlotGrid:
    """Test cases for SlotGrid.availability."""

    @pytest.mark.asyncio
    async def test_full_day_grid(self, scheduler):
        """A clinic day runs 09:00-18:00 inclusive in 5 minute steps."""
        day = await scheduler.availability(TOMORROW)

        assert len(day.slots) == 109
        assert day.slots[0].time == "09:00"
        assert day.slots[0].label == "09:00 AM"
        assert day.slots[-1].time == "18:00"
        assert day.slots[-1].label == "06:00 PM"
        assert all(slot.available for slot in day.slots)

    @pytest.mark.asyncio
    async def test_slots_are_ascending(self, scheduler):
        day = await scheduler.availability(TOMORROW)

        times = [slot.time for slot in day.slots]
        assert times == sorted(times)
        assert len(set(times)) == len(times)

    @pytest.mark.asyncio
    async def test_past_slots_today_unavailable(self, scheduler):
        """Slots at or before the current time are not bookable today."""
        day = await scheduler.availability(TODAY)

        assert "09:00" in day.taken_times
        assert "10:00" in day.taken_times
        assert "10:05" in day.available_times
        assert len(day.available_times) == 109 - 13

    @pytest.mark.asyncio
    async def test_past_day_has_no_past_filter(self, scheduler):
        """Only today's grid is filtered by the clock."""
        day = await scheduler.availability(TODAY - timedelta(days=1))

        assert len(day.available_times) == 109

    @pytest.mark.asyncio
    async def test_booked_slot_is_taken(self, scheduler, staff):
        await scheduler.create_appointment(booking_item(time="09:30"), staff)

        day = await scheduler.availability(TOMORROW)

        assert day.taken_times == ["09:30"]
        assert "09:25" in day.available_times
        assert "09:35" in day.available_times

    @pytest.mark.asyncio
    async def test_group_slot_is_taken(self, scheduler, staff):
        await scheduler.create_group(
            [booking_item(pet_id=1), booking_item(pet_id=3)], staff
        )

        day = await scheduler.availability(TOMORROW)

        assert day.taken_times == ["09:30"]

    @pytest.mark.asyncio
    async def test_cancelled_group_frees_slot(self, scheduler, owner, staff):
        result = await scheduler.create_group([booking_item(pet_id=1)], owner)
        appointment_id = result.added_ids[0]

        await scheduler.request_group_cancellation(appointment_id, owner)
        await scheduler.confirm_group_cancellation(result.group.id, staff)

        day = await scheduler.availability(TOMORROW)
        assert "09:30" in day.available_times

    @pytest.mark.asyncio
    async def test_other_days_unaffected(self, scheduler, staff):
        await scheduler.create_appointment(booking_item(time="09:30"), staff)

        day = await scheduler.availability(TOMORROW + timedelta(days=1))

        assert day.taken_times == []

    @pytest.mark.asyncio
    async def test_drafts_only_shown_when_requested(self, scheduler, staff):
        await scheduler.save_drafts([booking_item(time="11:00")], staff)

        public = await scheduler.availability(TOMORROW)
        staff_view = await scheduler.availability(TOMORROW, include_drafts=True)

        assert "11:00" in public.available_times
        assert "11:00" in staff_view.taken_times

    @pytest.mark.asyncio
    async def test_explicit_now_overrides_clock(self, scheduler, clock):
        day = await scheduler.availability(TODAY, now=clock() + timedelta(hours=7))

        assert day.available_times[0] == "17:05"
        assert len(day.available_times) == 12
