"""
Daily slot grid.

Generates every bookable tick of a clinic day and marks the ones that are
taken or already in the past.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Optional, Set

from sqlalchemy import select

from ..models import Appointment, AppointmentDraft, AppointmentStatus, SlotReservation
from ..schemas import DayAvailability, TimeSlot
from ..utils.datetime_utils import format_time_of_day, iter_day_slots, parse_time_of_day
from .base import BaseService

logger = logging.getLogger(__name__)


class SlotGrid(BaseService):
    """Read-only availability view over the booking tables."""

    async def availability(
        self,
        day: date,
        now: Optional[datetime] = None,
        include_drafts: bool = False,
    ) -> DayAvailability:
        """
        Build the slot grid for ``day``.

        A slot is unavailable when a non-cancelled appointment or a slot
        reservation sits on that exact minute, or when ``day`` is today and
        the slot is at or before the current time. With ``include_drafts``
        the timestamps of staged drafts are also shown as taken.

        Args:
            day: Calendar day to inspect
            now: Current clinic-local time (defaults to the service clock)
            include_drafts: Treat staged drafts as holders (staff calendar)

        Returns:
            Every slot of the day in ascending order
        """
        now = now or self.now()
        taken = await self.taken_times(day, include_drafts=include_drafts)

        slots = []
        for slot_at in iter_day_slots(
            day,
            self.settings.open_time,
            self.settings.close_time,
            self.settings.slot_minutes,
        ):
            is_past = day == now.date() and slot_at <= now
            slots.append(
                TimeSlot(
                    time=format_time_of_day(slot_at.time()),
                    label=slot_at.strftime("%I:%M %p"),
                    available=not is_past and slot_at not in taken,
                )
            )
        return DayAvailability(day=day, slots=slots)

    async def taken_times(self, day: date, include_drafts: bool = False) -> Set[datetime]:
        """Timestamps on ``day`` held by bookings (and optionally drafts)."""
        start = datetime.combine(day, datetime.min.time())
        end = start + timedelta(days=1)

        async with self.sessions.get_session() as session:
            booked = await session.execute(
                select(Appointment.appointment_at).where(
                    Appointment.appointment_at >= start,
                    Appointment.appointment_at < end,
                    Appointment.status != AppointmentStatus.CANCELLED,
                )
            )
            taken = {row[0] for row in booked}

            reserved = await session.execute(
                select(SlotReservation.slot_at).where(
                    SlotReservation.slot_at >= start,
                    SlotReservation.slot_at < end,
                )
            )
            taken.update(row[0] for row in reserved)

            if include_drafts:
                drafts = await session.execute(
                    select(AppointmentDraft.appointment_time).where(
                        AppointmentDraft.appointment_date == day
                    )
                )
                for (time_value,) in drafts:
                    taken.add(datetime.combine(day, parse_time_of_day(time_value)))

        return taken
