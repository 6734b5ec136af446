"""
Slot conflict detection and the slot reservation ledger.

A candidate timestamp collides when it equals, to the minute, a slot held
by a committed booking (a non-cancelled appointment or group) or the
timestamp of a staged draft under a different draft key. Every check runs
inside the caller's transaction; the unique ``slot_reservations.slot_at``
constraint backs the check when two writers race.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..exceptions import SlotConflictException, ValidationException
from ..models import Appointment, AppointmentDraft, AppointmentStatus, SlotReservation
from ..utils.config import SchedulingSettings
from ..utils.datetime_utils import format_slot, format_time_of_day, is_on_slot_grid

logger = logging.getLogger(__name__)


class ConflictGuard:
    """Decides whether a timestamp is free and maintains slot reservations."""

    def __init__(self, settings: Optional[SchedulingSettings] = None):
        self.settings = settings or SchedulingSettings()

    def validate_slot(self, slot_at: datetime, item_index: Optional[int] = None) -> None:
        """
        Reject timestamps that are not on the clinic's slot grid.

        Raises:
            ValidationException: If grid enforcement is on and the time is off-grid
        """
        if not self.settings.enforce_slot_grid:
            return
        if not is_on_slot_grid(
            slot_at,
            self.settings.open_time,
            self.settings.close_time,
            self.settings.slot_minutes,
        ):
            message = f"{format_slot(slot_at)} is not a bookable time slot"
            if item_index is not None:
                message += f" (item #{item_index})"
            raise ValidationException(
                message + ".",
                field="appointment_time",
                value=format_time_of_day(slot_at.time()),
                item_index=item_index,
            )

    async def find_conflict(
        self,
        session: AsyncSession,
        slot_at: datetime,
        exclude_group_id: Optional[int] = None,
        exclude_appointment_id: Optional[int] = None,
        exclude_draft_key: Optional[str] = None,
        check_drafts: bool = True,
    ) -> Optional[str]:
        """
        Look for anything holding ``slot_at``.

        Args:
            session: Session of the caller's transaction
            slot_at: Candidate timestamp
            exclude_group_id: Group being edited; its own hold does not count
            exclude_appointment_id: Appointment being edited
            exclude_draft_key: Draft key being saved or converted
            check_drafts: Whether staged drafts count as holders

        Returns:
            "group", "appointment" or "draft" for the first holder found, else None
        """
        reservation = (
            await session.execute(
                select(SlotReservation).where(SlotReservation.slot_at == slot_at)
            )
        ).scalar_one_or_none()
        if reservation is not None:
            own_group = (
                exclude_group_id is not None and reservation.group_id == exclude_group_id
            )
            own_appointment = (
                exclude_appointment_id is not None
                and reservation.appointment_id == exclude_appointment_id
            )
            if not (own_group or own_appointment):
                return "group" if reservation.group_id is not None else "appointment"

        stmt = select(Appointment.id).where(
            Appointment.appointment_at == slot_at,
            Appointment.status != AppointmentStatus.CANCELLED,
        )
        if exclude_group_id is not None:
            stmt = stmt.where(
                (Appointment.group_id.is_(None)) | (Appointment.group_id != exclude_group_id)
            )
        if exclude_appointment_id is not None:
            stmt = stmt.where(Appointment.id != exclude_appointment_id)
        if (await session.execute(stmt.limit(1))).first() is not None:
            return "appointment"

        if check_drafts:
            draft_stmt = select(AppointmentDraft.id).where(
                AppointmentDraft.appointment_date == slot_at.date(),
                AppointmentDraft.appointment_time == format_time_of_day(slot_at.time()),
            )
            if exclude_draft_key is not None:
                draft_stmt = draft_stmt.where(
                    AppointmentDraft.draft_group_key != exclude_draft_key
                )
            if (await session.execute(draft_stmt.limit(1))).first() is not None:
                return "draft"

        return None

    async def ensure_slot_free(
        self,
        session: AsyncSession,
        slot_at: datetime,
        item_index: Optional[int] = None,
        exclude_group_id: Optional[int] = None,
        exclude_appointment_id: Optional[int] = None,
        exclude_draft_key: Optional[str] = None,
        check_drafts: bool = True,
    ) -> None:
        """
        Raise if ``slot_at`` is held by anything other than the excluded owners.

        Raises:
            SlotConflictException: If the slot is taken
        """
        held_by = await self.find_conflict(
            session,
            slot_at,
            exclude_group_id=exclude_group_id,
            exclude_appointment_id=exclude_appointment_id,
            exclude_draft_key=exclude_draft_key,
            check_drafts=check_drafts,
        )
        if held_by is not None:
            logger.info(f"Slot {slot_at.isoformat()} rejected, held by {held_by}")
            raise SlotConflictException(slot_at, item_index=item_index, held_by=held_by)

    # Reservation ledger

    async def reserve(
        self,
        session: AsyncSession,
        slot_at: datetime,
        appointment_id: Optional[int] = None,
        group_id: Optional[int] = None,
    ) -> SlotReservation:
        """
        Insert the reservation row for a new holder and flush it.

        Raises:
            SlotConflictException: If another transaction holds the slot
        """
        reservation = SlotReservation(
            slot_at=slot_at, appointment_id=appointment_id, group_id=group_id
        )
        session.add(reservation)
        await self._flush_reservation(session, slot_at)
        return reservation

    async def move(
        self,
        session: AsyncSession,
        slot_at: datetime,
        appointment_id: Optional[int] = None,
        group_id: Optional[int] = None,
    ) -> SlotReservation:
        """
        Point a holder's reservation at a new timestamp, creating it if missing.

        Raises:
            SlotConflictException: If another holder has the new slot
        """
        reservation = await self._holder_reservation(session, appointment_id, group_id)
        if reservation is None:
            return await self.reserve(session, slot_at, appointment_id, group_id)
        if reservation.slot_at != slot_at:
            reservation.slot_at = slot_at
            await self._flush_reservation(session, slot_at)
        return reservation

    async def release(
        self,
        session: AsyncSession,
        appointment_id: Optional[int] = None,
        group_id: Optional[int] = None,
    ) -> None:
        """Delete the reservation of an appointment or group, if it has one."""
        stmt = delete(SlotReservation)
        if group_id is not None:
            stmt = stmt.where(SlotReservation.group_id == group_id)
        elif appointment_id is not None:
            stmt = stmt.where(SlotReservation.appointment_id == appointment_id)
        else:
            return
        await session.execute(stmt)

    async def sync(
        self,
        session: AsyncSession,
        slot_at: datetime,
        holds_slot: bool,
        appointment_id: Optional[int] = None,
        group_id: Optional[int] = None,
    ) -> None:
        """Make the ledger match a holder's current timestamp and status."""
        if holds_slot:
            await self.move(session, slot_at, appointment_id, group_id)
        else:
            await self.release(session, appointment_id, group_id)

    async def _holder_reservation(
        self,
        session: AsyncSession,
        appointment_id: Optional[int],
        group_id: Optional[int],
    ) -> Optional[SlotReservation]:
        if group_id is not None:
            condition = SlotReservation.group_id == group_id
        else:
            condition = SlotReservation.appointment_id == appointment_id
        result = await session.execute(select(SlotReservation).where(condition))
        return result.scalar_one_or_none()

    async def _flush_reservation(self, session: AsyncSession, slot_at: datetime) -> None:
        try:
            await session.flush()
        except IntegrityError as e:
            logger.warning(f"Concurrent booking detected for {slot_at.isoformat()}: {e.orig}")
            raise SlotConflictException(slot_at, held_by="reservation") from e
