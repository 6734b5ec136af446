"""
Appointment lifecycle operations.

Single bookings, group cancellation requests and their resolution, batch
completion, staff edits and the staff management listing.
"""

import logging
import math
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select

from ..exceptions import (
    AuthorizationException,
    ConflictException,
    NotFoundException,
    ValidationException,
)
from ..models import Appointment, AppointmentGroup, AppointmentStatus
from ..schemas import (
    AppointmentEdit,
    AppointmentItem,
    AppointmentListQuery,
    AppointmentPage,
    AppointmentRead,
    AppointmentResult,
    BatchResult,
    CompletionItem,
    parse_items,
    parse_model,
)
from ..utils.datetime_utils import combine_slot, format_slot, parse_time_of_day
from .base import BaseService
from .collaborators import OutboundEvents
from .conflict_guard import ConflictGuard
from .context import AuthContext
from .missed_sweep import MissedSweep

logger = logging.getLogger(__name__)

# Staff status edits that the pet owner is told about
OWNER_NOTIFIED_STATUSES = {
    AppointmentStatus.CANCELLED,
    AppointmentStatus.MISSED,
    AppointmentStatus.COMPLETED,
    AppointmentStatus.PENDING,
}


class AppointmentLifecycle(BaseService):
    """Status changes and edits of individual appointments."""

    def __init__(
        self,
        *args: Any,
        guard: Optional[ConflictGuard] = None,
        sweep: Optional[MissedSweep] = None,
        **kwargs: Any,
    ):
        super().__init__(*args, **kwargs)
        self.guard = guard or ConflictGuard(self.settings)
        self.sweep = sweep

    async def create_appointment(self, item: Any, ctx: AuthContext) -> AppointmentResult:
        """
        Book one ungrouped appointment.

        Args:
            item: AppointmentItem or dict with pet, category, date and time
            ctx: Caller identity; owners may only book their own pets

        Returns:
            The created appointment

        Raises:
            ValidationException: If a required field is missing or malformed
            AuthorizationException: If an owner books someone else's pet
            SlotConflictException: If the timestamp is taken
        """
        item = parse_model(AppointmentItem, item)
        missing = item.missing_fields(require_subtype=False)
        if missing:
            raise ValidationException(
                "Please complete all required fields.", field=missing[0]
            )
        try:
            slot_at = combine_slot(item.appointment_date, parse_time_of_day(item.appointment_time))
        except ValueError:
            raise ValidationException(
                "Invalid time format.", field="appointment_time", value=item.appointment_time
            )
        self.guard.validate_slot(slot_at)
        if slot_at <= self.now():
            raise ValidationException(
                "Cannot book a time slot in the past.", field="appointment_time"
            )

        pet = await self.require_pet_access(ctx, item.pet_id)
        events = OutboundEvents()

        async with self.sessions.transaction_scope("create_appointment") as session:
            await self.guard.ensure_slot_free(session, slot_at)
            appointment = Appointment(
                pet_id=item.pet_id,
                category_id=item.category_id,
                subtype_id=item.subtype_id,
                appointment_at=slot_at,
                notes=item.notes,
                requested_by_owner=ctx.is_owner,
            )
            session.add(appointment)
            await session.flush()
            await self.guard.reserve(session, slot_at, appointment_id=appointment.id)

            events.notify(
                f"New appointment for {pet.name} on {format_slot(slot_at)}.",
                type="Appointment",
                target_role="Staff",
                redirect_url="/Staff/Appointments",
            )
            events.audit(
                "Create",
                f"Created appointment #{appointment.id} for {pet.name} on {format_slot(slot_at)}.",
                performed_by=ctx.user_name,
            )

        await self.publish(events)
        logger.info(f"Appointment {appointment.id} booked for {slot_at.isoformat()}")
        return AppointmentResult(
            appointment=AppointmentRead.from_model(appointment),
            message="Appointment added successfully.",
        )

    async def get_appointment(self, appointment_id: int) -> AppointmentRead:
        """
        Raises:
            NotFoundException: If the appointment does not exist
        """
        async with self.sessions.get_session() as session:
            appointment = await session.get(Appointment, appointment_id)
            if appointment is None:
                raise NotFoundException("Appointment", appointment_id)
            return AppointmentRead.from_model(appointment)

    async def request_group_cancellation(
        self, appointment_id: int, ctx: AuthContext
    ) -> BatchResult:
        """
        Ask the clinic to cancel the whole group an appointment belongs to.

        All-or-nothing: if any member is past the pending stage no status
        changes at all.

        Args:
            appointment_id: Any member of the group
            ctx: Caller identity; owners must own the appointment's pet

        Returns:
            Ids of the members now awaiting cancellation

        Raises:
            NotFoundException: If the appointment does not exist
            ValidationException: If the appointment is not grouped
            AuthorizationException: If the owner does not own the pet, or the
                group is finalized and the caller is not staff
            ConflictException: If any member cannot be cancelled
        """
        events = OutboundEvents()

        async with self.sessions.transaction_scope("request_group_cancellation") as session:
            appointment = await session.get(Appointment, appointment_id)
            if appointment is None:
                raise NotFoundException("Appointment", appointment_id)
            if appointment.group_id is None:
                raise ValidationException(
                    "This appointment is not part of a group.", field="appointment_id"
                )
            pet = await self.require_pet_access(ctx, appointment.pet_id)

            group = await session.get(AppointmentGroup, appointment.group_id)
            if group.is_finalized and not ctx.is_staff:
                raise AuthorizationException(
                    "This group is finalized and cannot be changed by owners.",
                    role=ctx.role.value,
                    user_id=ctx.user_id,
                )
            if not group.all_members_pending():
                raise ConflictException(
                    "This group contains appointments that cannot be cancelled.",
                    error_code="GROUP_NOT_CANCELLABLE",
                    details={"group_id": group.id},
                )

            for member in group.appointments:
                member.request_cancellation()
            member_ids = [member.id for member in group.appointments]

            events.notify(
                f"{ctx.user_name} requested cancellation of group #{group.id} "
                f"({pet.name}, {format_slot(group.group_at)}).",
                type="Appointment",
                target_role="Staff",
                redirect_url="/Staff/Appointments",
            )
            events.audit(
                "Request Cancellation",
                f"Cancellation requested for group #{group.id} ({len(member_ids)} appointments).",
                performed_by=ctx.user_name,
            )

        await self.publish(events)
        return BatchResult(
            processed_ids=member_ids,
            message="Cancellation request sent for all appointments in this group.",
        )

    async def confirm_group_cancellation(self, group_id: int, ctx: AuthContext) -> BatchResult:
        """
        Staff approves a cancellation request and frees the slot.

        Raises:
            AuthorizationException: If the caller is not staff
            NotFoundException: If the group does not exist
            ConflictException: If no member awaits cancellation
        """
        return await self._resolve_cancellation(group_id, ctx, approve=True)

    async def decline_group_cancellation(self, group_id: int, ctx: AuthContext) -> BatchResult:
        """Staff rejects a cancellation request; members return to pending."""
        return await self._resolve_cancellation(group_id, ctx, approve=False)

    async def _resolve_cancellation(
        self, group_id: int, ctx: AuthContext, approve: bool
    ) -> BatchResult:
        ctx.require_staff("resolve cancellation requests")
        events = OutboundEvents()
        target = AppointmentStatus.CANCELLED if approve else AppointmentStatus.PENDING
        verb = "approved" if approve else "declined"

        async with self.sessions.transaction_scope("resolve_cancellation") as session:
            group = await session.get(AppointmentGroup, group_id)
            if group is None:
                raise NotFoundException("Appointment group", group_id)

            requested = [
                member for member in group.appointments
                if member.status == AppointmentStatus.CANCELLATION_REQUESTED
            ]
            if not requested:
                raise ConflictException(
                    "No cancellation request is pending for this group.",
                    details={"group_id": group_id},
                )
            for member in requested:
                member.transition_to(target)
            await session.flush()
            await self.guard.sync(
                session, group.group_at, group.holds_slot, group_id=group.id
            )

            notified_owners = set()
            for member in requested:
                pet = await self.find_pet(member.pet_id)
                if pet and pet.owner_user_id and pet.owner_user_id not in notified_owners:
                    notified_owners.add(pet.owner_user_id)
                    events.notify(
                        f"Your cancellation request for {format_slot(group.group_at)} was {verb}.",
                        type="Appointment",
                        target_user_id=pet.owner_user_id,
                        redirect_url="/Owner/Appointments",
                    )
            events.audit(
                "Cancel" if approve else "Decline Cancellation",
                f"Cancellation of group #{group.id} {verb} ({len(requested)} appointments).",
                performed_by=ctx.user_name,
            )
            processed = [member.id for member in requested]

        await self.publish(events)
        return BatchResult(
            processed_ids=processed,
            message=f"Cancellation request {verb}.",
        )

    async def mark_completed(self, items: Iterable[Any], ctx: AuthContext) -> BatchResult:
        """
        Record a batch of administered services.

        Unknown appointments and appointments that are not pending are
        skipped and reported.

        Raises:
            AuthorizationException: If the caller is not staff
            ValidationException: If no rows were posted
        """
        ctx.require_staff("complete appointments")
        rows = parse_items(CompletionItem, items)
        if not rows:
            raise ValidationException("No appointments selected.", field="items")

        now = self.now()
        events = OutboundEvents()
        processed: List[int] = []
        skipped: List[int] = []

        async with self.sessions.transaction_scope("mark_completed") as session:
            for row in rows:
                appointment = await session.get(Appointment, row.appointment_id)
                if appointment is None or not appointment.can_transition_to(
                    AppointmentStatus.COMPLETED
                ):
                    skipped.append(row.appointment_id)
                    continue
                appointment.complete(row.administered_by, row.due_date, completed_at=now)
                processed.append(appointment.id)

            if processed:
                events.audit(
                    "Complete",
                    f"Marked appointments {', '.join(f'#{i}' for i in processed)} as completed.",
                    performed_by=ctx.user_name,
                )

        await self.publish(events)
        if skipped:
            logger.info(f"Completion skipped appointments {skipped}")
        message = (
            f"{len(processed)} appointment(s) marked as completed."
            if processed
            else "No appointments were completed."
        )
        return BatchResult(processed_ids=processed, skipped_ids=skipped, message=message)

    async def edit_appointment(
        self, appointment_id: int, changes: Any, ctx: AuthContext
    ) -> AppointmentResult:
        """
        Staff edit of one appointment, including a direct status override.

        Moving a grouped appointment moves its whole group.

        Raises:
            AuthorizationException: If the caller is not staff
            NotFoundException: If the appointment does not exist
            ValidationException: If the new time is malformed or off-grid
            SlotConflictException: If the new timestamp is taken
        """
        ctx.require_staff("edit appointments")
        changes = parse_model(AppointmentEdit, changes)
        events = OutboundEvents()

        async with self.sessions.transaction_scope("edit_appointment") as session:
            appointment = await session.get(Appointment, appointment_id)
            if appointment is None:
                raise NotFoundException("Appointment", appointment_id)

            new_at = appointment.appointment_at
            if changes.appointment_time:
                try:
                    new_at = combine_slot(
                        changes.appointment_date or appointment.appointment_at.date(),
                        parse_time_of_day(changes.appointment_time),
                    )
                except ValueError:
                    raise ValidationException(
                        "Invalid time format.",
                        field="appointment_time",
                        value=changes.appointment_time,
                    )
            moved = new_at != appointment.appointment_at
            if moved:
                self.guard.validate_slot(new_at)
                await self.guard.ensure_slot_free(
                    session,
                    new_at,
                    exclude_group_id=appointment.group_id,
                    exclude_appointment_id=appointment.id,
                )

            for field in (
                "pet_id", "category_id", "subtype_id", "notes", "administered_by", "due_date"
            ):
                value = getattr(changes, field)
                if value is not None:
                    setattr(appointment, field, value)

            previous_status = appointment.status
            if changes.status is not None and changes.status != previous_status:
                appointment.override_status(changes.status, now=self.now())

            group = None
            if appointment.group_id is not None:
                group = await session.get(AppointmentGroup, appointment.group_id)
                if moved:
                    group.move_to(new_at)
                await session.flush()
                await self.guard.sync(session, group.group_at, group.holds_slot, group_id=group.id)
            else:
                appointment.appointment_at = new_at
                await session.flush()
                await self.guard.sync(
                    session, new_at, appointment.holds_slot, appointment_id=appointment.id
                )

            pet = await self.find_pet(appointment.pet_id)
            pet_name = pet.name if pet else f"Pet #{appointment.pet_id}"
            if (
                appointment.status != previous_status
                and appointment.status in OWNER_NOTIFIED_STATUSES
                and pet is not None
                and pet.owner_user_id is not None
            ):
                events.notify(
                    f"Your appointment for {pet_name} on {format_slot(appointment.appointment_at)} "
                    f"is now {appointment.get_status_display()}.",
                    type="Appointment",
                    target_user_id=pet.owner_user_id,
                    redirect_url="/Owner/Appointments",
                )
            description = f"Updated appointment #{appointment.id} for {pet_name}."
            if moved and group is not None:
                description += f" Group #{group.id} moved to {format_slot(new_at)}."
            events.audit("Update", description, performed_by=ctx.user_name)

        await self.publish(events)
        return AppointmentResult(
            appointment=AppointmentRead.from_model(appointment),
            message="Appointment updated successfully.",
        )

    async def list_appointments(
        self, query: Any = None, ctx: Optional[AuthContext] = None
    ) -> AppointmentPage:
        """
        Staff management listing with search, status filter, sort and paging.

        A missed-appointment sweep runs first so statuses are current.

        Args:
            query: AppointmentListQuery or dict; defaults to the first page
            ctx: Caller identity (staff only)

        Returns:
            One page of appointments
        """
        if ctx is not None:
            ctx.require_staff("manage appointments")
        query = parse_model(AppointmentListQuery, query or {})

        if self.sweep is not None:
            await self.sweep.run()

        async with self.sessions.get_session() as session:
            stmt = select(Appointment)
            if query.status is not None:
                stmt = stmt.where(Appointment.status == query.status)
            appointments = list((await session.execute(stmt)).scalars())

        pets: Dict[int, Any] = {}
        for appointment in appointments:
            if appointment.pet_id not in pets:
                pets[appointment.pet_id] = await self.find_pet(appointment.pet_id)

        if query.search:
            needle = query.search.strip().lower()

            def matches(appointment: Appointment) -> bool:
                pet = pets.get(appointment.pet_id)
                if pet is None:
                    return False
                return needle in pet.name.lower() or needle in (pet.owner_name or "").lower()

            appointments = [a for a in appointments if matches(a)]

        def sort_key(appointment: Appointment):
            if query.sort_by == "id":
                return appointment.id
            if query.sort_by == "owner":
                pet = pets.get(appointment.pet_id)
                return ((pet.owner_name if pet else "") or "").lower(), appointment.id
            return appointment.appointment_at, appointment.id

        appointments.sort(key=sort_key, reverse=query.descending)

        total = len(appointments)
        total_pages = max(1, math.ceil(total / query.page_size))
        page = min(query.page, total_pages)
        start = (page - 1) * query.page_size
        return AppointmentPage(
            items=[
                AppointmentRead.from_model(a)
                for a in appointments[start:start + query.page_size]
            ],
            total=total,
            page=page,
            page_size=query.page_size,
            total_pages=total_pages,
        )
