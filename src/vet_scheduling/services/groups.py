"""
Group coordination.

Creates multi-service bookings that share one slot, keeps every member on
the group's timestamp through edits, and finalizes or deletes groups.
"""

import logging
from datetime import date, datetime
from typing import Any, Iterable, List, Optional, Tuple

from ..exceptions import AuthorizationException, NotFoundException, ValidationException
from ..models import Appointment, AppointmentGroup, AppointmentStatus, GroupStatus
from ..schemas import (
    AppointmentItem,
    AppointmentRead,
    BatchResult,
    GroupEditItem,
    GroupRead,
    GroupResult,
    parse_items,
)
from ..utils.datetime_utils import combine_slot, format_slot, parse_time_of_day
from .base import BaseService
from .collaborators import OutboundEvents
from .conflict_guard import ConflictGuard
from .context import AuthContext
from .reminders import ReminderService

logger = logging.getLogger(__name__)


def group_read(group: AppointmentGroup) -> GroupRead:
    """Serialize a group and its members."""
    return GroupRead(
        id=group.id,
        group_at=group.group_at,
        status=group.status,
        notes=group.notes,
        finalized_at=group.finalized_at,
        appointments=[AppointmentRead.from_model(a) for a in group.appointments],
    )


class GroupCoordinator(BaseService):
    """Creates, edits, finalizes and deletes appointment groups."""

    def __init__(
        self,
        *args: Any,
        guard: Optional[ConflictGuard] = None,
        reminders: Optional[ReminderService] = None,
        **kwargs: Any,
    ):
        super().__init__(*args, **kwargs)
        self.guard = guard or ConflictGuard(self.settings)
        self.reminders = reminders

    async def create_group(self, items: Iterable[Any], ctx: AuthContext) -> GroupResult:
        """
        Book several services under one slot.

        Staff submissions are strict: the first incomplete or malformed row
        rejects the whole request and is named by its 1-based index. Owner
        submissions are lenient: incomplete rows and rows for pets the owner
        does not own are skipped, and the request fails only when nothing
        qualifies. The first structurally valid row supplies the timestamp.

        Args:
            items: AppointmentItem rows (or dicts)
            ctx: Caller identity

        Returns:
            The created group

        Raises:
            ValidationException: If rows are missing fields or none qualify
            SlotConflictException: If the timestamp is taken
        """
        rows = parse_items(AppointmentItem, items)
        if not rows:
            raise ValidationException("At least one appointment is required.", field="items")

        if ctx.is_staff:
            slot_at, accepted, skipped = await self._staff_rows(rows)
        else:
            slot_at, accepted, skipped = await self._owner_rows(rows, ctx)

        self.guard.validate_slot(slot_at)
        if slot_at <= self.now():
            raise ValidationException(
                "Cannot book a time slot in the past.", field="appointment_time"
            )

        events = OutboundEvents()
        async with self.sessions.transaction_scope("create_group") as session:
            await self.guard.ensure_slot_free(session, slot_at)

            group = AppointmentGroup(
                group_at=slot_at,
                notes="Grouped appointment" if ctx.is_staff else "Grouped appointment (Owner)",
                status=GroupStatus.DRAFT if ctx.is_staff else GroupStatus.PENDING,
                created_by_user_id=ctx.user_id,
            )
            for row, _pet in accepted:
                group.appointments.append(
                    Appointment(
                        pet_id=row.pet_id,
                        category_id=row.category_id,
                        subtype_id=row.subtype_id,
                        appointment_at=slot_at,
                        notes=row.notes,
                        requested_by_owner=ctx.is_owner,
                    )
                )
            session.add(group)
            await session.flush()
            await self.guard.reserve(session, slot_at, group_id=group.id)

            display = format_slot(slot_at)
            events.notify(
                f"New group appointment #{group.id} on {display} with "
                f"{len(group.appointments)} service(s).",
                type="Appointment",
                target_role="Staff",
                redirect_url="/Staff/Appointments",
            )
            for appointment, (_row, pet) in zip(group.appointments, accepted):
                events.notify(
                    f"New appointment for {pet.name} on {display}.",
                    type="Appointment",
                    target_role="Staff",
                    redirect_url="/Staff/Appointments",
                )
                events.audit(
                    "Create",
                    f"Created appointment #{appointment.id} for {pet.name} on {display}.",
                    performed_by=ctx.user_name,
                )
            events.audit(
                "Bulk Create",
                f"Created group #{group.id} with {len(group.appointments)} appointments "
                f"on {display}.",
                performed_by=ctx.user_name,
            )
            result = GroupResult(
                group=group_read(group),
                message="Appointments added successfully.",
                added_ids=[a.id for a in group.appointments],
                skipped_items=skipped,
            )

        await self.publish(events)
        logger.info(f"Group {group.id} booked for {slot_at.isoformat()} ({len(accepted)} services)")

        if ctx.is_staff and self.reminders is not None:
            self.reminders.schedule_booking_reminders(result.added_ids)
        return result

    async def _staff_rows(self, rows: List[AppointmentItem]):
        slot_at = None
        accepted = []
        for index, row in enumerate(rows, start=1):
            if row.missing_fields(require_subtype=True):
                raise ValidationException(
                    f"Item #{index} is missing required fields.",
                    field=row.missing_fields(require_subtype=True)[0],
                    item_index=index,
                )
            try:
                row_at = combine_slot(row.appointment_date, parse_time_of_day(row.appointment_time))
            except ValueError:
                raise ValidationException(
                    f"Invalid time format for item #{index}.",
                    field="appointment_time",
                    value=row.appointment_time,
                    item_index=index,
                )
            if slot_at is None:
                slot_at = row_at
            pet = await self.find_pet(row.pet_id)
            if pet is None:
                raise NotFoundException(
                    "Pet", row.pet_id, message=f"Pet {row.pet_id} not found (item #{index})."
                )
            accepted.append((row, pet))
        return slot_at, accepted, []

    async def _owner_rows(self, rows: List[AppointmentItem], ctx: AuthContext):
        slot_at = None
        for row in rows:
            if row.has_service() and row.appointment_date and row.appointment_time:
                try:
                    slot_at = combine_slot(
                        row.appointment_date, parse_time_of_day(row.appointment_time)
                    )
                    break
                except ValueError:
                    continue
        if slot_at is None:
            raise ValidationException(
                "All services must have completed fields.", field="appointment_time"
            )

        accepted = []
        skipped = []
        for index, row in enumerate(rows, start=1):
            pet = await self.find_pet(row.pet_id) if row.has_service() else None
            if pet is None or not ctx.owns(pet.owner_id):
                skipped.append(index)
                continue
            accepted.append((row, pet))

        if not accepted:
            raise ValidationException("No valid appointments to add.", field="items")
        if skipped:
            logger.info(f"Owner {ctx.owner_id} group request skipped rows {skipped}")
        return slot_at, accepted, skipped

    async def edit_group(
        self,
        group_id: int,
        group_date: Any,
        group_time: str,
        items: Iterable[Any],
        ctx: AuthContext,
    ) -> GroupResult:
        """
        Move a group and reconcile its membership in one transaction.

        Rows with an ``id`` update that member in place, rows without one
        become new members, and members absent from ``items`` are deleted.
        Every member ends up on the new timestamp.

        Args:
            group_id: Group to edit
            group_date: New day (date or ISO string)
            group_time: New time of day, HH:MM
            items: GroupEditItem rows (or dicts)
            ctx: Caller identity

        Returns:
            The edited group with updated, added and removed ids

        Raises:
            NotFoundException: If the group does not exist
            AuthorizationException: If a non-staff caller edits a finalized group
            ValidationException: If the date, time or rows are invalid
            SlotConflictException: If the new timestamp is taken
        """
        rows = parse_items(GroupEditItem, items)
        if not rows:
            raise ValidationException(
                "A group must contain at least one appointment.", field="items"
            )
        new_at = self._parse_group_slot(group_date, group_time)
        self.guard.validate_slot(new_at)

        events = OutboundEvents()
        async with self.sessions.transaction_scope("edit_group") as session:
            group = await session.get(AppointmentGroup, group_id)
            if group is None:
                raise NotFoundException("Appointment group", group_id)
            if group.is_finalized and not ctx.is_staff:
                raise AuthorizationException(
                    "This group is finalized and cannot be edited by owners.",
                    role=ctx.role.value,
                    user_id=ctx.user_id,
                )
            if ctx.is_owner:
                for member in group.appointments:
                    await self.require_pet_access(ctx, member.pet_id)

            await self.guard.ensure_slot_free(session, new_at, exclude_group_id=group.id)

            existing = {member.id: member for member in group.appointments}
            posted_ids = set()
            updated: List[int] = []
            new_members: List[Appointment] = []

            for index, row in enumerate(rows, start=1):
                if row.id is not None:
                    member = existing.get(row.id)
                    if member is None:
                        raise ValidationException(
                            f"Appointment #{row.id} does not belong to group #{group.id}.",
                            field="id",
                            value=row.id,
                            item_index=index,
                        )
                    if row.pet_id is not None and row.pet_id != member.pet_id:
                        await self.require_pet_access(ctx, row.pet_id)
                    for field in ("pet_id", "category_id", "subtype_id", "notes"):
                        value = getattr(row, field)
                        if value is not None:
                            setattr(member, field, value)
                    posted_ids.add(row.id)
                    updated.append(row.id)
                    continue

                if row.pet_id is None or row.category_id is None:
                    raise ValidationException(
                        f"Item #{index} is missing required fields.",
                        field="pet_id" if row.pet_id is None else "category_id",
                        item_index=index,
                    )
                await self.require_pet_access(ctx, row.pet_id)
                new_members.append(
                    Appointment(
                        pet_id=row.pet_id,
                        category_id=row.category_id,
                        subtype_id=row.subtype_id,
                        appointment_at=new_at,
                        notes=row.notes,
                        requested_by_owner=ctx.is_owner,
                        status=AppointmentStatus.PENDING,
                    )
                )

            removed = [member_id for member_id in existing if member_id not in posted_ids]
            for member_id in removed:
                group.appointments.remove(existing[member_id])
            group.appointments.extend(new_members)
            group.move_to(new_at)

            await session.flush()
            await self.guard.sync(session, new_at, group.holds_slot, group_id=group.id)

            added = [member.id for member in new_members]
            events.audit(
                "Edit Group",
                f"Edited {len(updated)}, added {len(added)}, removed {len(removed)} "
                f"in group #{group.id}.",
                performed_by=ctx.user_name,
            )
            if ctx.is_owner:
                events.notify(
                    f"{ctx.user_name} updated group #{group.id} ({format_slot(new_at)}).",
                    type="Appointment",
                    target_role="Staff",
                    redirect_url="/Staff/Appointments",
                )
            result = GroupResult(
                group=group_read(group),
                message="Group updated successfully.",
                updated_ids=updated,
                added_ids=added,
                removed_ids=removed,
            )

        await self.publish(events)
        return result

    @staticmethod
    def _parse_group_slot(group_date: Any, group_time: str) -> datetime:
        try:
            if isinstance(group_date, str):
                group_date = date.fromisoformat(group_date.strip())
            if not isinstance(group_date, date):
                raise ValueError("missing date")
            return combine_slot(group_date, parse_time_of_day(group_time))
        except (TypeError, ValueError):
            raise ValidationException(
                "Invalid date or time format.",
                field="group_time",
                value=f"{group_date} {group_time}",
            )

    async def finalize_groups(self, group_ids: Iterable[Any], ctx: AuthContext) -> BatchResult:
        """
        Finalize groups; finalized and unknown groups are skipped.

        Ids that are not integers (draft keys posted alongside group ids by
        the staff calendar) are ignored.

        Raises:
            AuthorizationException: If the caller is not staff
        """
        ctx.require_staff("finalize groups")
        numeric_ids, skipped = _split_ids(group_ids)
        now = self.now()
        processed: List[int] = []
        events = OutboundEvents()

        async with self.sessions.transaction_scope("finalize_groups") as session:
            for group_id in numeric_ids:
                group = await session.get(AppointmentGroup, group_id)
                if group is None or not group.finalize(now):
                    skipped.append(group_id)
                    continue
                processed.append(group_id)
            if processed:
                events.audit(
                    "Finalize",
                    f"Finalized groups {', '.join(f'#{i}' for i in processed)}.",
                    performed_by=ctx.user_name,
                )

        await self.publish(events)
        return BatchResult(
            processed_ids=processed,
            skipped_ids=[i for i in skipped if isinstance(i, int)],
            message=f"{len(processed)} group(s) finalized.",
        )

    async def get_group(self, group_id: int) -> GroupRead:
        """
        Raises:
            NotFoundException: If the group does not exist
        """
        async with self.sessions.get_session() as session:
            group = await session.get(AppointmentGroup, group_id)
            if group is None:
                raise NotFoundException("Appointment group", group_id)
            return group_read(group)

    async def list_group_appointments(
        self, group_id: int, include_completed: bool = False
    ) -> List[AppointmentRead]:
        """Members of a group, hiding completed ones unless asked."""
        group = await self.get_group(group_id)
        return [
            member for member in group.appointments
            if include_completed or member.status != AppointmentStatus.COMPLETED
        ]

    async def delete_group(self, group_id: int, ctx: AuthContext) -> BatchResult:
        """
        Delete a group with all its members and free its slot.

        Raises:
            AuthorizationException: If the caller is not staff
            NotFoundException: If the group does not exist
        """
        ctx.require_staff("delete groups")
        events = OutboundEvents()

        async with self.sessions.transaction_scope("delete_group") as session:
            group = await session.get(AppointmentGroup, group_id)
            if group is None:
                raise NotFoundException("Appointment group", group_id)
            member_ids = [member.id for member in group.appointments]
            await self.guard.release(session, group_id=group.id)
            await session.delete(group)
            events.audit(
                "Delete Group",
                f"Deleted group #{group_id} and {len(member_ids)} appointments.",
                performed_by=ctx.user_name,
            )

        await self.publish(events)
        return BatchResult(processed_ids=member_ids, message="Group deleted.")


def _split_ids(values: Iterable[Any]) -> Tuple[List[int], List[Any]]:
    numeric: List[int] = []
    ignored: List[Any] = []
    for value in values or []:
        try:
            numeric.append(int(value))
        except (TypeError, ValueError):
            ignored.append(value)
    return numeric, ignored
