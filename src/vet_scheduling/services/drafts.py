"""
Draft cart.

Staff stage speculative bookings as drafts bound by a draft group key.
A key holds a limited number of drafts and converts into one appointment
group, after which its drafts are deleted.
"""

import logging
import uuid
from collections import OrderedDict
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import delete, select

from ..exceptions import (
    AuthorizationException,
    ConflictException,
    NotFoundException,
    ValidationException,
    VetSchedulingException,
)
from ..models import Appointment, AppointmentDraft, AppointmentGroup, GroupStatus
from ..schemas import (
    ConversionResult,
    DraftCartGroup,
    DraftGroupItem,
    DraftItem,
    DraftRead,
    DraftSaveResult,
    parse_items,
)
from ..utils.datetime_utils import combine_slot, format_slot, format_time_of_day, parse_time_of_day
from .base import BaseService
from .collaborators import OutboundEvents
from .conflict_guard import ConflictGuard
from .context import AuthContext

logger = logging.getLogger(__name__)


def new_draft_group_key() -> str:
    return uuid.uuid4().hex


class DraftCart(BaseService):
    """Stages drafts and converts draft groups into appointment groups."""

    def __init__(self, *args: Any, guard: Optional[ConflictGuard] = None, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.guard = guard or ConflictGuard(self.settings)

    async def _prepare(self, row: DraftItem, index: int) -> Tuple[str, Any]:
        """Validate one staged row and return its normalized time and slot."""
        missing = row.missing_fields(require_subtype=True)
        if missing:
            raise ValidationException(
                f"Item #{index} missing pet/category/subtype/date/time.",
                field=missing[0],
                item_index=index,
            )
        try:
            time_of_day = parse_time_of_day(row.appointment_time)
        except ValueError:
            raise ValidationException(
                f"Invalid time format for item #{index}.",
                field="appointment_time",
                value=row.appointment_time,
                item_index=index,
            )
        slot_at = combine_slot(row.appointment_date, time_of_day)
        self.guard.validate_slot(slot_at, item_index=index)
        return format_time_of_day(time_of_day), slot_at

    def _check_limit(self, count: int, key: str) -> None:
        limit = self.settings.draft_group_limit
        if count > limit:
            raise ConflictException(
                f"A draft group can only contain a maximum of {limit} appointments.",
                error_code="DRAFT_GROUP_LIMIT",
                details={"draft_group_key": key, "count": count, "limit": limit},
            )

    async def save_drafts(self, items: Iterable[Any], ctx: AuthContext) -> DraftSaveResult:
        """
        Stage rows into the caller's cart.

        Rows without a key share one freshly minted key. Rows identical to a
        draft already staged under the same key are skipped, so re-posting a
        form does not duplicate it.

        Args:
            items: DraftItem rows (or dicts)
            ctx: Staff identity

        Returns:
            Saved draft ids, skipped duplicate indexes and the keys touched

        Raises:
            AuthorizationException: If the caller is not staff, or a key holds
                another user's drafts
            ValidationException: If a row is incomplete (names the 1-based index)
            ConflictException: If a key would exceed the draft group limit
            SlotConflictException: If a row's time is held elsewhere
        """
        ctx.require_staff("save drafts")
        rows = parse_items(DraftItem, items)
        if not rows:
            raise ValidationException("No drafts to save.", field="items")

        minted = new_draft_group_key()
        by_key: "OrderedDict[str, List[Tuple[int, DraftItem, str, Any]]]" = OrderedDict()
        for index, row in enumerate(rows, start=1):
            time_text, slot_at = await self._prepare(row, index)
            key = row.draft_group_key or minted
            by_key.setdefault(key, []).append((index, row, time_text, slot_at))

        saved: List[AppointmentDraft] = []
        duplicates: List[int] = []
        events = OutboundEvents()

        async with self.sessions.transaction_scope("save_drafts") as session:
            for key, entries in by_key.items():
                existing = list(
                    (
                        await session.execute(
                            select(AppointmentDraft).where(AppointmentDraft.draft_group_key == key)
                        )
                    ).scalars()
                )
                for draft in existing:
                    self._require_draft_access(draft, ctx)
                fresh = []
                for index, row, time_text, slot_at in entries:
                    staged = existing + [draft for _i, draft in fresh]
                    if any(
                        draft.same_item(
                            row.pet_id, row.category_id, row.subtype_id,
                            row.appointment_date, time_text,
                        )
                        for draft in staged
                    ):
                        duplicates.append(index)
                        continue
                    await self.guard.ensure_slot_free(
                        session, slot_at, item_index=index, exclude_draft_key=key
                    )
                    owner_id = row.owner_id
                    if owner_id is None:
                        pet = await self.get_pet(row.pet_id)
                        owner_id = pet.owner_id
                    fresh.append(
                        (
                            index,
                            AppointmentDraft(
                                user_id=ctx.user_id,
                                owner_id=owner_id,
                                pet_id=row.pet_id,
                                category_id=row.category_id,
                                subtype_id=row.subtype_id,
                                appointment_date=row.appointment_date,
                                appointment_time=time_text,
                                notes=row.notes,
                                draft_group_key=key,
                            ),
                        )
                    )

                self._check_limit(len(existing) + len(fresh), key)
                for _index, draft in fresh:
                    session.add(draft)
                    saved.append(draft)

            await session.flush()
            if saved:
                events.audit(
                    "Save Drafts",
                    f"Saved {len(saved)} draft(s) under {len(by_key)} draft group(s).",
                    performed_by=ctx.user_name,
                )
            result = DraftSaveResult(
                saved_ids=[draft.id for draft in saved],
                duplicate_items=duplicates,
                draft_group_keys=list(by_key),
                message=f"{len(saved)} draft(s) saved.",
            )

        await self.publish(events)
        return result

    async def save_draft_group(
        self,
        draft_group_key: Optional[str],
        owner_id: Optional[int],
        items: Iterable[Any],
        ctx: AuthContext,
    ) -> DraftSaveResult:
        """
        Replace the contents of one draft group.

        Rows with an ``id`` update that draft, rows without one are added and
        drafts of the key that are not posted are removed.

        Args:
            draft_group_key: Key to edit; a new key is minted when empty
            owner_id: Owner the drafts are staged for
            items: DraftGroupItem rows (or dicts)
            ctx: Staff identity

        Raises:
            AuthorizationException: If the caller is not staff, or the key holds
                another user's drafts
            ConflictException: If more rows are posted than the limit allows
            ValidationException: If the owner is missing or a row is incomplete
            SlotConflictException: If a row's time is held elsewhere
        """
        ctx.require_staff("edit draft groups")
        rows = parse_items(DraftGroupItem, items)
        key = (draft_group_key or "").strip() or new_draft_group_key()

        self._check_limit(len(rows), key)
        if owner_id is None:
            raise ValidationException("Owner is required.", field="owner_id")
        if not rows:
            raise ValidationException(
                "A draft group must contain at least one appointment.", field="items"
            )

        prepared = []
        for index, row in enumerate(rows, start=1):
            time_text, slot_at = await self._prepare(row, index)
            prepared.append((index, row, time_text, slot_at))

        events = OutboundEvents()
        async with self.sessions.transaction_scope("save_draft_group") as session:
            existing = {
                draft.id: draft
                for draft in (
                    await session.execute(
                        select(AppointmentDraft).where(AppointmentDraft.draft_group_key == key)
                    )
                ).scalars()
            }
            for draft in existing.values():
                self._require_draft_access(draft, ctx)
            kept_ids = set()
            touched: List[AppointmentDraft] = []

            for index, row, time_text, slot_at in prepared:
                await self.guard.ensure_slot_free(
                    session, slot_at, item_index=index, exclude_draft_key=key
                )
                if row.id is not None:
                    draft = existing.get(row.id)
                    if draft is None:
                        raise NotFoundException(
                            "Draft", row.id,
                            message=(
                                f"Draft #{row.id} is not part of this draft group "
                                f"(item #{index})."
                            ),
                        )
                    kept_ids.add(row.id)
                else:
                    draft = AppointmentDraft(user_id=ctx.user_id, draft_group_key=key)
                    session.add(draft)
                draft.owner_id = owner_id
                draft.pet_id = row.pet_id
                draft.category_id = row.category_id
                draft.subtype_id = row.subtype_id
                draft.appointment_date = row.appointment_date
                draft.appointment_time = time_text
                draft.notes = row.notes
                touched.append(draft)

            removed = [draft_id for draft_id in existing if draft_id not in kept_ids]
            for draft_id in removed:
                await session.delete(existing[draft_id])

            await session.flush()
            events.audit(
                "Edit Draft Group",
                f"Saved {len(touched)} draft(s) and removed {len(removed)} in draft group {key}.",
                performed_by=ctx.user_name,
            )
            result = DraftSaveResult(
                saved_ids=[draft.id for draft in touched],
                draft_group_keys=[key],
                message="Draft group saved.",
            )

        await self.publish(events)
        return result

    async def list_cart(self, ctx: AuthContext) -> List[DraftCartGroup]:
        """
        Drafts visible to the caller, grouped by key in creation order.

        Owners see drafts staged for them; staff see the drafts they created.
        """
        stmt = select(AppointmentDraft).order_by(AppointmentDraft.id)
        if ctx.is_owner:
            stmt = stmt.where(AppointmentDraft.owner_id == ctx.owner_id)
        else:
            stmt = stmt.where(AppointmentDraft.user_id == ctx.user_id)

        async with self.sessions.get_session() as session:
            drafts = list((await session.execute(stmt)).scalars())

        grouped: "OrderedDict[str, List[DraftRead]]" = OrderedDict()
        for draft in drafts:
            grouped.setdefault(draft.draft_group_key, []).append(DraftRead.model_validate(draft))
        return [DraftCartGroup(draft_group_key=key, drafts=rows) for key, rows in grouped.items()]

    async def remove_draft(self, draft_id: int, ctx: AuthContext) -> None:
        """
        Raises:
            NotFoundException: If the draft does not exist
            AuthorizationException: If the draft belongs to someone else
        """
        async with self.sessions.transaction_scope("remove_draft") as session:
            draft = await session.get(AppointmentDraft, draft_id)
            if draft is None:
                raise NotFoundException("Draft", draft_id)
            self._require_draft_access(draft, ctx)
            await session.delete(draft)
        logger.info(f"Draft {draft_id} removed by user {ctx.user_id}")

    async def delete_draft_groups(
        self, draft_group_keys: Optional[Iterable[str]], ctx: AuthContext
    ) -> int:
        """
        Delete the caller's drafts under the given keys, or all of them.

        Returns:
            Number of drafts deleted
        """
        stmt = delete(AppointmentDraft)
        if ctx.is_owner:
            stmt = stmt.where(AppointmentDraft.owner_id == ctx.owner_id)
        else:
            stmt = stmt.where(AppointmentDraft.user_id == ctx.user_id)
        if draft_group_keys is not None:
            keys = [key for key in draft_group_keys if key]
            if not keys:
                return 0
            stmt = stmt.where(AppointmentDraft.draft_group_key.in_(keys))

        async with self.sessions.transaction_scope("delete_draft_groups") as session:
            result = await session.execute(stmt)
            count = result.rowcount or 0
        logger.info(f"Deleted {count} draft(s) for user {ctx.user_id}")
        return count

    @staticmethod
    def _require_draft_access(draft: AppointmentDraft, ctx: AuthContext) -> None:
        allowed = ctx.owns(draft.owner_id) if ctx.is_owner else draft.user_id == ctx.user_id
        if not allowed:
            raise AuthorizationException(
                "You can only manage your own drafts.",
                role=ctx.role.value,
                user_id=ctx.user_id,
            )

    async def convert_to_appointments(
        self, draft_group_keys: Iterable[str], ctx: AuthContext
    ) -> ConversionResult:
        """
        Turn each draft group into a pending appointment group.

        Every key is converted in its own transaction, so a failing key does
        not undo keys converted before it. Only the caller's own drafts are
        converted; keys with none of them left are skipped.

        Args:
            draft_group_keys: Keys to convert
            ctx: Staff identity

        Returns:
            Created group per key, failure message per key

        Raises:
            AuthorizationException: If the caller is not staff
            ValidationException: If no key converted
        """
        ctx.require_staff("convert drafts")
        result = ConversionResult()

        for key in OrderedDict.fromkeys(k for k in draft_group_keys or [] if k):
            try:
                converted = await self._convert_key(key, ctx)
            except VetSchedulingException as e:
                logger.warning(f"Draft group {key} not converted: {e.message}")
                result.failed[key] = e.message
                continue
            if converted is None:
                continue
            group_id, appointment_ids = converted
            result.converted[key] = group_id
            result.appointment_ids.extend(appointment_ids)

        if not result.converted:
            raise ValidationException(
                "No drafts were converted.",
                field="draft_group_keys",
                validation_errors=result.failed or None,
            )

        result.message = f"{len(result.converted)} draft group(s) converted to appointments."
        logger.info(result.message)
        return result

    async def _convert_key(self, key: str, ctx: AuthContext) -> Optional[Tuple[int, List[int]]]:
        events = OutboundEvents()
        async with self.sessions.transaction_scope("convert_drafts") as session:
            drafts = list(
                (
                    await session.execute(
                        select(AppointmentDraft)
                        .where(
                            AppointmentDraft.draft_group_key == key,
                            AppointmentDraft.user_id == ctx.user_id,
                            AppointmentDraft.owner_id.isnot(None),
                        )
                        .order_by(AppointmentDraft.id)
                    )
                ).scalars()
            )
            if not drafts:
                return None

            slot_at = drafts[0].slot_at
            await self.guard.ensure_slot_free(session, slot_at, exclude_draft_key=key)

            group = AppointmentGroup(
                group_at=slot_at,
                notes=f"Converted from draft group {key}",
                status=GroupStatus.PENDING,
                created_by_user_id=ctx.user_id,
            )
            seen = set()
            for draft in drafts:
                service = (draft.pet_id, draft.category_id, draft.subtype_id)
                if service in seen:
                    continue
                seen.add(service)
                group.appointments.append(
                    Appointment(
                        pet_id=draft.pet_id,
                        category_id=draft.category_id,
                        subtype_id=draft.subtype_id,
                        appointment_at=slot_at,
                        notes=draft.notes,
                    )
                )
            session.add(group)
            await session.flush()
            await self.guard.reserve(session, slot_at, group_id=group.id)

            for draft in drafts:
                await session.delete(draft)

            display = format_slot(slot_at)
            events.notify(
                f"Group appointment #{group.id} booked on {display} with "
                f"{len(group.appointments)} service(s).",
                type="Appointment",
                target_role="Staff",
                redirect_url="/Staff/Appointments",
            )
            notified_owners: Dict[int, bool] = {}
            for appointment in group.appointments:
                pet = await self.find_pet(appointment.pet_id)
                pet_name = pet.name if pet else f"Pet #{appointment.pet_id}"
                events.notify(
                    f"New appointment for {pet_name} on {display}.",
                    type="Appointment",
                    target_role="Staff",
                    redirect_url="/Staff/Appointments",
                )
                if pet and pet.owner_user_id and pet.owner_user_id not in notified_owners:
                    notified_owners[pet.owner_user_id] = True
                    events.notify(
                        f"Your pet has an upcoming appointment on {display}.",
                        type="Appointment",
                        target_user_id=pet.owner_user_id,
                        redirect_url="/Owner/Appointments",
                    )
            events.audit(
                "Convert Drafts",
                f"Converted draft group {key} into group #{group.id} "
                f"with {len(group.appointments)} appointment(s).",
                performed_by=ctx.user_name,
            )
            converted = (group.id, [a.id for a in group.appointments])

        await self.publish(events)
        return converted
