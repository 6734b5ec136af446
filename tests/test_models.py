"""
Tests for the booking models and the appointment status machine.
"""

from datetime import date, datetime

import pytest

from vet_scheduling.exceptions import InvalidTransitionException
from vet_scheduling.models import (
    ALLOWED_TRANSITIONS,
    TERMINAL_STATUSES,
    Appointment,
    AppointmentDraft,
    AppointmentGroup,
    AppointmentStatus,
    GroupStatus,
    SlotReservation,
)

SLOT_AT = datetime(2026, 10, 20, 9, 30)


def appointment(**kwargs) -> Appointment:
    kwargs.setdefault("pet_id", 1)
    kwargs.setdefault("appointment_at", SLOT_AT)
    return Appointment(**kwargs)


class TestAppointment:
    """Test cases for the Appointment model."""

    def test_defaults(self):
        """Test defaults applied before the row is flushed."""
        appt = appointment()

        assert appt.status == AppointmentStatus.PENDING
        assert appt.requested_by_owner is False
        assert appt.sms_sent_today == 0
        assert appt.email_sent_today == 0
        assert appt.holds_slot
        assert not appt.is_terminal

    @pytest.mark.parametrize(
        "current,target",
        [
            (current, target)
            for current in AppointmentStatus
            for target in AppointmentStatus
            if target not in ALLOWED_TRANSITIONS[current]
        ],
    )
    def test_disallowed_transitions(self, current, target):
        appt = appointment(status=current)

        with pytest.raises(InvalidTransitionException):
            appt.transition_to(target)

        assert appt.status == current

    def test_terminal_statuses_have_no_exits(self):
        for status in TERMINAL_STATUSES:
            assert ALLOWED_TRANSITIONS[status] == frozenset()

    def test_cancellation_round_trip(self):
        """Test request, decline and final cancellation."""
        appt = appointment()

        appt.request_cancellation()
        assert appt.status == AppointmentStatus.CANCELLATION_REQUESTED
        appt.transition_to(AppointmentStatus.PENDING)
        appt.request_cancellation()
        appt.cancel()

        assert appt.status == AppointmentStatus.CANCELLED
        assert not appt.holds_slot

    def test_missed_keeps_slot(self):
        appt = appointment()

        appt.mark_missed()

        assert appt.is_terminal
        assert appt.holds_slot

    def test_complete(self):
        appt = appointment()
        completed_at = datetime(2026, 10, 20, 10, 0)

        appt.complete("Dr. Reyes", due_date=date(2027, 10, 20), completed_at=completed_at)

        assert appt.status == AppointmentStatus.COMPLETED
        assert appt.administered_by == "Dr. Reyes"
        assert appt.due_date == date(2027, 10, 20)
        assert appt.completed_at == completed_at

    def test_override_status(self):
        """Test that staff overrides bypass the transition table."""
        appt = appointment(status=AppointmentStatus.MISSED)
        now = datetime(2026, 10, 20, 12, 0)

        appt.override_status(AppointmentStatus.COMPLETED, now)
        assert appt.completed_at == now

        appt.override_status(AppointmentStatus.PENDING)
        assert appt.status == AppointmentStatus.PENDING
        assert appt.completed_at is None

    @pytest.mark.parametrize(
        "status,requested,expected",
        [
            (AppointmentStatus.PENDING, False, "Pending"),
            (AppointmentStatus.PENDING, True, "Requested"),
            (AppointmentStatus.CANCELLATION_REQUESTED, True, "Cancellation Requested"),
            (AppointmentStatus.MISSED, False, "Missed"),
        ],
    )
    def test_status_display(self, status, requested, expected):
        appt = appointment(status=status, requested_by_owner=requested)

        assert appt.get_status_display() == expected

    def test_to_dict(self):
        data = appointment(category_id=2).to_dict()

        assert data["status"] == "pending"
        assert data["appointment_at"] == "2026-10-20T09:30:00"
        assert data["category_id"] == 2


class TestAppointmentGroup:
    """Test cases for the AppointmentGroup model."""

    def test_move_to_updates_members(self):
        group = AppointmentGroup(group_at=SLOT_AT)
        group.appointments = [appointment(), appointment(pet_id=2)]
        new_at = datetime(2026, 10, 21, 14, 0)

        group.move_to(new_at)

        assert group.group_at == new_at
        assert all(member.appointment_at == new_at for member in group.appointments)

    def test_holds_slot(self):
        group = AppointmentGroup(group_at=SLOT_AT)
        group.appointments = [appointment(status=AppointmentStatus.CANCELLED)]
        assert not group.holds_slot

        group.appointments.append(appointment())
        assert group.holds_slot

    def test_all_members_pending(self):
        group = AppointmentGroup(group_at=SLOT_AT)
        assert not group.all_members_pending()

        group.appointments = [appointment(), appointment(status=AppointmentStatus.COMPLETED)]
        assert not group.all_members_pending()

    def test_finalize_is_one_way(self):
        group = AppointmentGroup(group_at=SLOT_AT)
        now = datetime(2026, 10, 19, 10, 0)

        assert group.status == GroupStatus.PENDING
        assert group.finalize(now) is True
        assert group.finalized_at == now
        assert group.finalize() is False
        assert group.is_finalized


class TestAppointmentDraft:
    """Test cases for the AppointmentDraft model."""

    def draft(self) -> AppointmentDraft:
        return AppointmentDraft(
            user_id=1,
            pet_id=1,
            category_id=1,
            subtype_id=1,
            appointment_date=date(2026, 10, 20),
            appointment_time="09:30",
            draft_group_key="abc",
        )

    def test_slot_at(self):
        assert self.draft().slot_at == SLOT_AT

    def test_same_item(self):
        draft = self.draft()

        assert draft.same_item(1, 1, 1, date(2026, 10, 20), "09:30")
        assert not draft.same_item(1, 1, 2, date(2026, 10, 20), "09:30")
        assert not draft.same_item(1, 1, 1, date(2026, 10, 20), "09:35")


class TestSlotReservation:
    """Test cases for the SlotReservation ledger table."""

    def test_constraints_declared(self):
        names = {constraint.name for constraint in SlotReservation.__table__.constraints}

        assert "uq_slot_reservations_slot_at" in names
        assert "uq_slot_reservations_appointment" in names
        assert "uq_slot_reservations_group" in names
