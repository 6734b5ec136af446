"""
Appointment model for the vet-scheduling package.

This module contains the Appointment SQLAlchemy model, the closed set of
appointment statuses and the transition table that governs how an
appointment moves between them.
"""

import enum
from datetime import date, datetime
from typing import Dict, FrozenSet, Optional

from sqlalchemy import (
    Boolean, CheckConstraint, Date, DateTime, Enum, ForeignKey, Index, Integer, String, Text
)
from sqlalchemy.orm import Mapped, mapped_column

from ..exceptions import InvalidTransitionException
from .base import BaseModel


class AppointmentStatus(enum.Enum):
    """Enumeration of appointment statuses."""

    PENDING = "pending"
    CANCELLATION_REQUESTED = "cancellation_requested"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    MISSED = "missed"


TERMINAL_STATUSES: FrozenSet[AppointmentStatus] = frozenset({
    AppointmentStatus.COMPLETED,
    AppointmentStatus.CANCELLED,
    AppointmentStatus.MISSED,
})

# Moves available through the regular lifecycle operations. Staff edits may
# bypass this table with Appointment.override_status.
ALLOWED_TRANSITIONS: Dict[AppointmentStatus, FrozenSet[AppointmentStatus]] = {
    AppointmentStatus.PENDING: frozenset({
        AppointmentStatus.CANCELLATION_REQUESTED,
        AppointmentStatus.COMPLETED,
        AppointmentStatus.MISSED,
        AppointmentStatus.CANCELLED,
    }),
    AppointmentStatus.CANCELLATION_REQUESTED: frozenset({
        AppointmentStatus.CANCELLED,
        AppointmentStatus.PENDING,
        AppointmentStatus.MISSED,
    }),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.CANCELLED: frozenset(),
    AppointmentStatus.MISSED: frozenset(),
}


class Appointment(BaseModel):
    """
    A single service booked for one pet at one minute-granular timestamp.

    Appointments that belong to a group always carry the group's timestamp;
    the group coordinator moves them together.
    """

    __tablename__ = "appointments"

    def __init__(self, **kwargs):
        """Initialize Appointment with default values."""
        if 'status' not in kwargs:
            kwargs['status'] = AppointmentStatus.PENDING
        if 'requested_by_owner' not in kwargs:
            kwargs['requested_by_owner'] = False
        if 'sms_sent_today' not in kwargs:
            kwargs['sms_sent_today'] = 0
        if 'email_sent_today' not in kwargs:
            kwargs['email_sent_today'] = 0
        if 'is_synced' not in kwargs:
            kwargs['is_synced'] = False

        super().__init__(**kwargs)

    pet_id: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        index=True,
        comment="Id of the pet in the catalog store"
    )

    category_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        comment="Service category id"
    )

    subtype_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        comment="Service subtype id"
    )

    appointment_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        index=True,
        comment="Clinic-local date and time of the appointment, minute granular"
    )

    status: Mapped[AppointmentStatus] = mapped_column(
        Enum(AppointmentStatus, name="appointment_status"),
        nullable=False,
        default=AppointmentStatus.PENDING,
        index=True,
        comment="Current lifecycle status"
    )

    requested_by_owner: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="Booked by the pet owner; shown as 'Requested' while pending"
    )

    group_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("appointment_groups.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
        comment="Group this appointment belongs to, if any"
    )

    notes: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Free-form notes"
    )

    administered_by: Mapped[Optional[str]] = mapped_column(
        String(200),
        nullable=True,
        comment="Staff member who administered the service"
    )

    due_date: Mapped[Optional[date]] = mapped_column(
        Date,
        nullable=True,
        comment="Next due date recorded on completion"
    )

    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
        nullable=True,
        comment="When the appointment was marked completed"
    )

    # Reminder rate-limit counters
    sms_sent_today: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="SMS reminders sent on reminder_counter_date"
    )

    email_sent_today: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Email reminders sent on reminder_counter_date"
    )

    last_sms_sent_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
        nullable=True,
        comment="When the last SMS reminder was handed to the gateway"
    )

    last_email_sent_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
        nullable=True,
        comment="When the last email reminder was sent"
    )

    reminder_counter_date: Mapped[Optional[date]] = mapped_column(
        Date,
        nullable=True,
        comment="Day the reminder counters refer to"
    )

    is_synced: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="Mirrored to an external calendar"
    )

    __table_args__ = (
        CheckConstraint(
            'sms_sent_today >= 0',
            name='ck_appointments_sms_sent_non_negative'
        ),
        CheckConstraint(
            'email_sent_today >= 0',
            name='ck_appointments_email_sent_non_negative'
        ),
        Index('idx_appointments_status_at', 'status', 'appointment_at'),
        Index('idx_appointments_pet_at', 'pet_id', 'appointment_at'),
    )

    def __repr__(self) -> str:
        """String representation of the Appointment model."""
        return (
            f"<Appointment(id={self.id}, pet_id={self.pet_id}, "
            f"appointment_at='{self.appointment_at}', status='{self.status.value}')>"
        )

    @property
    def is_terminal(self) -> bool:
        """Completed, cancelled and missed appointments never change again."""
        return self.status in TERMINAL_STATUSES

    @property
    def holds_slot(self) -> bool:
        """Every status except CANCELLED keeps the timestamp occupied."""
        return self.status != AppointmentStatus.CANCELLED

    @property
    def is_pending(self) -> bool:
        return self.status == AppointmentStatus.PENDING

    def can_transition_to(self, target: AppointmentStatus) -> bool:
        """Check the transition table for a move to ``target``."""
        return target in ALLOWED_TRANSITIONS[self.status]

    def transition_to(self, target: AppointmentStatus) -> None:
        """
        Move to ``target`` following the transition table.

        Raises:
            InvalidTransitionException: If the move is not allowed
        """
        if not self.can_transition_to(target):
            raise InvalidTransitionException(
                self.status.value, target.value, entity_id=self.id
            )
        self.status = target

    def override_status(self, target: AppointmentStatus, now: Optional[datetime] = None) -> None:
        """Set any status directly (staff edit screen)."""
        self.status = target
        if target == AppointmentStatus.COMPLETED and self.completed_at is None:
            self.completed_at = now or datetime.now()
        elif target != AppointmentStatus.COMPLETED:
            self.completed_at = None

    def request_cancellation(self) -> None:
        """Owner asks the clinic to cancel this appointment."""
        self.transition_to(AppointmentStatus.CANCELLATION_REQUESTED)

    def cancel(self) -> None:
        """Cancel the appointment and release its slot."""
        self.transition_to(AppointmentStatus.CANCELLED)

    def mark_missed(self) -> None:
        self.transition_to(AppointmentStatus.MISSED)

    def complete(
        self,
        administered_by: str,
        due_date: Optional[date] = None,
        completed_at: Optional[datetime] = None,
    ) -> None:
        """
        Record that the service was administered.

        Args:
            administered_by: Staff member who administered the service
            due_date: Optional next due date (e.g. booster shot)
            completed_at: Completion time, defaults to now
        """
        self.transition_to(AppointmentStatus.COMPLETED)
        self.administered_by = administered_by
        self.due_date = due_date
        self.completed_at = completed_at or datetime.now()

    def get_status_display(self) -> str:
        """Get a human-readable status display."""
        if self.status == AppointmentStatus.PENDING and self.requested_by_owner:
            return "Requested"
        status_display = {
            AppointmentStatus.PENDING: "Pending",
            AppointmentStatus.CANCELLATION_REQUESTED: "Cancellation Requested",
            AppointmentStatus.CANCELLED: "Cancelled",
            AppointmentStatus.COMPLETED: "Completed",
            AppointmentStatus.MISSED: "Missed",
        }
        return status_display.get(self.status, self.status.value.title())
