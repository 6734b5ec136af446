"""
Appointment group model.

A group bundles up to a handful of services booked for the same timestamp
(for example a vaccination and a grooming session for two pets of the same
owner). The group owns the timestamp; its members mirror it.
"""

import enum
from datetime import datetime
from typing import List, Optional

from sqlalchemy import DateTime, Enum, Index, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .appointment import Appointment, AppointmentStatus
from .base import BaseModel


class GroupStatus(enum.Enum):
    """Enumeration of appointment group statuses."""

    DRAFT = "draft"
    PENDING = "pending"
    FINALIZED = "finalized"


class AppointmentGroup(BaseModel):
    """Several appointments sharing one slot."""

    __tablename__ = "appointment_groups"

    def __init__(self, **kwargs):
        if 'status' not in kwargs:
            kwargs['status'] = GroupStatus.PENDING
        super().__init__(**kwargs)

    group_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        index=True,
        comment="Shared clinic-local timestamp of every member"
    )

    notes: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="How the group was created"
    )

    status: Mapped[GroupStatus] = mapped_column(
        Enum(GroupStatus, name="group_status"),
        nullable=False,
        default=GroupStatus.PENDING,
        comment="Draft, pending or finalized; finalized is one-way"
    )

    finalized_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
        nullable=True,
        comment="When staff finalized the group"
    )

    created_by_user_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        comment="User who created the group"
    )

    appointments: Mapped[List[Appointment]] = relationship(
        Appointment,
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by=Appointment.id,
        passive_deletes=True,
    )

    __table_args__ = (
        Index('idx_appointment_groups_status', 'status'),
    )

    def __repr__(self) -> str:
        return (
            f"<AppointmentGroup(id={self.id}, group_at='{self.group_at}', "
            f"status='{self.status.value}')>"
        )

    @property
    def is_finalized(self) -> bool:
        return self.status == GroupStatus.FINALIZED

    @property
    def holds_slot(self) -> bool:
        """A group keeps its slot while any member is not cancelled."""
        return any(member.holds_slot for member in self.appointments)

    def all_members_pending(self) -> bool:
        """True when every member can still be cancelled by its owner."""
        return bool(self.appointments) and all(
            member.status == AppointmentStatus.PENDING for member in self.appointments
        )

    def move_to(self, new_at: datetime) -> None:
        """Set the group timestamp and copy it onto every member."""
        self.group_at = new_at
        for member in self.appointments:
            member.appointment_at = new_at

    def finalize(self, now: Optional[datetime] = None) -> bool:
        """
        Mark the group finalized.

        Returns:
            False if the group was already finalized
        """
        if self.is_finalized:
            return False
        self.status = GroupStatus.FINALIZED
        self.finalized_at = now or datetime.now()
        return True
