"""
Slot reservation model.

One row per occupied clinic timestamp. The unique constraint on
``slot_at`` guarantees that two concurrent bookings for the same minute
cannot both commit, whatever the application-level checks concluded.
A reservation is owned by exactly one ungrouped appointment or one group.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel


class SlotReservation(BaseModel):
    """Ledger entry holding a timestamp for an appointment or a group."""

    __tablename__ = "slot_reservations"

    slot_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        comment="Held clinic-local timestamp"
    )

    appointment_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("appointments.id", ondelete="CASCADE"),
        nullable=True,
        comment="Ungrouped appointment holding the slot"
    )

    group_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("appointment_groups.id", ondelete="CASCADE"),
        nullable=True,
        comment="Group holding the slot"
    )

    __table_args__ = (
        UniqueConstraint('slot_at', name='uq_slot_reservations_slot_at'),
        UniqueConstraint('appointment_id', name='uq_slot_reservations_appointment'),
        UniqueConstraint('group_id', name='uq_slot_reservations_group'),
        CheckConstraint(
            '(appointment_id IS NULL) <> (group_id IS NULL)',
            name='ck_slot_reservations_single_holder'
        ),
    )

    def __repr__(self) -> str:
        holder = f"group={self.group_id}" if self.group_id else f"appointment={self.appointment_id}"
        return f"<SlotReservation(slot_at='{self.slot_at}', {holder})>"
