"""
Appointment draft model.

Drafts are staged bookings kept in a staff member's cart. Drafts that share
a ``draft_group_key`` become one appointment group when converted.
"""

from datetime import date, datetime
from typing import Optional

from sqlalchemy import Date, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ..utils.datetime_utils import combine_slot, parse_time_of_day
from .base import BaseModel


class AppointmentDraft(BaseModel):
    """One staged service inside a draft group."""

    __tablename__ = "appointment_drafts"

    user_id: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        index=True,
        comment="Staff user who created the draft"
    )

    owner_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        index=True,
        comment="Pet owner the draft is staged for"
    )

    pet_id: Mapped[int] = mapped_column(Integer, nullable=False)

    category_id: Mapped[int] = mapped_column(Integer, nullable=False)

    subtype_id: Mapped[int] = mapped_column(Integer, nullable=False)

    appointment_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
        comment="Requested day"
    )

    appointment_time: Mapped[str] = mapped_column(
        String(5),
        nullable=False,
        comment="Requested time of day as HH:MM"
    )

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    draft_group_key: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        index=True,
        comment="Drafts sharing a key convert into one group"
    )

    __table_args__ = (
        Index('idx_appointment_drafts_slot', 'appointment_date', 'appointment_time'),
    )

    def __repr__(self) -> str:
        return (
            f"<AppointmentDraft(id={self.id}, key='{self.draft_group_key}', "
            f"pet_id={self.pet_id}, at='{self.appointment_date} {self.appointment_time}')>"
        )

    @property
    def slot_at(self) -> datetime:
        """Timestamp the draft would occupy once converted."""
        return combine_slot(self.appointment_date, parse_time_of_day(self.appointment_time))

    def same_item(
        self,
        pet_id: int,
        category_id: int,
        subtype_id: int,
        appointment_date: date,
        appointment_time: str,
    ) -> bool:
        """Whether this draft already stages the given service at the given time."""
        return (
            self.pet_id == pet_id
            and self.category_id == category_id
            and self.subtype_id == subtype_id
            and self.appointment_date == appointment_date
            and self.appointment_time == appointment_time
        )
