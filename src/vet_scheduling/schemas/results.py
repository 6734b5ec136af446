"""
Result schemas returned by the booking engine operations.
"""

from datetime import date, datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from .appointment import AppointmentRead, GroupRead


class TimeSlot(BaseModel):
    """One tick of the daily slot grid."""

    time: str = Field(..., description="Time of day, HH:MM")
    label: str = Field(..., description="Display label, e.g. 09:05 AM")
    available: bool


class DayAvailability(BaseModel):
    """Slot grid for one day."""

    day: date
    slots: List[TimeSlot]

    @property
    def available_times(self) -> List[str]:
        return [slot.time for slot in self.slots if slot.available]

    @property
    def taken_times(self) -> List[str]:
        return [slot.time for slot in self.slots if not slot.available]


class GroupResult(BaseModel):
    """Outcome of creating or editing a group."""

    group: GroupRead
    message: str
    updated_ids: List[int] = Field(default_factory=list)
    added_ids: List[int] = Field(default_factory=list)
    removed_ids: List[int] = Field(default_factory=list)
    skipped_items: List[int] = Field(
        default_factory=list, description="1-based indexes of ignored rows"
    )


class BatchResult(BaseModel):
    """Outcome of a batch operation over ids."""

    processed_ids: List[int] = Field(default_factory=list)
    skipped_ids: List[int] = Field(default_factory=list)
    message: str = ""

    @property
    def success(self) -> bool:
        return bool(self.processed_ids)


class DraftSaveResult(BaseModel):
    """Outcome of saving drafts into the cart."""

    saved_ids: List[int] = Field(default_factory=list)
    duplicate_items: List[int] = Field(
        default_factory=list, description="1-based indexes of rows already staged"
    )
    draft_group_keys: List[str] = Field(default_factory=list)
    message: str = ""


class ConversionResult(BaseModel):
    """Outcome of converting draft groups into appointment groups."""

    converted: Dict[str, int] = Field(
        default_factory=dict, description="Draft key to created group id"
    )
    failed: Dict[str, str] = Field(
        default_factory=dict, description="Draft key to failure message"
    )
    appointment_ids: List[int] = Field(default_factory=list)
    message: str = ""

    @property
    def success(self) -> bool:
        return bool(self.converted)


class SweepResult(BaseModel):
    """Outcome of one missed-appointment sweep pass."""

    ran_at: datetime
    marked_ids: List[int] = Field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.marked_ids)


class ReminderResult(BaseModel):
    """Outcome of a manual reminder request."""

    appointment_id: int
    sms_sent: bool = False
    email_sent: bool = False
    sms_error: Optional[str] = None
    email_error: Optional[str] = None
    message: str = ""

    @property
    def success(self) -> bool:
        return self.sms_sent or self.email_sent


class AppointmentResult(BaseModel):
    """Outcome of a single-appointment operation."""

    appointment: AppointmentRead
    message: str
