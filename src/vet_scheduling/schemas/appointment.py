"""
Appointment Pydantic schemas for request validation and serialization.

Booking screens post loosely filled rows, so item schemas only coerce
types; completeness is checked per item by the services so that errors can
name the offending row.
"""

from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..models.appointment import Appointment, AppointmentStatus
from ..models.appointment_group import GroupStatus


class ItemBase(BaseModel):
    """Common configuration for posted booking rows."""

    model_config = ConfigDict(
        from_attributes=True,
        str_strip_whitespace=True,
        extra="ignore",
    )

    @field_validator("notes", check_fields=False)
    @classmethod
    def blank_notes_to_none(cls, v: Optional[str]) -> Optional[str]:
        """Validate text fields."""
        if v is not None:
            if not v:
                return None
            if len(v) > 2000:
                raise ValueError("Notes are too long (maximum 2000 characters)")
        return v


class AppointmentItem(ItemBase):
    """One service row of a booking form."""

    pet_id: Optional[int] = Field(None, description="Pet receiving the service")
    category_id: Optional[int] = Field(None, description="Service category")
    subtype_id: Optional[int] = Field(None, description="Service subtype")
    appointment_date: Optional[date] = Field(None, description="Requested day")
    appointment_time: Optional[str] = Field(
        None, description="Requested time of day, HH:MM"
    )
    notes: Optional[str] = Field(None, description="Free-form notes")

    @field_validator(
        "pet_id", "category_id", "subtype_id", "appointment_date", "appointment_time",
        mode="before",
    )
    @classmethod
    def blank_to_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    def has_service(self) -> bool:
        """Pet and category are the minimum for a bookable row."""
        return self.pet_id is not None and self.category_id is not None

    def missing_fields(self, require_subtype: bool = True) -> List[str]:
        """Names of required fields that are empty."""
        required = ["pet_id", "category_id", "appointment_date", "appointment_time"]
        if require_subtype:
            required.insert(2, "subtype_id")
        return [name for name in required if getattr(self, name) is None]


class GroupEditItem(ItemBase):
    """Row of the group edit screen; rows without ``id`` are new members."""

    id: Optional[int] = Field(None, description="Existing appointment id")
    pet_id: Optional[int] = None
    category_id: Optional[int] = None
    subtype_id: Optional[int] = None
    notes: Optional[str] = None


class AppointmentEdit(ItemBase):
    """Partial staff edit of one appointment."""

    pet_id: Optional[int] = None
    category_id: Optional[int] = None
    subtype_id: Optional[int] = None
    appointment_date: Optional[date] = None
    appointment_time: Optional[str] = None
    status: Optional[AppointmentStatus] = None
    notes: Optional[str] = None
    administered_by: Optional[str] = Field(None, max_length=200)
    due_date: Optional[date] = None

    @model_validator(mode="after")
    def validate_time_with_date(self) -> "AppointmentEdit":
        """A new date needs a time to form a timestamp."""
        if self.appointment_date is not None and not self.appointment_time:
            raise ValueError("Appointment time is required when changing the date")
        return self


class CompletionItem(ItemBase):
    """One row of the batch completion form."""

    appointment_id: int = Field(..., description="Appointment to complete")
    administered_by: str = Field(..., min_length=1, max_length=200)
    due_date: Optional[date] = Field(None, description="Next due date, if any")


class AppointmentListQuery(BaseModel):
    """Filters for the staff appointment management listing."""

    search: Optional[str] = Field(None, description="Matches pet or owner name")
    status: Optional[AppointmentStatus] = None
    sort_by: str = Field("date", pattern="^(id|owner|date)$")
    descending: bool = True
    page: int = Field(1, ge=1)
    page_size: int = Field(10, ge=1, le=100)


class AppointmentRead(BaseModel):
    """Serialized appointment."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    pet_id: int
    category_id: Optional[int] = None
    subtype_id: Optional[int] = None
    appointment_at: datetime
    status: AppointmentStatus
    status_display: str
    group_id: Optional[int] = None
    notes: Optional[str] = None
    administered_by: Optional[str] = None
    due_date: Optional[date] = None

    @classmethod
    def from_model(cls, appointment: Appointment) -> "AppointmentRead":
        return cls(
            id=appointment.id,
            pet_id=appointment.pet_id,
            category_id=appointment.category_id,
            subtype_id=appointment.subtype_id,
            appointment_at=appointment.appointment_at,
            status=appointment.status,
            status_display=appointment.get_status_display(),
            group_id=appointment.group_id,
            notes=appointment.notes,
            administered_by=appointment.administered_by,
            due_date=appointment.due_date,
        )


class GroupRead(BaseModel):
    """Serialized appointment group with its members."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    group_at: datetime
    status: GroupStatus
    notes: Optional[str] = None
    finalized_at: Optional[datetime] = None
    appointments: List[AppointmentRead] = Field(default_factory=list)


class AppointmentPage(BaseModel):
    """One page of the management listing."""

    items: List[AppointmentRead]
    total: int
    page: int
    page_size: int
    total_pages: int
