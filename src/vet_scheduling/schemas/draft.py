"""
Draft cart schemas.
"""

from datetime import date
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .appointment import AppointmentItem


class DraftItem(AppointmentItem):
    """A service row staged in the draft cart."""

    owner_id: Optional[int] = Field(None, description="Owner the draft is staged for")
    draft_group_key: Optional[str] = Field(
        None, max_length=64, description="Key binding drafts into one future group"
    )

    @field_validator("draft_group_key", mode="before")
    @classmethod
    def blank_key_to_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v


class DraftGroupItem(DraftItem):
    """Row of the staff draft group editor; rows without ``id`` are new."""

    id: Optional[int] = None


class DraftRead(BaseModel):
    """Serialized draft."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    owner_id: Optional[int] = None
    pet_id: int
    category_id: int
    subtype_id: int
    appointment_date: date
    appointment_time: str
    notes: Optional[str] = None
    draft_group_key: str


class DraftCartGroup(BaseModel):
    """Drafts of one key as shown in the cart."""

    draft_group_key: str
    drafts: List[DraftRead]
