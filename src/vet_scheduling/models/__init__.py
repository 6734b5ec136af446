"""
SQLAlchemy models for the vet-scheduling package.

This module contains the booking tables: appointments, appointment groups,
appointment drafts and the slot reservation ledger.
"""

from .base import Base, BaseModel
from .appointment import (
    ALLOWED_TRANSITIONS,
    TERMINAL_STATUSES,
    Appointment,
    AppointmentStatus,
)
from .appointment_group import AppointmentGroup, GroupStatus
from .appointment_draft import AppointmentDraft
from .slot_reservation import SlotReservation

__all__ = [
    "Base",
    "BaseModel",
    "Appointment",
    "AppointmentStatus",
    "ALLOWED_TRANSITIONS",
    "TERMINAL_STATUSES",
    "AppointmentGroup",
    "GroupStatus",
    "AppointmentDraft",
    "SlotReservation",
]
