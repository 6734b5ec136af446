"""
Booking services for the vet-scheduling package.

Every service takes a SessionManager plus optional settings, catalog store,
notification and audit sinks, and a clock. SchedulingEngine wires them
together.
"""

from .base import BaseService, Clock
from .collaborators import (
    AuditEntry,
    AuditSink,
    CatalogStore,
    CategoryInfo,
    InMemoryAuditSink,
    InMemoryCatalogStore,
    InMemoryNotificationSink,
    LoggingAuditSink,
    LoggingNotificationSink,
    Notification,
    NotificationSink,
    OutboundEvents,
    PetInfo,
    SubtypeInfo,
)
from .conflict_guard import ConflictGuard
from .context import SYSTEM_ACTOR, AuthContext, Role
from .drafts import DraftCart
from .gateways import (
    EmailGateway,
    HttpSmsGateway,
    RecordingEmailGateway,
    RecordingSmsGateway,
    SmsGateway,
    SmtpEmailGateway,
)
from .groups import GroupCoordinator
from .lifecycle import AppointmentLifecycle
from .missed_sweep import MissedSweep, MissedSweepScheduler
from .reminders import ReminderChannel, ReminderService, ReminderThrottle
from .slot_grid import SlotGrid

__all__ = [
    "AppointmentLifecycle",
    "AuditEntry",
    "AuditSink",
    "AuthContext",
    "BaseService",
    "CatalogStore",
    "CategoryInfo",
    "Clock",
    "ConflictGuard",
    "DraftCart",
    "EmailGateway",
    "GroupCoordinator",
    "HttpSmsGateway",
    "InMemoryAuditSink",
    "InMemoryCatalogStore",
    "InMemoryNotificationSink",
    "LoggingAuditSink",
    "LoggingNotificationSink",
    "MissedSweep",
    "MissedSweepScheduler",
    "Notification",
    "NotificationSink",
    "OutboundEvents",
    "PetInfo",
    "RecordingEmailGateway",
    "RecordingSmsGateway",
    "ReminderChannel",
    "ReminderService",
    "ReminderThrottle",
    "Role",
    "SYSTEM_ACTOR",
    "SlotGrid",
    "SmsGateway",
    "SmtpEmailGateway",
    "SubtypeInfo",
]
