"""
Interfaces to the systems the booking engine talks to.

Pets, owners and the service catalog live in an external catalog store.
Notifications and audit entries are published to sinks after the
transaction that produced them commits. In-memory and logging
implementations are provided for development and tests.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@dataclass
class PetInfo:
    """Pet as seen by the booking engine, with its owner's contact details."""

    id: int
    name: str
    owner_id: int
    owner_name: str = ""
    owner_user_id: Optional[int] = None
    owner_phone: Optional[str] = None
    owner_email: Optional[str] = None


@dataclass
class CategoryInfo:
    id: int
    name: str


@dataclass
class SubtypeInfo:
    id: int
    name: str
    category_id: Optional[int] = None


@dataclass
class Notification:
    """In-app notification addressed to a role or to one user."""

    message: str
    type: str
    target_role: Optional[str] = None
    target_user_id: Optional[int] = None
    redirect_url: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)


@dataclass
class AuditEntry:
    """System log line recorded for every booking mutation."""

    action_type: str
    module: str
    description: str
    performed_by: str
    timestamp: datetime = field(default_factory=datetime.now)


@runtime_checkable
class CatalogStore(Protocol):
    """Read access to pets and the service catalog."""

    async def get_pet(self, pet_id: int) -> Optional[PetInfo]:
        ...

    async def get_category(self, category_id: int) -> Optional[CategoryInfo]:
        ...

    async def get_subtype(self, subtype_id: int) -> Optional[SubtypeInfo]:
        ...


@runtime_checkable
class NotificationSink(Protocol):
    async def publish(self, notification: Notification) -> None:
        ...


@runtime_checkable
class AuditSink(Protocol):
    async def record(self, entry: AuditEntry) -> None:
        ...


class InMemoryCatalogStore:
    """Dictionary-backed catalog for development and tests."""

    def __init__(self) -> None:
        self.pets: Dict[int, PetInfo] = {}
        self.categories: Dict[int, CategoryInfo] = {}
        self.subtypes: Dict[int, SubtypeInfo] = {}

    def add_pet(self, pet: PetInfo) -> PetInfo:
        self.pets[pet.id] = pet
        return pet

    def add_category(self, category: CategoryInfo) -> CategoryInfo:
        self.categories[category.id] = category
        return category

    def add_subtype(self, subtype: SubtypeInfo) -> SubtypeInfo:
        self.subtypes[subtype.id] = subtype
        return subtype

    async def get_pet(self, pet_id: int) -> Optional[PetInfo]:
        return self.pets.get(pet_id)

    async def get_category(self, category_id: int) -> Optional[CategoryInfo]:
        return self.categories.get(category_id)

    async def get_subtype(self, subtype_id: int) -> Optional[SubtypeInfo]:
        return self.subtypes.get(subtype_id)


class LoggingNotificationSink:
    """Writes notifications to the log."""

    async def publish(self, notification: Notification) -> None:
        target = notification.target_role or f"user {notification.target_user_id}"
        logger.info(f"Notification [{notification.type}] to {target}: {notification.message}")


class LoggingAuditSink:
    """Writes audit entries to the log."""

    async def record(self, entry: AuditEntry) -> None:
        logger.info(
            f"Audit [{entry.module}/{entry.action_type}] by {entry.performed_by}: "
            f"{entry.description}"
        )


class InMemoryNotificationSink:
    """Keeps published notifications in a list."""

    def __init__(self) -> None:
        self.notifications: List[Notification] = []

    async def publish(self, notification: Notification) -> None:
        self.notifications.append(notification)


class InMemoryAuditSink:
    """Keeps recorded audit entries in a list."""

    def __init__(self) -> None:
        self.entries: List[AuditEntry] = []

    async def record(self, entry: AuditEntry) -> None:
        self.entries.append(entry)


class OutboundEvents:
    """
    Notifications and audit entries produced inside one transaction.

    Nothing is published until :meth:`publish` is called, which services do
    only after the transaction committed.
    """

    def __init__(self) -> None:
        self.notifications: List[Notification] = []
        self.audit_entries: List[AuditEntry] = []

    def notify(
        self,
        message: str,
        type: str,
        target_role: Optional[str] = None,
        target_user_id: Optional[int] = None,
        redirect_url: Optional[str] = None,
    ) -> None:
        self.notifications.append(
            Notification(
                message=message,
                type=type,
                target_role=target_role,
                target_user_id=target_user_id,
                redirect_url=redirect_url,
            )
        )

    def audit(
        self,
        action_type: str,
        description: str,
        performed_by: str,
        module: str = "Appointments",
        timestamp: Optional[datetime] = None,
    ) -> None:
        entry = AuditEntry(
            action_type=action_type,
            module=module,
            description=description,
            performed_by=performed_by,
        )
        if timestamp is not None:
            entry.timestamp = timestamp
        self.audit_entries.append(entry)

    async def publish(self, notifier: NotificationSink, auditor: AuditSink) -> None:
        """
        Hand everything to the sinks.

        The booking is already committed at this point, so a failing sink is
        logged and the remaining events are still delivered.
        """
        for notification in self.notifications:
            try:
                await notifier.publish(notification)
            except Exception as e:
                logger.error(f"Failed to publish notification '{notification.message}': {e}")
        for entry in self.audit_entries:
            try:
                await auditor.record(entry)
            except Exception as e:
                logger.error(f"Failed to record audit entry '{entry.description}': {e}")
        self.notifications.clear()
        self.audit_entries.clear()
