"""
Shared plumbing for the booking services.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from ..database.session import SessionManager
from ..exceptions import AuthorizationException, NotFoundException
from ..utils.config import SchedulingSettings
from ..utils.datetime_utils import get_clinic_now
from .collaborators import (
    AuditSink,
    CatalogStore,
    LoggingAuditSink,
    LoggingNotificationSink,
    NotificationSink,
    OutboundEvents,
    PetInfo,
)
from .context import AuthContext

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


class BaseService:
    """Holds the collaborators every booking service needs."""

    def __init__(
        self,
        sessions: SessionManager,
        settings: Optional[SchedulingSettings] = None,
        catalog: Optional[CatalogStore] = None,
        notifier: Optional[NotificationSink] = None,
        auditor: Optional[AuditSink] = None,
        clock: Optional[Clock] = None,
    ):
        self.sessions = sessions
        self.settings = settings or SchedulingSettings()
        self.catalog = catalog
        self.notifier = notifier or LoggingNotificationSink()
        self.auditor = auditor or LoggingAuditSink()
        self._clock = clock

    def now(self) -> datetime:
        """Current clinic-local time."""
        if self._clock is not None:
            return self._clock()
        return get_clinic_now(self.settings.clinic_timezone)

    async def publish(self, events: OutboundEvents) -> None:
        """Deliver events gathered during a committed transaction."""
        await events.publish(self.notifier, self.auditor)

    async def get_pet(self, pet_id: int) -> PetInfo:
        """
        Look a pet up in the catalog.

        Raises:
            NotFoundException: If the catalog does not know the pet
        """
        pet = await self.catalog.get_pet(pet_id) if self.catalog else None
        if pet is None:
            raise NotFoundException("Pet", pet_id)
        return pet

    async def find_pet(self, pet_id: Optional[int]) -> Optional[PetInfo]:
        if pet_id is None or self.catalog is None:
            return None
        return await self.catalog.get_pet(pet_id)

    async def pet_name(self, pet_id: int) -> str:
        pet = await self.find_pet(pet_id)
        return pet.name if pet else f"Pet #{pet_id}"

    async def category_name(self, category_id: Optional[int]) -> str:
        if category_id is None or self.catalog is None:
            return "appointment"
        category = await self.catalog.get_category(category_id)
        return category.name if category else "appointment"

    async def require_pet_access(self, ctx: AuthContext, pet_id: int) -> PetInfo:
        """
        Load a pet and make sure an owner caller owns it.

        Raises:
            NotFoundException: If the pet does not exist
            AuthorizationException: If an owner acts on someone else's pet
        """
        pet = await self.get_pet(pet_id)
        if ctx.is_owner and not ctx.owns(pet.owner_id):
            raise AuthorizationException(
                "You can only manage appointments for your own pets.",
                role=ctx.role.value,
                user_id=ctx.user_id,
            )
        return pet
