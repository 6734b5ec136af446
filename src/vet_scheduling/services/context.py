"""
Identity of the user on whose behalf an operation runs.
"""

import enum
from dataclasses import dataclass
from typing import Optional

from ..exceptions import AuthorizationException


class Role(enum.Enum):
    """Roles that can drive the booking engine."""

    STAFF = "Staff"
    OWNER = "Owner"


@dataclass(frozen=True)
class AuthContext:
    """
    Caller identity passed explicitly to every operation.

    Attributes:
        role: Staff or Owner
        user_id: Id of the logged-in user
        user_name: Display name used in audit entries
        owner_id: Owner record of the user (owners only)
    """

    role: Role
    user_id: int
    user_name: str
    owner_id: Optional[int] = None

    @classmethod
    def staff(cls, user_id: int, user_name: str) -> "AuthContext":
        return cls(role=Role.STAFF, user_id=user_id, user_name=user_name)

    @classmethod
    def owner(cls, user_id: int, owner_id: int, user_name: str) -> "AuthContext":
        return cls(role=Role.OWNER, user_id=user_id, user_name=user_name, owner_id=owner_id)

    @property
    def is_staff(self) -> bool:
        return self.role == Role.STAFF

    @property
    def is_owner(self) -> bool:
        return self.role == Role.OWNER

    def require_staff(self, action: str) -> None:
        """
        Reject non-staff callers.

        Raises:
            AuthorizationException: If the caller is not staff
        """
        if not self.is_staff:
            raise AuthorizationException(
                f"Only staff can {action}.", role=self.role.value, user_id=self.user_id
            )

    def owns(self, owner_id: Optional[int]) -> bool:
        """Whether an owner caller is the given owner."""
        return self.owner_id is not None and self.owner_id == owner_id


SYSTEM_ACTOR = "System"
