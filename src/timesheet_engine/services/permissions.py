"""Role lookup and permission checks for organization members."""

from __future__ import annotations

from enum import Enum
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from timesheet_engine.calculators.types import Role, at_least
from timesheet_engine.models import Member


class Resource(str, Enum):
    TIME_SUMMARY = "TIME_SUMMARY"
    REPORTS = "REPORTS"
    RATES = "RATES"


class Action(str, Enum):
    VIEW = "VIEW"
    EXPORT = "EXPORT"
    CREATE = "CREATE"
    UPDATE = "UPDATE"


# Lowest role allowed to perform each (resource, action)
API_PERMISSIONS: dict[tuple[Resource, Action], Role] = {
    (Resource.TIME_SUMMARY, Action.VIEW): Role.EMPLOYEE,
    (Resource.TIME_SUMMARY, Action.EXPORT): Role.EMPLOYEE,
    (Resource.REPORTS, Action.VIEW): Role.EMPLOYEE,
    (Resource.REPORTS, Action.CREATE): Role.MANAGER,
    (Resource.RATES, Action.VIEW): Role.MANAGER,
    (Resource.RATES, Action.UPDATE): Role.ADMIN,
}


class PermissionDeniedError(Exception):
    """Raised when a user may not perform an action in an organization."""

    kind = "permission_denied"

    def __init__(
        self,
        user_id: UUID,
        organization_id: UUID,
        resource: str,
        action: str,
    ):
        self.user_id = user_id
        self.organization_id = organization_id
        self.resource = resource
        self.action = action
        super().__init__(
            f"User {user_id} may not {action} {resource} in organization {organization_id}"
        )


def get_role(member: Member) -> Role:
    """Typed role of a member."""
    return Role(member.role)


def is_allowed(role: Role | str, resource: Resource | str, action: Action | str) -> bool:
    """Check the permission table; unknown pairs are denied."""
    threshold = API_PERMISSIONS.get((Resource(resource), Action(action)))
    if threshold is None:
        return False
    return at_least(role, threshold)


class PermissionService:
    """Resolves membership and enforces the permission table."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_member(self, user_id: UUID, organization_id: UUID) -> Member | None:
        return await self.session.scalar(
            select(Member).where(
                Member.user_id == user_id,
                Member.organization_id == organization_id,
                Member.is_active.is_(True),
            )
        )

    async def assert_permission(
        self,
        user_id: UUID,
        organization_id: UUID,
        resource: Resource | str,
        action: Action | str,
    ) -> Member:
        """Return the caller's membership, or raise PermissionDeniedError.

        Inactive or missing memberships are denied like an insufficient role.
        """
        member = await self.get_member(user_id, organization_id)
        if member is None or not is_allowed(member.role, resource, action):
            raise PermissionDeniedError(
                user_id, organization_id, Resource(resource).value, Action(action).value
            )
        return member
