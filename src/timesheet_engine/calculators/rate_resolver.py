"""Billable rate resolution over the four-level precedence cascade."""

from __future__ import annotations

import logging
from collections.abc import Collection
from decimal import Decimal
from typing import Protocol
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from timesheet_engine.calculators.types import NO_RATE, RATE_PRECEDENCE, RateLevel, ResolvedRate
from timesheet_engine.models import Member, Organization, Project, ProjectMember

logger = logging.getLogger(__name__)


class RateLookup(Protocol):
    """Read access to the rate stored at each cascade level."""

    async def project_member_rate(self, user_id: UUID, project_id: UUID) -> Decimal | None: ...

    async def project_rate(self, project_id: UUID) -> Decimal | None: ...

    async def organization_member_rate(
        self, user_id: UUID, organization_id: UUID
    ) -> Decimal | None: ...

    async def organization_rate(self, organization_id: UUID) -> Decimal | None: ...


class SqlRateLookup:
    """RateLookup backed by the ORM tables."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def project_member_rate(self, user_id: UUID, project_id: UUID) -> Decimal | None:
        return await self.session.scalar(
            select(ProjectMember.billable_rate).where(
                ProjectMember.user_id == user_id,
                ProjectMember.project_id == project_id,
            )
        )

    async def project_rate(self, project_id: UUID) -> Decimal | None:
        return await self.session.scalar(
            select(Project.billable_rate).where(Project.project_id == project_id)
        )

    async def organization_member_rate(
        self, user_id: UUID, organization_id: UUID
    ) -> Decimal | None:
        return await self.session.scalar(
            select(Member.billable_rate).where(
                Member.user_id == user_id,
                Member.organization_id == organization_id,
            )
        )

    async def organization_rate(self, organization_id: UUID) -> Decimal | None:
        return await self.session.scalar(
            select(Organization.billable_rate).where(
                Organization.organization_id == organization_id
            )
        )


class RateResolver:
    """Resolves the billable hourly rate for a user's time.

    Precedence (first non-null rate wins, no blending):
    1. Project-member override (this user on this project)
    2. Project default rate
    3. Organization-member override (this user, any project)
    4. Organization default rate

    Project levels are only consulted when a project is given. When no
    level holds a rate the result is None; callers decide what that means
    for billing.
    """

    def __init__(self, lookup: RateLookup):
        self.lookup = lookup

    @classmethod
    def for_session(cls, session: AsyncSession) -> RateResolver:
        return cls(SqlRateLookup(session))

    async def resolve_rate(
        self,
        user_id: UUID,
        organization_id: UUID,
        project_id: UUID | None = None,
    ) -> Decimal | None:
        """Return the applicable rate, or None if no level has one."""
        resolved = await self.resolve(user_id, organization_id, project_id)
        return resolved.rate

    async def resolve(
        self,
        user_id: UUID,
        organization_id: UUID,
        project_id: UUID | None = None,
        exclude: Collection[RateLevel] = (),
    ) -> ResolvedRate:
        """Walk the cascade and report both the rate and the level it came from.

        Args:
            user_id: User the time belongs to
            organization_id: Organization the time is tracked in
            project_id: Optional project; without it only organization levels apply
            exclude: Levels to skip, used to find what a level falls back to
        """
        for level in RATE_PRECEDENCE:
            if level in exclude:
                continue
            if level.needs_project and project_id is None:
                continue

            rate = await self._rate_at(level, user_id, organization_id, project_id)
            if rate is not None:
                logger.debug(
                    "Resolved rate %s from %s for user %s project %s",
                    rate,
                    level.value,
                    user_id,
                    project_id,
                )
                return ResolvedRate(rate=Decimal(rate), source=level)

        return NO_RATE

    async def _rate_at(
        self,
        level: RateLevel,
        user_id: UUID,
        organization_id: UUID,
        project_id: UUID | None,
    ) -> Decimal | None:
        if level == RateLevel.PROJECT_MEMBER:
            return await self.lookup.project_member_rate(user_id, project_id)
        if level == RateLevel.PROJECT:
            return await self.lookup.project_rate(project_id)
        if level == RateLevel.ORGANIZATION_MEMBER:
            return await self.lookup.organization_member_rate(user_id, organization_id)
        return await self.lookup.organization_rate(organization_id)
