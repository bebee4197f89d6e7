"""Rate changes at a cascade level and their propagation to stored entries."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import ColumnElement, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from timesheet_engine.calculators.rate_resolver import RateResolver
from timesheet_engine.calculators.types import RATE_PRECEDENCE, RateLevel, ResolvedRate
from timesheet_engine.models import Member, Organization, Project, ProjectMember, TimeEntry

logger = logging.getLogger(__name__)


class RateSourceNotFoundError(Exception):
    """Raised when the rate holder to edit does not exist in the organization."""

    kind = "rate_source_not_found"

    def __init__(self, level: RateLevel, source_id: UUID):
        self.level = level
        self.source_id = source_id
        super().__init__(f"No {level.value} rate source {source_id}")


class InvalidRateChangeError(Exception):
    """Raised when a rate change request is inconsistent."""

    kind = "invalid_rate_change"

    def __init__(self, level: RateLevel, reason: str):
        self.level = level
        self.reason = reason
        super().__init__(f"Invalid {level.value} rate change: {reason}")


@dataclass(frozen=True)
class RateChangeResult:
    """What a rate change did."""

    level: RateLevel
    source_id: UUID
    old_rate: Decimal | None
    new_rate: Decimal | None
    updated_entries: int = 0


@dataclass(frozen=True)
class _Source:
    """A locked rate holder and the context its entries are scoped by."""

    row: Any
    pk: Any
    user_id: UUID | None
    project_id: UUID | None


class RateCascadeService:
    """Applies a rate edit at one cascade level and optionally rewrites history.

    Source ids by level:
    - project_member: ProjectMember.project_member_id
    - project: Project.project_id
    - organization_member: Member.member_id
    - organization: Organization.organization_id

    With apply_to_existing, billable entries that were still tracking the
    level's old rate are rewritten, leaving entries that a more specific
    level governs alone. "Tracking" is decided by value: an entry's rate
    must equal the old rate, or, when the level held no rate, the rate the
    lower levels yield for that user. A cleared rate hands those entries
    the lower levels' rate the same way.

    The whole read, write and rewrite runs as one atomic unit on the
    injected session.
    """

    def __init__(self, session: AsyncSession, resolver: RateResolver | None = None):
        self.session = session
        self.resolver = resolver or RateResolver.for_session(session)

    async def apply_rate_change(
        self,
        level: RateLevel | str,
        source_id: UUID,
        new_rate: Decimal | None,
        *,
        organization_id: UUID,
        apply_to_existing: bool = False,
        user_id: UUID | None = None,
        project_id: UUID | None = None,
    ) -> RateChangeResult:
        """Change the rate at a level.

        Args:
            level: Cascade level being edited
            source_id: Primary key of the rate holder at that level
            new_rate: New hourly rate, None clears it
            organization_id: Organization the source must belong to
            apply_to_existing: Rewrite entries still tracking the old rate
            user_id: Optional check against the source's user
            project_id: Optional check against the source's project

        Raises:
            RateSourceNotFoundError: Source missing or in another organization
            InvalidRateChangeError: Negative rate or mismatched context
        """
        level = RateLevel(level)
        if new_rate is not None:
            new_rate = Decimal(new_rate)
            if new_rate < 0:
                raise InvalidRateChangeError(level, f"rate must not be negative, got {new_rate}")

        try:
            async with self._atomic():
                source = await self._lock_source(level, source_id, organization_id)
                self._check_context(level, source, user_id, project_id)

                old_rate = source.row.billable_rate
                await self.session.execute(
                    update(type(source.row))
                    .where(source.pk == source_id)
                    .values(billable_rate=new_rate)
                )

                updated = 0
                if apply_to_existing:
                    updated = await self._propagate(
                        level, source, organization_id, old_rate, new_rate
                    )
        except SQLAlchemyError:
            logger.exception(
                "Rate change at %s %s failed, nothing was written", level.value, source_id
            )
            raise

        logger.info(
            "Rate at %s %s changed %s -> %s, %d entries rewritten",
            level.value,
            source_id,
            old_rate,
            new_rate,
            updated,
        )
        return RateChangeResult(
            level=level,
            source_id=source_id,
            old_rate=old_rate,
            new_rate=new_rate,
            updated_entries=updated,
        )

    @asynccontextmanager
    async def _atomic(self) -> AsyncIterator[None]:
        if self.session.in_transaction():
            async with self.session.begin_nested():
                yield
        else:
            async with self.session.begin():
                yield

    async def _lock_source(
        self, level: RateLevel, source_id: UUID, organization_id: UUID
    ) -> _Source:
        if level == RateLevel.PROJECT_MEMBER:
            row = await self.session.scalar(
                select(ProjectMember)
                .join(Project, Project.project_id == ProjectMember.project_id)
                .where(
                    ProjectMember.project_member_id == source_id,
                    Project.organization_id == organization_id,
                )
                .with_for_update(of=ProjectMember)
                .execution_options(populate_existing=True)
            )
            pk = ProjectMember.project_member_id
            context = (row.user_id, row.project_id) if row is not None else (None, None)
        elif level == RateLevel.PROJECT:
            row = await self.session.scalar(
                select(Project)
                .where(
                    Project.project_id == source_id,
                    Project.organization_id == organization_id,
                )
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            pk = Project.project_id
            context = (None, source_id)
        elif level == RateLevel.ORGANIZATION_MEMBER:
            row = await self.session.scalar(
                select(Member)
                .where(
                    Member.member_id == source_id,
                    Member.organization_id == organization_id,
                )
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            pk = Member.member_id
            context = (row.user_id, None) if row is not None else (None, None)
        else:
            if source_id != organization_id:
                raise RateSourceNotFoundError(level, source_id)
            row = await self.session.scalar(
                select(Organization)
                .where(Organization.organization_id == source_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            pk = Organization.organization_id
            context = (None, None)

        if row is None:
            raise RateSourceNotFoundError(level, source_id)
        return _Source(row=row, pk=pk, user_id=context[0], project_id=context[1])

    def _check_context(
        self,
        level: RateLevel,
        source: _Source,
        user_id: UUID | None,
        project_id: UUID | None,
    ) -> None:
        if user_id is not None and source.user_id is not None and user_id != source.user_id:
            raise InvalidRateChangeError(level, f"source does not belong to user {user_id}")
        if (
            project_id is not None
            and source.project_id is not None
            and project_id != source.project_id
        ):
            raise InvalidRateChangeError(level, f"source does not belong to project {project_id}")

    def _scope(
        self, level: RateLevel, source: _Source, organization_id: UUID
    ) -> list[ColumnElement[bool]]:
        """Entries a rate at this level can govern."""
        if level == RateLevel.PROJECT_MEMBER:
            return [
                TimeEntry.user_id == source.user_id,
                TimeEntry.project_id == source.project_id,
            ]
        if level == RateLevel.PROJECT:
            overridden = select(ProjectMember.user_id).where(
                ProjectMember.project_id == source.project_id,
                ProjectMember.billable_rate.is_not(None),
            )
            return [
                TimeEntry.project_id == source.project_id,
                TimeEntry.user_id.not_in(overridden),
            ]
        if level == RateLevel.ORGANIZATION_MEMBER:
            unpriced_projects = select(Project.project_id).where(
                Project.organization_id == organization_id,
                Project.billable_rate.is_(None),
            )
            return [
                TimeEntry.organization_id == organization_id,
                TimeEntry.user_id == source.user_id,
                or_(
                    TimeEntry.project_id.is_(None),
                    TimeEntry.project_id.in_(unpriced_projects),
                ),
            ]
        overridden = select(Member.user_id).where(
            Member.organization_id == organization_id,
            Member.billable_rate.is_not(None),
        )
        return [
            TimeEntry.organization_id == organization_id,
            TimeEntry.user_id.not_in(overridden),
        ]

    async def _propagate(
        self,
        level: RateLevel,
        source: _Source,
        organization_id: UUID,
        old_rate: Decimal | None,
        new_rate: Decimal | None,
    ) -> int:
        scope = self._scope(level, source, organization_id)

        if old_rate is not None and new_rate is not None:
            if old_rate == new_rate:
                return 0
            return await self._rewrite(scope, old_rate, new_rate, level)

        # A null on either side means the lower levels decide, per user
        user_ids = (
            await self.session.scalars(
                select(TimeEntry.user_id).where(*scope, TimeEntry.billable.is_(True)).distinct()
            )
        ).all()

        updated = 0
        for entry_user_id in user_ids:
            fallback = await self._fallback(level, entry_user_id, organization_id, source)
            before = old_rate if old_rate is not None else fallback.rate
            if new_rate is not None:
                after, after_source = new_rate, level
            else:
                after, after_source = fallback.rate, fallback.source
            if before == after:
                continue
            updated += await self._rewrite(
                [*scope, TimeEntry.user_id == entry_user_id], before, after, after_source
            )
        return updated

    async def _fallback(
        self,
        level: RateLevel,
        user_id: UUID,
        organization_id: UUID,
        source: _Source,
    ) -> ResolvedRate:
        """Rate the levels below this one yield for a user."""
        covered = [other for other in RATE_PRECEDENCE if not level.more_specific_than(other)]
        return await self.resolver.resolve(
            user_id, organization_id, source.project_id, exclude=covered
        )

    async def _rewrite(
        self,
        criteria: list[ColumnElement[bool]],
        before: Decimal | None,
        after: Decimal | None,
        source: RateLevel | None,
    ) -> int:
        tracking = (
            TimeEntry.billable_rate.is_(None)
            if before is None
            else TimeEntry.billable_rate == before
        )
        result = await self.session.execute(
            update(TimeEntry)
            .where(*criteria, TimeEntry.billable.is_(True), tracking)
            .values(
                billable_rate=after,
                rate_source=source.value if source is not None else None,
            )
            .returning(TimeEntry.time_entry_id)
            # Entries already loaded in the session take the new values
            .execution_options(synchronize_session="fetch")
        )
        return len(result.all())
