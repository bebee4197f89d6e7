"""Rate snapshotting for time entries as they are created, edited and stopped."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from timesheet_engine.calculators.rate_resolver import RateResolver
from timesheet_engine.models import TimeEntry

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy.ext.asyncio import AsyncSession

    from timesheet_engine.models import Member, Tag

logger = logging.getLogger(__name__)


class EntryBillingService:
    """Keeps a time entry's billable rate snapshot consistent with its billable flag.

    The resolver is consulted when an entry is created billable or flips to
    billable without a snapshotted rate. Clearing billable clears the rate.
    """

    def __init__(self, session: AsyncSession, resolver: RateResolver | None = None):
        self.session = session
        self.resolver = resolver or RateResolver.for_session(session)

    async def create_entry(
        self,
        member: Member,
        start: datetime,
        end: datetime | None = None,
        project_id: UUID | None = None,
        task_id: UUID | None = None,
        description: str | None = None,
        billable: bool = False,
        tags: Sequence[Tag] = (),
    ) -> TimeEntry:
        """Record a time entry for a member, running when no end is given."""
        entry = TimeEntry(
            organization_id=member.organization_id,
            user_id=member.user_id,
            member_id=member.member_id,
            project_id=project_id,
            task_id=task_id,
            description=description,
            start=start,
            end=end,
            billable=billable,
            billable_rate=None,
            rate_source=None,
            tags=list(tags),
        )
        entry.duration_seconds = entry.compute_duration()
        if billable:
            await self._snapshot_rate(entry)

        self.session.add(entry)
        await self.session.flush()
        return entry

    async def start_entry(
        self,
        member: Member,
        start: datetime,
        project_id: UUID | None = None,
        task_id: UUID | None = None,
        description: str | None = None,
        billable: bool = False,
    ) -> TimeEntry:
        """Start a running timer."""
        return await self.create_entry(
            member,
            start,
            end=None,
            project_id=project_id,
            task_id=task_id,
            description=description,
            billable=billable,
        )

    async def update_billable(self, entry: TimeEntry, billable: bool) -> TimeEntry:
        """Flip the billable flag, snapshotting or clearing the rate."""
        entry.billable = billable
        if not billable:
            entry.billable_rate = None
            entry.rate_source = None
        elif entry.billable_rate is None:
            await self._snapshot_rate(entry)
        await self.session.flush()
        return entry

    async def stop_entry(self, entry: TimeEntry, end: datetime) -> TimeEntry:
        """Stop a running timer and recompute its duration."""
        if not entry.is_running:
            raise ValueError(f"Time entry {entry.time_entry_id} is not running")
        entry.stop(end)
        await self.session.flush()
        return entry

    async def _snapshot_rate(self, entry: TimeEntry) -> None:
        resolved = await self.resolver.resolve(
            entry.user_id, entry.organization_id, entry.project_id
        )
        entry.billable_rate = resolved.rate
        entry.rate_source = resolved.source.value if resolved.source is not None else None
        if not resolved.found:
            logger.debug(
                "No rate applies to user %s project %s, entry stays unpriced",
                entry.user_id,
                entry.project_id,
            )
