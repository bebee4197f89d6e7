"""Saved report definitions and share-secret lookup."""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from timesheet_engine.models import Report
from timesheet_engine.services.report_query import ReportFilters, ReportProperties

logger = logging.getLogger(__name__)

SHARE_SECRET_BYTES = 32


class ReportNotFoundError(Exception):
    """Raised when a report or share secret does not resolve."""

    kind = "report_not_found"

    def __init__(self, identifier: UUID | str):
        self.identifier = identifier
        super().__init__(f"Report {identifier} not found")


def new_share_secret() -> str:
    return secrets.token_urlsafe(SHARE_SECRET_BYTES)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


class ReportService:
    """CRUD for saved reports scoped to one organization at a time."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_report(
        self,
        organization_id: UUID,
        name: str,
        filters: ReportFilters,
        description: str = "",
        is_public: bool = False,
        public_until: datetime | None = None,
    ) -> Report:
        """Save a report; public reports get a fresh share secret."""
        report = Report(
            organization_id=organization_id,
            name=name,
            description=description or "",
            is_public=is_public,
            public_until=public_until if is_public else None,
            share_secret=new_share_secret() if is_public else None,
            properties=ReportProperties.from_filters(filters).to_stored(),
        )
        self.session.add(report)
        await self.session.flush()
        logger.info("Created report %s (public=%s)", report.report_id, is_public)
        return report

    async def update_report(
        self,
        organization_id: UUID,
        report_id: UUID,
        *,
        name: str | None = None,
        description: str | None = None,
        is_public: bool | None = None,
        public_until: datetime | None = None,
        filters: ReportFilters | None = None,
    ) -> Report:
        """Update a report.

        Making a report public issues a share secret if it has none; making
        it private drops the secret and expiry. public_until is only
        applied to public reports.
        """
        report = await self.get_report(organization_id, report_id)

        if name is not None:
            report.name = name
        if description is not None:
            report.description = description
        if filters is not None:
            report.properties = ReportProperties.from_filters(filters).to_stored()

        if is_public is True:
            report.is_public = True
            if report.share_secret is None:
                report.share_secret = new_share_secret()
        elif is_public is False:
            report.is_public = False
            report.share_secret = None
            report.public_until = None

        if report.is_public and public_until is not None:
            report.public_until = public_until

        await self.session.flush()
        return report

    async def delete_report(self, organization_id: UUID, report_id: UUID) -> None:
        report = await self.get_report(organization_id, report_id)
        await self.session.delete(report)
        await self.session.flush()
        logger.info("Deleted report %s", report_id)

    async def get_report(self, organization_id: UUID, report_id: UUID) -> Report:
        report = await self.session.scalar(
            select(Report).where(
                Report.report_id == report_id,
                Report.organization_id == organization_id,
            )
        )
        if report is None:
            raise ReportNotFoundError(report_id)
        return report

    async def list_reports(
        self,
        organization_id: UUID,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[Report], int]:
        """Page through an organization's reports, newest first.

        Returns:
            Tuple of (reports on the page, total count)
        """
        page = max(page, 1)
        total = await self.session.scalar(
            select(func.count())
            .select_from(Report)
            .where(Report.organization_id == organization_id)
        )
        result = await self.session.scalars(
            select(Report)
            .where(Report.organization_id == organization_id)
            .order_by(Report.created_at.desc(), Report.name)
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return list(result.all()), total or 0

    async def get_public_report(self, share_secret: str, now: datetime | None = None) -> Report:
        """Resolve a share secret to a report that is public and not expired.

        Unknown, private and expired reports are all reported as not found.
        """
        # TODO: compare secrets with secrets.compare_digest once lookups go
        # through a hashed secret column instead of an equality match
        now = _as_utc(now or _utcnow())
        report = await self.session.scalar(
            select(Report).where(
                Report.share_secret == share_secret,
                Report.is_public.is_(True),
                or_(Report.public_until.is_(None), Report.public_until >= now),
            )
        )
        if report is None:
            raise ReportNotFoundError("<share secret>")
        return report
