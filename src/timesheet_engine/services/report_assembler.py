"""Report Assembler: grouped summaries, reports, exports and dashboards."""

from __future__ import annotations

import csv
import io
import logging
from collections.abc import Mapping, Sequence
from datetime import date, datetime, timedelta, timezone
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from timesheet_engine.calculators.grouping import (
    GroupingEngine,
    calculate_totals,
    date_range,
    entry_cost,
    entry_cost_cents,
    local_day_bounds,
)
from timesheet_engine.calculators.types import DATE_KEYS, Group, GroupKey, Totals
from timesheet_engine.calculators.visibility import filter_for_role
from timesheet_engine.config import Settings, get_settings
from timesheet_engine.models import Member, Organization, Project, Report, TimeEntry
from timesheet_engine.schemas import (
    DashboardDay,
    DashboardSummary,
    ExportRow,
    GroupedSummary,
    GroupSchema,
    ProjectTotal,
    RecentEntry,
    ReportAnalytics,
    ReportPayload,
    ReportPropertiesResponse,
    RunningEntry,
    TopGroup,
)
from timesheet_engine.services.report_query import (
    ReportFilters,
    ReportProperties,
    ViewerContext,
    build_entry_criteria,
)
from timesheet_engine.services.report_service import ReportService

logger = logging.getLogger(__name__)

HISTORY_GROUP = "day"
TOP_GROUP_COUNT = 5
RECENT_ENTRY_COUNT = 5

CSV_HEADER = [
    "Description",
    "Task",
    "Project",
    "Client",
    "Member",
    "Start",
    "End",
    "Duration (seconds)",
    "Billable",
    "Tags",
    "Cost",
]


def _hours(seconds: int) -> float:
    return round(seconds / 3600, 2)


def _percent(part: int, whole: int) -> float:
    return round(part / whole * 100, 1) if whole else 0.0


def _schema(groups: list[Group] | None) -> list[GroupSchema] | None:
    if groups is None:
        return None
    return [GroupSchema.model_validate(group.to_dict()) for group in groups]


class ReportAssembler:
    """Composes fetched entries, grouping and visibility into response shapes.

    Every read recomputes from the entry store; nothing is cached.
    """

    def __init__(
        self,
        session: AsyncSession,
        settings: Settings | None = None,
        utc_offset_minutes: int | None = None,
    ):
        self.session = session
        self.settings = settings or get_settings()
        if utc_offset_minutes is None:
            utc_offset_minutes = self.settings.default_utc_offset_minutes
        self.utc_offset_minutes = utc_offset_minutes
        self.grouping = GroupingEngine(utc_offset_minutes)

    def parse_filters(self, params: Mapping[str, Any]) -> ReportFilters:
        """Filters from request parameters, grouping by the configured default."""
        return ReportFilters.from_query(params, self.settings.default_groups)

    # ------------------------------------------------------------------
    # Entry fetching
    # ------------------------------------------------------------------

    async def fetch_entries(
        self,
        organization_id: UUID,
        filters: ReportFilters,
        viewer: ViewerContext | None = None,
        completed_only: bool = False,
        newest_first: bool = False,
    ) -> list[TimeEntry]:
        """Load the entries a filter set covers, with everything naming needs."""
        criteria = build_entry_criteria(
            organization_id, filters, viewer, self.utc_offset_minutes
        )
        if completed_only:
            criteria.append(TimeEntry.end.is_not(None))

        order = TimeEntry.start.desc() if newest_first else TimeEntry.start.asc()
        result = await self.session.scalars(
            select(TimeEntry)
            .where(*criteria)
            .options(
                selectinload(TimeEntry.member),
                selectinload(TimeEntry.project).selectinload(Project.client),
                selectinload(TimeEntry.task),
                selectinload(TimeEntry.tags),
            )
            .order_by(order)
            .execution_options(populate_existing=True)
        )
        entries = list(result.all())
        logger.debug(
            "Fetched %d entries for organization %s", len(entries), organization_id
        )
        return entries

    # ------------------------------------------------------------------
    # Summaries
    # ------------------------------------------------------------------

    def summarize(
        self,
        entries: Sequence[TimeEntry],
        groups: Sequence[str],
        fill_range: tuple[date, date] | None = None,
        viewer: ViewerContext | None = None,
        totals: Totals | None = None,
    ) -> GroupedSummary:
        """Group entries and redact the tree for the viewer.

        Totals come from the raw entries, so redaction never changes them.
        A single date dimension with a range is a gap-free series and is
        returned as is.
        """
        keys = [str(g) for g in groups]
        totals = totals or calculate_totals(entries)
        grouped = self.grouping.group_entries(entries, keys, fill_range)
        grouped_type = keys[0] if keys else None

        date_series = fill_range is not None and len(keys) == 1 and keys[0] in DATE_KEYS
        if viewer is not None and not date_series:
            grouped = filter_for_role(grouped, grouped_type, viewer.role)

        logger.debug("Grouped %d entries by %s", len(entries), keys)
        return GroupedSummary(
            seconds=totals.seconds,
            cost=totals.cost,
            grouped_type=grouped_type,
            grouped_data=_schema(grouped),
        )

    async def build_summary(
        self,
        organization_id: UUID,
        filters: ReportFilters,
        viewer: ViewerContext | None = None,
    ) -> GroupedSummary:
        """Grouped summary with the caller's dimensions."""
        entries = await self.fetch_entries(organization_id, filters, viewer)
        return self.summarize(entries, filters.groups, filters.date_range, viewer)

    async def build_history(
        self,
        organization_id: UUID,
        filters: ReportFilters,
        viewer: ViewerContext | None = None,
    ) -> GroupedSummary:
        """Per-day series over the filter range, whatever dimensions were asked for."""
        entries = await self.fetch_entries(organization_id, filters, viewer)
        return self.summarize(entries, [GroupKey.DATE.value], filters.date_range, viewer)

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    async def build_report(
        self,
        organization_id: UUID,
        filters: ReportFilters,
        viewer: ViewerContext | None = None,
        report: Report | None = None,
    ) -> ReportPayload:
        """Full report: grouped data, daily history, metadata and analytics."""
        entries = await self.fetch_entries(organization_id, filters, viewer)
        totals = calculate_totals(entries)

        first_day, last_day = filters.date_range or self._entry_span(entries)
        data = self.summarize(entries, filters.groups, filters.date_range, viewer, totals)
        history = self.summarize(
            entries, [GroupKey.DATE.value], (first_day, last_day), viewer, totals
        )

        start, _ = local_day_bounds(first_day, self.utc_offset_minutes)
        _, end = local_day_bounds(last_day, self.utc_offset_minutes)

        return ReportPayload(
            name=report.name if report is not None else None,
            description=report.description if report is not None else None,
            public_until=report.public_until if report is not None else None,
            currency=await self._currency(organization_id),
            properties=ReportPropertiesResponse(
                group=",".join(filters.groups or self.settings.default_groups),
                history_group=HISTORY_GROUP,
                start=start,
                end=end,
            ),
            data=data,
            history_data=history,
            analytics=self._analytics(totals, data, (last_day - first_day).days + 1),
        )

    async def build_public_report(
        self, share_secret: str, now: datetime | None = None
    ) -> ReportPayload:
        """Report behind a share secret, scoped only by its saved filters.

        Raises:
            ReportNotFoundError: Unknown, private or expired secret
        """
        report = await ReportService(self.session).get_public_report(share_secret, now)
        filters = ReportProperties.from_stored(report.properties).to_filters(
            self.settings.default_groups
        )
        return await self.build_report(report.organization_id, filters, None, report)

    def _entry_span(self, entries: Sequence[TimeEntry]) -> tuple[date, date]:
        if not entries:
            today = self._today()
            return today, today
        days = [self.grouping.local_day(entry.start) for entry in entries]
        return min(days), max(days)

    def _analytics(
        self, totals: Totals, data: GroupedSummary, day_count: int
    ) -> ReportAnalytics:
        ranked = sorted(data.grouped_data or [], key=lambda g: g.seconds, reverse=True)
        return ReportAnalytics(
            total_hours=_hours(totals.seconds),
            billable_hours=_hours(totals.billable_seconds),
            non_billable_hours=_hours(totals.non_billable_seconds),
            billable_percentage=_percent(totals.billable_seconds, totals.seconds),
            average_hours_per_day=round(totals.seconds / 3600 / max(day_count, 1), 2),
            entry_count=totals.entry_count,
            top_groups=[
                TopGroup(
                    key=group.key,
                    name=group.name,
                    seconds=group.seconds,
                    cost=group.cost,
                    share=_percent(group.seconds, totals.seconds),
                )
                for group in ranked[:TOP_GROUP_COUNT]
            ],
        )

    async def _currency(self, organization_id: UUID) -> str:
        currency = await self.session.scalar(
            select(Organization.currency).where(
                Organization.organization_id == organization_id
            )
        )
        return currency or self.settings.default_currency

    # ------------------------------------------------------------------
    # Detailed export
    # ------------------------------------------------------------------

    async def export_entries(
        self,
        organization_id: UUID,
        filters: ReportFilters,
        viewer: ViewerContext | None = None,
    ) -> list[ExportRow]:
        """One row per completed entry, newest first."""
        entries = await self.fetch_entries(
            organization_id, filters, viewer, completed_only=True, newest_first=True
        )
        return [self._export_row(entry) for entry in entries]

    @staticmethod
    def _export_row(entry: TimeEntry) -> ExportRow:
        project = entry.project
        client = project.client if project is not None else None
        return ExportRow(
            description=entry.description or "-",
            task=entry.task.name if entry.task is not None else None,
            project=project.name if project is not None else None,
            client=client.name if client is not None else None,
            member=entry.member.name if entry.member is not None else None,
            start=entry.start,
            end=entry.end,
            seconds=entry.duration_seconds,
            billable=entry.billable,
            tags=sorted(tag.name for tag in entry.tags),
            cost=entry_cost_cents(entry),
        )

    @staticmethod
    def render_csv(rows: Sequence[ExportRow]) -> str:
        """Render export rows as CSV text with a header line."""
        output = io.StringIO()
        writer = csv.writer(output)
        writer.writerow(CSV_HEADER)
        for row in rows:
            writer.writerow([
                row.description,
                row.task or "",
                row.project or "",
                row.client or "",
                row.member or "",
                row.start.isoformat(),
                row.end.isoformat(),
                row.seconds,
                "Yes" if row.billable else "No",
                ", ".join(row.tags),
                str(row.cost),
            ])
        return output.getvalue()

    # ------------------------------------------------------------------
    # Dashboard
    # ------------------------------------------------------------------

    async def build_dashboard(
        self,
        organization_id: UUID,
        viewer: ViewerContext,
        today: date | None = None,
    ) -> DashboardSummary:
        """Activity over the trailing window of settings.dashboard_days ending today.

        Restricted viewers see only their own members and entries.
        """
        last_day = today or self._today()
        first_day = last_day - timedelta(days=self.settings.dashboard_days - 1)
        filters = ReportFilters(start_date=first_day, end_date=last_day, groups=("date",))

        entries = await self.fetch_entries(
            organization_id, filters, viewer, completed_only=True, newest_first=True
        )
        totals = calculate_totals(entries)

        return DashboardSummary(
            start=first_day,
            end=last_day,
            seconds=totals.seconds,
            billable_seconds=totals.billable_seconds,
            cost=totals.cost,
            daily=self._daily(entries, first_day, last_day),
            running=await self._running(organization_id, viewer),
            recent=[self._recent(entry) for entry in entries[:RECENT_ENTRY_COUNT]],
            projects=self._project_totals(entries),
        )

    def _daily(
        self, entries: Sequence[TimeEntry], first_day: date, last_day: date
    ) -> list[DashboardDay]:
        series = self.grouping.group_entries(
            entries, [GroupKey.DATE.value], (first_day, last_day)
        ) or []
        billable: dict[str, int] = {}
        for entry in entries:
            if entry.billable:
                key = self.grouping.local_day(entry.start).isoformat()
                billable[key] = billable.get(key, 0) + entry.duration_seconds

        return [
            DashboardDay(
                day=day,
                name=group.name,
                seconds=group.seconds,
                billable_seconds=billable.get(group.key, 0),
                cost=group.cost,
            )
            for day, group in zip(date_range(first_day, last_day), series)
        ]

    async def _running(
        self, organization_id: UUID, viewer: ViewerContext
    ) -> list[RunningEntry]:
        member_query = select(Member).where(
            Member.organization_id == organization_id,
            Member.is_active.is_(True),
        )
        entry_query = (
            select(TimeEntry)
            .where(TimeEntry.organization_id == organization_id, TimeEntry.end.is_(None))
            .options(selectinload(TimeEntry.project))
            .order_by(TimeEntry.start.desc())
        )
        if viewer.restricted:
            member_query = member_query.where(Member.member_id == viewer.member_id)
            entry_query = entry_query.where(TimeEntry.member_id == viewer.member_id)

        members = (await self.session.scalars(member_query.order_by(Member.name))).all()
        latest: dict[UUID, TimeEntry] = {}
        for entry in (await self.session.scalars(entry_query)).all():
            latest.setdefault(entry.member_id, entry)

        running = []
        for member in members:
            entry = latest.get(member.member_id)
            running.append(
                RunningEntry(
                    member_id=member.member_id,
                    member=member.name,
                    time_entry_id=entry.time_entry_id if entry else None,
                    project=entry.project.name if entry and entry.project else None,
                    description=entry.description if entry else None,
                    start=entry.start if entry else None,
                )
            )
        return running

    @staticmethod
    def _recent(entry: TimeEntry) -> RecentEntry:
        project = entry.project
        return RecentEntry(
            time_entry_id=entry.time_entry_id,
            description=entry.description,
            project=project.name if project is not None else None,
            color=project.color if project is not None else None,
            member=entry.member.name if entry.member is not None else None,
            task=entry.task.name if entry.task is not None else None,
            start=entry.start,
            end=entry.end,
            seconds=entry.duration_seconds,
        )

    @staticmethod
    def _project_totals(entries: Sequence[TimeEntry]) -> list[ProjectTotal]:
        totals: dict[UUID, ProjectTotal] = {}
        for entry in entries:
            project = entry.project
            if project is None:
                continue
            current = totals.get(project.project_id)
            if current is None:
                current = totals[project.project_id] = ProjectTotal(
                    project_id=project.project_id,
                    name=project.name,
                    color=project.color,
                    seconds=0,
                    cost=0,
                )
            current.seconds += entry.duration_seconds
            current.cost += entry_cost(entry)
        return sorted(totals.values(), key=lambda p: p.seconds, reverse=True)

    def _today(self) -> date:
        return self.grouping.local_day(datetime.now(timezone.utc))
