"""Report filters, their persisted form, and the entry query they produce."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import ColumnElement

from timesheet_engine.calculators.grouping import local_day_bounds
from timesheet_engine.calculators.types import Role, at_least
from timesheet_engine.calculators.visibility import FULL_VISIBILITY_ROLE
from timesheet_engine.config import DEFAULT_GROUPS
from timesheet_engine.models import Project, Tag, TimeEntry


def split_ids(value: str | Iterable[Any] | None) -> frozenset[UUID]:
    """Parse a comma-joined id string (or a list of ids) into a set."""
    if value is None:
        return frozenset()
    if isinstance(value, str):
        value = value.split(",")
    return frozenset(
        item if isinstance(item, UUID) else UUID(str(item).strip())
        for item in value
        if str(item).strip()
    )


def join_ids(ids: Iterable[UUID]) -> str | None:
    """Comma-join ids in a stable order; None for an empty set."""
    joined = ",".join(sorted(str(i) for i in ids))
    return joined or None


def split_groups(value: str | Iterable[str] | None) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        value = value.split(",")
    return tuple(g.strip() for g in value if g and g.strip())


def _parse_bool(value: Any) -> bool | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return value
    return str(value).lower() == "true"


def _parse_date(value: Any) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value))


@dataclass(frozen=True)
class ReportFilters:
    """Which entries a summary covers and how they are grouped."""

    start_date: date | None = None
    end_date: date | None = None
    member_ids: frozenset[UUID] = frozenset()
    project_ids: frozenset[UUID] = frozenset()
    task_ids: frozenset[UUID] = frozenset()
    client_ids: frozenset[UUID] = frozenset()
    tag_ids: frozenset[UUID] = frozenset()
    billable: bool | None = None
    groups: tuple[str, ...] = field(default=DEFAULT_GROUPS)

    @classmethod
    def from_query(
        cls,
        params: Mapping[str, Any],
        default_groups: tuple[str, ...] = DEFAULT_GROUPS,
    ) -> ReportFilters:
        """Build filters from request-style parameters.

        Accepts camelCase or snake_case names, comma-joined strings or
        lists for the id filters, and "true"/"false" for billable.
        """

        def pick(*names: str) -> Any:
            for name in names:
                if params.get(name) not in (None, ""):
                    return params[name]
            return None

        groups = split_groups(pick("group", "groups"))
        return cls(
            start_date=_parse_date(pick("startDate", "start_date", "start")),
            end_date=_parse_date(pick("endDate", "end_date", "end")),
            member_ids=split_ids(pick("members", "member_ids")),
            project_ids=split_ids(pick("projects", "project_ids")),
            task_ids=split_ids(pick("tasks", "task_ids")),
            client_ids=split_ids(pick("clients", "client_ids")),
            tag_ids=split_ids(pick("tags", "tag_ids")),
            billable=_parse_bool(pick("billable")),
            groups=groups or default_groups,
        )

    @property
    def date_range(self) -> tuple[date, date] | None:
        """Inclusive day range when both ends are set."""
        if self.start_date is None or self.end_date is None:
            return None
        return self.start_date, self.end_date


class ReportProperties(BaseModel):
    """Filter and grouping bag as stored on a saved report.

    Id lists are comma-joined strings so stored rows stay readable by
    every consumer of the table.
    """

    model_config = ConfigDict(populate_by_name=True)

    group: str | None = None
    start_date: str | None = Field(default=None, alias="startDate")
    end_date: str | None = Field(default=None, alias="endDate")
    members: str | None = None
    billable: Literal["true", "false"] | None = None
    clients: str | None = None
    tasks: str | None = None
    projects: str | None = None
    tags: str | None = None

    @classmethod
    def from_filters(cls, filters: ReportFilters) -> ReportProperties:
        return cls(
            group=",".join(filters.groups),
            start_date=filters.start_date.isoformat() if filters.start_date else None,
            end_date=filters.end_date.isoformat() if filters.end_date else None,
            members=join_ids(filters.member_ids),
            billable=None if filters.billable is None else str(filters.billable).lower(),
            clients=join_ids(filters.client_ids),
            tasks=join_ids(filters.task_ids),
            projects=join_ids(filters.project_ids),
            tags=join_ids(filters.tag_ids),
        )

    @classmethod
    def from_stored(cls, stored: Mapping[str, Any] | None) -> ReportProperties:
        return cls.model_validate(dict(stored or {}))

    def to_stored(self) -> dict[str, str]:
        return self.model_dump(by_alias=True, exclude_none=True)

    def to_filters(self, default_groups: tuple[str, ...] = DEFAULT_GROUPS) -> ReportFilters:
        return ReportFilters(
            start_date=_parse_date(self.start_date),
            end_date=_parse_date(self.end_date),
            member_ids=split_ids(self.members),
            project_ids=split_ids(self.projects),
            task_ids=split_ids(self.tasks),
            client_ids=split_ids(self.clients),
            tag_ids=split_ids(self.tags),
            billable=_parse_bool(self.billable),
            groups=split_groups(self.group) or default_groups,
        )


@dataclass(frozen=True)
class ViewerContext:
    """The authenticated member a summary is computed for."""

    user_id: UUID
    member_id: UUID
    role: Role

    @property
    def restricted(self) -> bool:
        """Viewers below full visibility only see their own time."""
        return not at_least(self.role, FULL_VISIBILITY_ROLE)


def build_entry_criteria(
    organization_id: UUID,
    filters: ReportFilters,
    viewer: ViewerContext | None = None,
    utc_offset_minutes: int = 0,
) -> list[ColumnElement[bool]]:
    """Translate filters into where-clauses on TimeEntry.

    A restricted viewer is pinned to their own member id and cannot filter
    by client. Date bounds cover whole local days.
    """
    criteria: list[ColumnElement[bool]] = [TimeEntry.organization_id == organization_id]

    if filters.start_date is not None:
        lower, _ = local_day_bounds(filters.start_date, utc_offset_minutes)
        criteria.append(TimeEntry.start >= lower)
    if filters.end_date is not None:
        _, upper = local_day_bounds(filters.end_date, utc_offset_minutes)
        criteria.append(TimeEntry.start < upper)

    restricted = viewer is not None and viewer.restricted
    if restricted:
        criteria.append(TimeEntry.member_id == viewer.member_id)
    elif filters.member_ids:
        criteria.append(TimeEntry.member_id.in_(list(filters.member_ids)))

    if filters.project_ids:
        criteria.append(TimeEntry.project_id.in_(list(filters.project_ids)))
    if filters.task_ids:
        criteria.append(TimeEntry.task_id.in_(list(filters.task_ids)))
    if filters.tag_ids:
        criteria.append(TimeEntry.tags.any(Tag.tag_id.in_(list(filters.tag_ids))))
    if filters.client_ids and not restricted:
        criteria.append(
            TimeEntry.project.has(Project.client_id.in_(list(filters.client_ids)))
        )
    if filters.billable is not None:
        criteria.append(TimeEntry.billable.is_(filters.billable))

    return criteria
