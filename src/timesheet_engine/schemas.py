"""Pydantic models for report, export and dashboard payloads."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# Grouped summaries
# ============================================================================


class GroupSchema(BaseModel):
    """One node of a grouped summary."""

    model_config = ConfigDict(from_attributes=True)

    key: str
    name: str | None = None
    seconds: int
    cost: int
    grouped_type: str | None = None
    grouped_data: list[GroupSchema] | None = None


class GroupedSummary(BaseModel):
    """Totals over an entry set plus its grouping tree."""

    seconds: int
    cost: int
    grouped_type: str | None = None
    grouped_data: list[GroupSchema] | None = None


# ============================================================================
# Reports
# ============================================================================


class ReportPropertiesResponse(BaseModel):
    """Grouping and bounds a report was computed with."""

    group: str
    history_group: str = "day"
    start: datetime
    end: datetime


class TopGroup(BaseModel):
    key: str
    name: str | None = None
    seconds: int
    cost: int
    share: float


class ReportAnalytics(BaseModel):
    """Derived figures shown beside a report."""

    total_hours: float
    billable_hours: float
    non_billable_hours: float
    billable_percentage: float
    average_hours_per_day: float
    entry_count: int
    top_groups: list[TopGroup] = Field(default_factory=list)


class ReportPayload(BaseModel):
    """A report with its data recomputed for this read."""

    name: str | None = None
    description: str | None = None
    public_until: datetime | None = None
    currency: str
    properties: ReportPropertiesResponse
    data: GroupedSummary
    history_data: GroupedSummary
    analytics: ReportAnalytics


# ============================================================================
# Exports
# ============================================================================


class ExportRow(BaseModel):
    """One completed time entry in a detailed export."""

    description: str
    task: str | None = None
    project: str | None = None
    client: str | None = None
    member: str | None = None
    start: datetime
    end: datetime
    seconds: int
    billable: bool
    tags: list[str] = Field(default_factory=list)
    cost: Decimal


# ============================================================================
# Dashboard
# ============================================================================


class DashboardDay(BaseModel):
    day: date
    name: str
    seconds: int
    billable_seconds: int
    cost: int


class RunningEntry(BaseModel):
    """A member and the timer they have running, if any."""

    member_id: UUID
    member: str | None = None
    time_entry_id: UUID | None = None
    project: str | None = None
    description: str | None = None
    start: datetime | None = None


class RecentEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    time_entry_id: UUID
    description: str | None = None
    project: str | None = None
    color: str | None = None
    member: str | None = None
    task: str | None = None
    start: datetime
    end: datetime
    seconds: int


class ProjectTotal(BaseModel):
    project_id: UUID | None = None
    name: str
    color: str | None = None
    seconds: int
    cost: int


class DashboardSummary(BaseModel):
    """Activity over the trailing window ending today."""

    start: date
    end: date
    seconds: int
    billable_seconds: int
    cost: int
    daily: list[DashboardDay]
    running: list[RunningEntry]
    recent: list[RecentEntry]
    projects: list[ProjectTotal]
