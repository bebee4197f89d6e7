"""SQLAlchemy ORM models."""

from timesheet_engine.models.base import Base, TimestampMixin
from timesheet_engine.models.organization import Client, Member, Organization
from timesheet_engine.models.project import Project, ProjectMember, Tag, Task
from timesheet_engine.models.report import Report
from timesheet_engine.models.time_entry import TimeEntry, time_entry_tag

__all__ = [
    "Base",
    "TimestampMixin",
    "Client",
    "Member",
    "Organization",
    "Project",
    "ProjectMember",
    "Report",
    "Tag",
    "Task",
    "TimeEntry",
    "time_entry_tag",
]
