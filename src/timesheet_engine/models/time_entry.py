"""Time entry models."""

from __future__ import annotations

import math
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Table,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from timesheet_engine.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from timesheet_engine.models.organization import Member
    from timesheet_engine.models.project import Project, Tag, Task


time_entry_tag = Table(
    "time_entry_tag",
    Base.metadata,
    Column(
        "time_entry_id",
        ForeignKey("time_entry.time_entry_id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column("tag_id", ForeignKey("tag.tag_id", ondelete="CASCADE"), primary_key=True),
)


class TimeEntry(Base, TimestampMixin):
    """Tracked time with a snapshot of the hourly rate applied to it."""

    __tablename__ = "time_entry"

    time_entry_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    organization_id: Mapped[UUID] = mapped_column(
        ForeignKey("organization.organization_id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[UUID] = mapped_column(nullable=False)
    member_id: Mapped[UUID] = mapped_column(
        ForeignKey("member.member_id", ondelete="CASCADE"),
        nullable=False,
    )
    project_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("project.project_id", ondelete="SET NULL"),
        nullable=True,
    )
    task_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("task.task_id", ondelete="SET NULL"),
        nullable=True,
    )
    description: Mapped[str | None] = mapped_column(String, nullable=True)
    start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    billable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    billable_rate: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    # Cascade level the snapshotted rate came from
    rate_source: Mapped[str | None] = mapped_column(String, nullable=True)

    __table_args__ = (
        CheckConstraint("billable_rate IS NULL OR billable", name="time_entry_rate_billable"),
        CheckConstraint("duration_seconds >= 0", name="time_entry_duration_positive"),
        Index("ix_time_entry_org_start", "organization_id", "start"),
        Index("ix_time_entry_project_user", "project_id", "user_id"),
    )

    # Relationships
    member: Mapped[Member] = relationship()
    project: Mapped[Project | None] = relationship()
    task: Mapped[Task | None] = relationship()
    tags: Mapped[list[Tag]] = relationship(secondary=time_entry_tag)

    @property
    def is_running(self) -> bool:
        """A running timer has no end yet."""
        return self.end is None

    def compute_duration(self) -> int:
        """Whole seconds between start and end, 0 while running."""
        if self.end is None:
            return 0
        seconds = (self.end - self.start).total_seconds()
        return max(0, math.floor(seconds))

    def stop(self, end: datetime) -> None:
        """Stop a running timer and recompute the duration."""
        self.end = end
        self.duration_seconds = self.compute_duration()
