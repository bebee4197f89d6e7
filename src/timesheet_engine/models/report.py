"""Saved report definitions."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from timesheet_engine.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from timesheet_engine.models.organization import Organization


class Report(Base, TimestampMixin):
    """A saved time-summary query, optionally shared through a public secret."""

    __tablename__ = "report"

    report_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    organization_id: Mapped[UUID] = mapped_column(
        ForeignKey("organization.organization_id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str] = mapped_column(String, nullable=False, default="")
    is_public: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    public_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    share_secret: Mapped[str | None] = mapped_column(String, nullable=True, unique=True)
    # Stored filter/group bag, comma-joined id lists
    properties: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    # Relationships
    organization: Mapped[Organization] = relationship(back_populates="reports")
