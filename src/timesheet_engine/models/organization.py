"""Organization, membership and client models."""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from timesheet_engine.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from timesheet_engine.models.project import Project
    from timesheet_engine.models.report import Report


class Organization(Base, TimestampMixin):
    """Tenant organization owning members, projects and time entries."""

    __tablename__ = "organization"

    organization_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    # Organization default rate, the least specific level of the cascade
    billable_rate: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)

    # Relationships
    members: Mapped[list[Member]] = relationship(back_populates="organization")
    clients: Mapped[list[Client]] = relationship(back_populates="organization")
    projects: Mapped[list[Project]] = relationship(back_populates="organization")
    reports: Mapped[list[Report]] = relationship(back_populates="organization")


class Member(Base, TimestampMixin):
    """A user's membership in an organization."""

    __tablename__ = "member"

    member_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    organization_id: Mapped[UUID] = mapped_column(
        ForeignKey("organization.organization_id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[UUID] = mapped_column(nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    role: Mapped[str] = mapped_column(String, nullable=False, default="EMPLOYEE")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    # Organization-member override, applies to this user on any project
    billable_rate: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)

    __table_args__ = (
        UniqueConstraint("organization_id", "user_id", name="member_org_user_unique"),
        CheckConstraint(
            "role IN ('OWNER', 'ADMIN', 'MANAGER', 'EMPLOYEE', 'PLACEHOLDER')",
            name="member_role_check",
        ),
    )

    # Relationships
    organization: Mapped[Organization] = relationship(back_populates="members")


class Client(Base, TimestampMixin):
    """Client that projects are billed to."""

    __tablename__ = "client"

    client_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    organization_id: Mapped[UUID] = mapped_column(
        ForeignKey("organization.organization_id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String, nullable=False)

    # Relationships
    organization: Mapped[Organization] = relationship(back_populates="clients")
    projects: Mapped[list[Project]] = relationship(back_populates="client")
