"""Pytest fixtures for timesheet engine tests."""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from timesheet_engine.config import Settings
from timesheet_engine.models import (
    Base,
    Client,
    Member,
    Organization,
    Project,
    ProjectMember,
    Tag,
    Task,
    TimeEntry,
)

# In-memory SQLite keeps the suite self-contained; StaticPool shares the
# single connection across the session's operations
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
async def engine():
    """Create a fresh test database per test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # Let SQLAlchemy emit BEGIN itself so SAVEPOINTs work on pysqlite
    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
async def session(engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    session_factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def settings() -> Settings:
    """Settings independent of the developer's environment."""
    return Settings(
        database_url=TEST_DATABASE_URL,
        default_currency="USD",
        default_groups=("projects",),
        default_utc_offset_minutes=0,
        dashboard_days=7,
        log_level="DEBUG",
        debug=False,
    )


@dataclass
class Seed:
    """The organization every database test starts from.

    Rates:
    - organization default 50
    - employee member override 80
    - Website project 100, owner has a 120 project-member override on it
    - Internal project and manager carry no rate
    """

    organization: Organization
    owner: Member
    manager: Member
    employee: Member
    client: Client
    website: Project
    internal: Project
    owner_on_website: ProjectMember
    design_task: Task
    urgent_tag: Tag


@pytest.fixture
async def seed(session: AsyncSession) -> Seed:
    """Create the organization, members, projects and rate overrides."""
    organization = Organization(
        organization_id=uuid4(),
        name="Acme",
        currency="EUR",
        billable_rate=Decimal("50"),
    )
    session.add(organization)
    await session.flush()

    def member(name: str, role: str, rate: Decimal | None = None) -> Member:
        return Member(
            member_id=uuid4(),
            organization_id=organization.organization_id,
            user_id=uuid4(),
            name=name,
            role=role,
            is_active=True,
            billable_rate=rate,
        )

    owner = member("Olivia Owner", "OWNER")
    manager = member("Max Manager", "MANAGER")
    employee = member("Emma Employee", "EMPLOYEE", Decimal("80"))
    client = Client(client_id=uuid4(), organization_id=organization.organization_id, name="Globex")
    session.add_all([owner, manager, employee, client])
    await session.flush()

    website = Project(
        project_id=uuid4(),
        organization_id=organization.organization_id,
        client_id=client.client_id,
        name="Website",
        color="#ef5350",
        billable_rate=Decimal("100"),
    )
    internal = Project(
        project_id=uuid4(),
        organization_id=organization.organization_id,
        name="Internal",
        color="#42a5f5",
        billable_rate=None,
    )
    session.add_all([website, internal])
    await session.flush()

    owner_on_website = ProjectMember(
        project_member_id=uuid4(),
        project_id=website.project_id,
        user_id=owner.user_id,
        billable_rate=Decimal("120"),
    )
    design_task = Task(
        task_id=uuid4(),
        organization_id=organization.organization_id,
        project_id=website.project_id,
        name="Design",
    )
    urgent_tag = Tag(tag_id=uuid4(), organization_id=organization.organization_id, name="urgent")
    session.add_all([owner_on_website, design_task, urgent_tag])
    await session.flush()

    return Seed(
        organization=organization,
        owner=owner,
        manager=manager,
        employee=employee,
        client=client,
        website=website,
        internal=internal,
        owner_on_website=owner_on_website,
        design_task=design_task,
        urgent_tag=urgent_tag,
    )


JAN_1 = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def make_entry(session: AsyncSession) -> Callable[..., Any]:
    """Factory persisting a time entry with an explicit rate snapshot."""

    async def _make_entry(
        member: Member,
        project: Project | None = None,
        start: datetime = JAN_1,
        hours: float = 1,
        billable: bool = True,
        rate: Decimal | None = None,
        task: Task | None = None,
        description: str | None = None,
        tags: list[Tag] | None = None,
        running: bool = False,
    ) -> TimeEntry:
        end = None if running else start + timedelta(hours=hours)
        entry = TimeEntry(
            time_entry_id=uuid4(),
            organization_id=member.organization_id,
            user_id=member.user_id,
            member=member,
            project=project,
            task=task,
            description=description,
            start=start,
            end=end,
            billable=billable,
            billable_rate=rate if billable else None,
            tags=tags or [],
        )
        entry.duration_seconds = entry.compute_duration()
        session.add(entry)
        await session.flush()
        return entry

    return _make_entry


class InMemoryRateLookup:
    """RateLookup over plain dicts."""

    def __init__(
        self,
        project_members: dict[tuple[UUID, UUID], Decimal | None] | None = None,
        projects: dict[UUID, Decimal | None] | None = None,
        organization_members: dict[tuple[UUID, UUID], Decimal | None] | None = None,
        organizations: dict[UUID, Decimal | None] | None = None,
    ):
        self.project_members = project_members or {}
        self.projects = projects or {}
        self.organization_members = organization_members or {}
        self.organizations = organizations or {}
        self.calls: list[str] = []

    async def project_member_rate(self, user_id: UUID, project_id: UUID) -> Decimal | None:
        self.calls.append("project_member")
        return self.project_members.get((user_id, project_id))

    async def project_rate(self, project_id: UUID) -> Decimal | None:
        self.calls.append("project")
        return self.projects.get(project_id)

    async def organization_member_rate(
        self, user_id: UUID, organization_id: UUID
    ) -> Decimal | None:
        self.calls.append("organization_member")
        return self.organization_members.get((user_id, organization_id))

    async def organization_rate(self, organization_id: UUID) -> Decimal | None:
        self.calls.append("organization")
        return self.organizations.get(organization_id)


@pytest.fixture
def fake_lookup() -> type[InMemoryRateLookup]:
    """The in-memory RateLookup class, for resolver tests without a database."""
    return InMemoryRateLookup
