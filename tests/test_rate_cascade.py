"""Tests for rate changes and their propagation to stored entries."""

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from timesheet_engine.calculators.rate_resolver import RateResolver
from timesheet_engine.calculators.types import RateLevel
from timesheet_engine.models import Member, Organization, Project, TimeEntry
from timesheet_engine.services.rate_cascade import (
    InvalidRateChangeError,
    RateCascadeService,
    RateSourceNotFoundError,
)


async def stored_rate(session, entry):
    return await session.scalar(
        select(TimeEntry.billable_rate).where(TimeEntry.time_entry_id == entry.time_entry_id)
    )


async def stored_source(session, entry):
    return await session.scalar(
        select(TimeEntry.rate_source).where(TimeEntry.time_entry_id == entry.time_entry_id)
    )


class TestProjectLevel:
    """Test changes to a project's default rate."""

    @pytest.mark.asyncio
    async def test_skips_users_with_project_member_override(self, session, seed, make_entry):
        """Test entries of override holders stay put, inheriting entries move."""
        owner_entry = await make_entry(seed.owner, seed.website, rate=Decimal("120"))
        # Same value as the old project rate, still governed by the override
        owner_coincidence = await make_entry(seed.owner, seed.website, rate=Decimal("100"))
        manager_entry = await make_entry(seed.manager, seed.website, rate=Decimal("100"))
        manager_custom = await make_entry(seed.manager, seed.website, rate=Decimal("90"))
        manager_unbilled = await make_entry(seed.manager, seed.website, billable=False)

        result = await RateCascadeService(session).apply_rate_change(
            RateLevel.PROJECT,
            seed.website.project_id,
            Decimal("150"),
            apply_to_existing=True,
            organization_id=seed.organization.organization_id,
        )

        assert result.old_rate == Decimal("100")
        assert result.new_rate == Decimal("150")
        assert result.updated_entries == 1
        assert await stored_rate(session, owner_entry) == Decimal("120")
        assert await stored_rate(session, owner_coincidence) == Decimal("100")
        assert await stored_rate(session, manager_entry) == Decimal("150")
        assert await stored_rate(session, manager_custom) == Decimal("90")
        assert await stored_rate(session, manager_unbilled) is None
        assert await stored_source(session, manager_entry) == "project"

    @pytest.mark.asyncio
    async def test_loaded_entries_see_the_propagated_rate(self, session, seed, make_entry):
        """Test entries held by the session reflect the rewrite without a re-query."""
        manager_entry = await make_entry(seed.manager, seed.website, rate=Decimal("100"))
        owner_entry = await make_entry(seed.owner, seed.website, rate=Decimal("120"))

        await RateCascadeService(session).apply_rate_change(
            RateLevel.PROJECT,
            seed.website.project_id,
            Decimal("150"),
            apply_to_existing=True,
            organization_id=seed.organization.organization_id,
        )

        assert manager_entry.billable_rate == Decimal("150")
        assert manager_entry.rate_source == "project"
        fetched = await session.get(TimeEntry, manager_entry.time_entry_id)
        assert fetched is manager_entry
        assert fetched.billable_rate == Decimal("150")
        assert owner_entry.billable_rate == Decimal("120")

    @pytest.mark.asyncio
    async def test_without_propagation_only_the_source_changes(self, session, seed, make_entry):
        """Test apply_to_existing=False leaves history untouched."""
        manager_entry = await make_entry(seed.manager, seed.website, rate=Decimal("100"))

        result = await RateCascadeService(session).apply_rate_change(
            "project",
            seed.website.project_id,
            Decimal("150"),
            organization_id=seed.organization.organization_id,
        )

        assert result.updated_entries == 0
        assert await stored_rate(session, manager_entry) == Decimal("100")
        assert await session.scalar(
            select(Project.billable_rate).where(Project.project_id == seed.website.project_id)
        ) == Decimal("150")

    @pytest.mark.asyncio
    async def test_first_rate_on_project_replaces_per_user_fallbacks(
        self, session, seed, make_entry
    ):
        """Test a project gaining a rate rewrites whatever each user inherited."""
        manager_entry = await make_entry(seed.manager, seed.internal, rate=Decimal("50"))
        employee_entry = await make_entry(seed.employee, seed.internal, rate=Decimal("80"))
        employee_custom = await make_entry(seed.employee, seed.internal, rate=Decimal("65"))

        result = await RateCascadeService(session).apply_rate_change(
            RateLevel.PROJECT,
            seed.internal.project_id,
            Decimal("40"),
            apply_to_existing=True,
            organization_id=seed.organization.organization_id,
        )

        assert result.old_rate is None
        assert result.updated_entries == 2
        assert await stored_rate(session, manager_entry) == Decimal("40")
        assert await stored_rate(session, employee_entry) == Decimal("40")
        assert await stored_rate(session, employee_custom) == Decimal("65")


class TestOrganizationLevel:
    """Test changes to the organization default."""

    @pytest.mark.asyncio
    async def test_member_override_holders_are_not_touched(self, session, seed, make_entry):
        """Test the end-to-end scenario: org 50 -> 60 leaves the 80-rate member alone."""
        org_id = seed.organization.organization_id
        resolver = RateResolver.for_session(session)
        assert await resolver.resolve_rate(
            seed.employee.user_id, org_id, seed.internal.project_id
        ) == Decimal("80")

        employee_entry = await make_entry(seed.employee, seed.internal, rate=Decimal("80"))
        employee_at_fifty = await make_entry(seed.employee, None, rate=Decimal("50"))
        manager_no_project = await make_entry(seed.manager, None, rate=Decimal("50"))
        manager_internal = await make_entry(seed.manager, seed.internal, rate=Decimal("50"))
        manager_website = await make_entry(seed.manager, seed.website, rate=Decimal("100"))

        result = await RateCascadeService(session).apply_rate_change(
            RateLevel.ORGANIZATION,
            org_id,
            Decimal("60"),
            apply_to_existing=True,
            organization_id=org_id,
        )

        assert result.updated_entries == 2
        assert await stored_rate(session, employee_entry) == Decimal("80")
        assert await stored_rate(session, employee_at_fifty) == Decimal("50")
        assert await stored_rate(session, manager_no_project) == Decimal("60")
        assert await stored_rate(session, manager_internal) == Decimal("60")
        assert await stored_rate(session, manager_website) == Decimal("100")
        assert await resolver.resolve_rate(
            seed.employee.user_id, org_id, seed.internal.project_id
        ) == Decimal("80")

    @pytest.mark.asyncio
    async def test_source_id_must_be_the_organization(self, session, seed):
        """Test an organization-level change for another organization is rejected."""
        with pytest.raises(RateSourceNotFoundError) as exc_info:
            await RateCascadeService(session).apply_rate_change(
                RateLevel.ORGANIZATION,
                uuid4(),
                Decimal("60"),
                organization_id=seed.organization.organization_id,
            )

        assert exc_info.value.level == RateLevel.ORGANIZATION
        assert exc_info.value.kind == "rate_source_not_found"

    @pytest.mark.asyncio
    async def test_committed_session_gets_its_own_transaction(self, session, seed, make_entry):
        """Test the change commits when called outside a transaction."""
        org_id = seed.organization.organization_id
        entry = await make_entry(seed.manager, None, rate=Decimal("50"))
        await session.commit()

        result = await RateCascadeService(session).apply_rate_change(
            RateLevel.ORGANIZATION,
            org_id,
            Decimal("55"),
            apply_to_existing=True,
            organization_id=org_id,
        )

        assert result.updated_entries == 1
        assert not session.in_transaction()
        assert await stored_rate(session, entry) == Decimal("55")


class TestMemberLevels:
    """Test organization-member and project-member overrides."""

    @pytest.mark.asyncio
    async def test_member_override_skips_projects_with_their_own_rate(
        self, session, seed, make_entry
    ):
        """Test entries on rated projects are outside the member override's reach."""
        no_project = await make_entry(seed.employee, None, rate=Decimal("80"))
        internal = await make_entry(seed.employee, seed.internal, rate=Decimal("80"))
        website = await make_entry(seed.employee, seed.website, rate=Decimal("80"))

        result = await RateCascadeService(session).apply_rate_change(
            RateLevel.ORGANIZATION_MEMBER,
            seed.employee.member_id,
            Decimal("90"),
            apply_to_existing=True,
            organization_id=seed.organization.organization_id,
            user_id=seed.employee.user_id,
        )

        assert result.updated_entries == 2
        assert await stored_rate(session, no_project) == Decimal("90")
        assert await stored_rate(session, internal) == Decimal("90")
        assert await stored_rate(session, website) == Decimal("80")
        assert await stored_source(session, internal) == "organization_member"

    @pytest.mark.asyncio
    async def test_new_member_override_takes_over_organization_default(
        self, session, seed, make_entry
    ):
        """Test a first override rewrites entries that inherited the org default."""
        no_project = await make_entry(seed.manager, None, rate=Decimal("50"))
        internal = await make_entry(seed.manager, seed.internal, rate=Decimal("50"))
        website = await make_entry(seed.manager, seed.website, rate=Decimal("100"))
        owner_entry = await make_entry(seed.owner, None, rate=Decimal("50"))

        result = await RateCascadeService(session).apply_rate_change(
            RateLevel.ORGANIZATION_MEMBER,
            seed.manager.member_id,
            Decimal("70"),
            apply_to_existing=True,
            organization_id=seed.organization.organization_id,
        )

        assert result.old_rate is None
        assert result.updated_entries == 2
        assert await stored_rate(session, no_project) == Decimal("70")
        assert await stored_rate(session, internal) == Decimal("70")
        assert await stored_rate(session, website) == Decimal("100")
        assert await stored_rate(session, owner_entry) == Decimal("50")

    @pytest.mark.asyncio
    async def test_project_member_override_change(self, session, seed, make_entry):
        """Test only the (user, project) pair's entries follow the override."""
        on_website = await make_entry(seed.owner, seed.website, rate=Decimal("120"))
        on_internal = await make_entry(seed.owner, seed.internal, rate=Decimal("50"))
        manager_website = await make_entry(seed.manager, seed.website, rate=Decimal("100"))

        result = await RateCascadeService(session).apply_rate_change(
            RateLevel.PROJECT_MEMBER,
            seed.owner_on_website.project_member_id,
            Decimal("130"),
            apply_to_existing=True,
            organization_id=seed.organization.organization_id,
            project_id=seed.website.project_id,
        )

        assert result.updated_entries == 1
        assert await stored_rate(session, on_website) == Decimal("130")
        assert await stored_rate(session, on_internal) == Decimal("50")
        assert await stored_rate(session, manager_website) == Decimal("100")

    @pytest.mark.asyncio
    async def test_cleared_override_falls_back_to_project_rate(self, session, seed, make_entry):
        """Test clearing an override hands its entries the next level's rate."""
        on_website = await make_entry(seed.owner, seed.website, rate=Decimal("120"))

        result = await RateCascadeService(session).apply_rate_change(
            RateLevel.PROJECT_MEMBER,
            seed.owner_on_website.project_member_id,
            None,
            apply_to_existing=True,
            organization_id=seed.organization.organization_id,
        )

        assert result.new_rate is None
        assert result.updated_entries == 1
        assert await stored_rate(session, on_website) == Decimal("100")
        assert await stored_source(session, on_website) == "project"

    @pytest.mark.asyncio
    async def test_mismatched_user_is_rejected(self, session, seed):
        """Test a user_id that does not own the override is rejected."""
        with pytest.raises(InvalidRateChangeError) as exc_info:
            await RateCascadeService(session).apply_rate_change(
                RateLevel.ORGANIZATION_MEMBER,
                seed.employee.member_id,
                Decimal("90"),
                organization_id=seed.organization.organization_id,
                user_id=seed.manager.user_id,
            )

        assert exc_info.value.kind == "invalid_rate_change"

    @pytest.mark.asyncio
    async def test_unknown_member_raises_not_found(self, session, seed):
        """Test a missing rate holder raises RateSourceNotFoundError."""
        missing = uuid4()

        with pytest.raises(RateSourceNotFoundError) as exc_info:
            await RateCascadeService(session).apply_rate_change(
                RateLevel.ORGANIZATION_MEMBER,
                missing,
                Decimal("90"),
                organization_id=seed.organization.organization_id,
            )

        assert exc_info.value.source_id == missing


class TestAtomicity:
    """Test the change is all-or-nothing."""

    @pytest.mark.asyncio
    async def test_negative_rate_is_rejected(self, session, seed):
        """Test negative rates never reach the store."""
        with pytest.raises(InvalidRateChangeError):
            await RateCascadeService(session).apply_rate_change(
                RateLevel.PROJECT,
                seed.website.project_id,
                Decimal("-1"),
                organization_id=seed.organization.organization_id,
            )

    @pytest.mark.asyncio
    async def test_failed_propagation_rolls_back_source_write(
        self, session, seed, make_entry, monkeypatch
    ):
        """Test a failure after the source write leaves no partial state."""
        org_id = seed.organization.organization_id
        employee_member_id = seed.employee.member_id
        entry = await make_entry(seed.manager, None, rate=Decimal("50"))

        async def explode(self, *args, **kwargs):
            raise RuntimeError("store went away")

        monkeypatch.setattr(RateCascadeService, "_propagate", explode)

        with pytest.raises(RuntimeError):
            await RateCascadeService(session).apply_rate_change(
                RateLevel.ORGANIZATION,
                org_id,
                Decimal("60"),
                apply_to_existing=True,
                organization_id=org_id,
            )

        assert await session.scalar(
            select(Organization.billable_rate).where(Organization.organization_id == org_id)
        ) == Decimal("50")
        assert await session.scalar(
            select(Member.billable_rate).where(Member.member_id == employee_member_id)
        ) == Decimal("80")
        assert await stored_rate(session, entry) == Decimal("50")
