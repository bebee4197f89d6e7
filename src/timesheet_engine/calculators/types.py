"""Type definitions for rate resolution and time aggregation."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any


class RateLevel(str, Enum):
    """Levels of the billable rate cascade, most specific first."""

    PROJECT_MEMBER = "project_member"
    PROJECT = "project"
    ORGANIZATION_MEMBER = "organization_member"
    ORGANIZATION = "organization"

    @property
    def needs_project(self) -> bool:
        return self in (RateLevel.PROJECT_MEMBER, RateLevel.PROJECT)

    def more_specific_than(self, other: RateLevel) -> bool:
        return RATE_PRECEDENCE.index(self) < RATE_PRECEDENCE.index(other)


# First match wins
RATE_PRECEDENCE: tuple[RateLevel, ...] = (
    RateLevel.PROJECT_MEMBER,
    RateLevel.PROJECT,
    RateLevel.ORGANIZATION_MEMBER,
    RateLevel.ORGANIZATION,
)


@dataclass(frozen=True)
class ResolvedRate:
    """Outcome of walking the rate cascade."""

    rate: Decimal | None
    source: RateLevel | None

    @property
    def found(self) -> bool:
        return self.rate is not None


NO_RATE = ResolvedRate(rate=None, source=None)


class Role(str, Enum):
    """Organization member roles."""

    OWNER = "OWNER"
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    EMPLOYEE = "EMPLOYEE"
    PLACEHOLDER = "PLACEHOLDER"

    @property
    def rank(self) -> int:
        return ROLE_RANK[self]


ROLE_RANK: dict[Role, int] = {
    Role.OWNER: 5,
    Role.ADMIN: 4,
    Role.MANAGER: 3,
    Role.EMPLOYEE: 2,
    Role.PLACEHOLDER: 1,
}


def at_least(role: Role | str, threshold: Role | str) -> bool:
    """Check whether a role ranks at or above a threshold role."""
    return Role(role).rank >= Role(threshold).rank


class GroupKey(str, Enum):
    """Grouping dimensions understood by the grouping engine."""

    DATE = "date"
    DAY = "day"
    MEMBERS = "members"
    TASKS = "tasks"
    CLIENTS = "clients"
    BILLABLE = "billable"
    DESCRIPTION = "description"
    PROJECTS = "projects"


DATE_KEYS = frozenset({GroupKey.DATE.value, GroupKey.DAY.value})

# Bucket key for entries with no value for the dimension
NULL_KEY = "null"


@dataclass
class Group:
    """A node of the aggregation tree."""

    key: str
    name: str | None
    seconds: int = 0
    cost: int = 0
    grouped_type: str | None = None
    grouped_data: list[Group] | None = None

    def to_dict(self) -> dict[str, Any]:
        """Return the nested dict shape consumed by charts and exports."""
        return {
            "key": self.key,
            "name": self.name,
            "seconds": self.seconds,
            "cost": self.cost,
            "grouped_type": self.grouped_type,
            "grouped_data": (
                [child.to_dict() for child in self.grouped_data]
                if self.grouped_data is not None
                else None
            ),
        }


@dataclass(frozen=True)
class Totals:
    """Grand totals over an ungrouped entry set."""

    seconds: int = 0
    cost: int = 0
    billable_seconds: int = 0
    entry_count: int = 0

    @property
    def non_billable_seconds(self) -> int:
        return self.seconds - self.billable_seconds
