"""Rate resolution and time aggregation calculators."""

from timesheet_engine.calculators.grouping import GroupingEngine, calculate_totals, entry_cost
from timesheet_engine.calculators.rate_resolver import RateLookup, RateResolver, SqlRateLookup
from timesheet_engine.calculators.types import Group, RateLevel, ResolvedRate, Role, Totals
from timesheet_engine.calculators.visibility import filter_for_role

__all__ = [
    "GroupingEngine",
    "calculate_totals",
    "entry_cost",
    "RateLookup",
    "RateResolver",
    "SqlRateLookup",
    "Group",
    "RateLevel",
    "ResolvedRate",
    "Role",
    "Totals",
    "filter_for_role",
]
