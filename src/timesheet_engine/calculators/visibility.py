"""Role-based pruning of grouped results."""

from __future__ import annotations

from dataclasses import replace

from timesheet_engine.calculators.types import NULL_KEY, Group, GroupKey, Role, at_least

# Lowest role that sees unredacted breakdowns
FULL_VISIBILITY_ROLE = Role.MANAGER


def filter_for_role(
    groups: list[Group] | None,
    grouped_type: str | None,
    role: Role | str | None,
) -> list[Group] | None:
    """Redact a group tree for a viewer.

    Managers and above see everything. Below that, any level grouped by
    clients keeps only the NULL_KEY group, and groups left with no time
    and no children are pruned. A role of None (public report) is not
    filtered.
    """
    if groups is None or role is None or at_least(role, FULL_VISIBILITY_ROLE):
        return groups
    return _redact(groups, grouped_type)


def _redact(groups: list[Group] | None, grouped_type: str | None) -> list[Group] | None:
    if groups is None:
        return None

    visible = []
    for group in groups:
        if grouped_type == GroupKey.CLIENTS and group.key != NULL_KEY:
            continue
        children = _redact(group.grouped_data, group.grouped_type)
        if group.seconds <= 0 and not children:
            continue
        visible.append(replace(group, grouped_data=children))
    return visible
