"""Recursive grouping of time entries into keyed, costed summaries."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import date, datetime, time, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from timesheet_engine.calculators.types import DATE_KEYS, NULL_KEY, Group, GroupKey, Totals

SECONDS_PER_HOUR = Decimal(3600)
WHOLE_UNIT = Decimal("1")
CENT = Decimal("0.01")

# Labels for the NULL_KEY bucket of each dimension
NULL_NAMES: dict[str, str] = {
    GroupKey.DATE: "No Date",
    GroupKey.DAY: "No Date",
    GroupKey.MEMBERS: "No Member",
    GroupKey.TASKS: "No Task",
    GroupKey.CLIENTS: "No Client",
    GroupKey.BILLABLE: "Non-Billable",
    GroupKey.DESCRIPTION: "No Description",
    GroupKey.PROJECTS: "No Project",
}
UNKNOWN_NAME = "Unknown"


def entry_seconds(entry: Any) -> int:
    """Tracked seconds of an entry; running entries count as 0."""
    return entry.duration_seconds or 0


def _billable_amount(entry: Any) -> Decimal | None:
    if not entry.billable or entry.billable_rate is None:
        return None
    rate = Decimal(str(entry.billable_rate))
    return Decimal(entry_seconds(entry)) / SECONDS_PER_HOUR * rate


def entry_cost(entry: Any) -> int:
    """Cost of one entry rounded half-up to a whole currency unit."""
    amount = _billable_amount(entry)
    if amount is None:
        return 0
    return int(amount.quantize(WHOLE_UNIT, rounding=ROUND_HALF_UP))


def entry_cost_cents(entry: Any) -> Decimal:
    """Cost of one entry rounded to cents, used by detailed exports."""
    amount = _billable_amount(entry)
    if amount is None:
        return Decimal("0.00")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def calculate_totals(entries: Iterable[Any]) -> Totals:
    """Grand totals over raw entries, independent of any grouping."""
    seconds = cost = billable_seconds = count = 0
    for entry in entries:
        entry_secs = entry_seconds(entry)
        seconds += entry_secs
        cost += entry_cost(entry)
        if entry.billable:
            billable_seconds += entry_secs
        count += 1
    return Totals(
        seconds=seconds,
        cost=cost,
        billable_seconds=billable_seconds,
        entry_count=count,
    )


def to_local(moment: datetime, utc_offset_minutes: int) -> datetime:
    """Convert a UTC instant to naive local wall-clock time.

    utc_offset_minutes uses the getTimezoneOffset() convention: the minutes
    to add to local time to get UTC (UTC+05:30 is -330). Naive datetimes
    are taken to be UTC.
    """
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc).replace(tzinfo=None)
    return moment - timedelta(minutes=utc_offset_minutes)


def local_day_bounds(day: date, utc_offset_minutes: int) -> tuple[datetime, datetime]:
    """UTC instants [start, end) covering one local calendar day."""
    start = datetime.combine(day, time.min, tzinfo=timezone.utc) + timedelta(
        minutes=utc_offset_minutes
    )
    return start, start + timedelta(days=1)


def date_range(start: date, end: date) -> list[date]:
    """Calendar days from start to end, both inclusive."""
    days = []
    current = start
    while current <= end:
        days.append(current)
        current += timedelta(days=1)
    return days


def format_day_name(day: date) -> str:
    """Weekday label, e.g. 'Mon, Jan 1, 2024'."""
    return f"{day:%a}, {day:%b} {day.day}, {day.year}"


def _id_or_none(value: Any) -> str | None:
    return str(value) if value is not None else None


class GroupingEngine:
    """Partitions entries into nested groups along 1..N dimensions.

    Each level buckets entries by the dimension's value, in order of first
    appearance, with entries lacking a value collected under NULL_KEY.
    seconds and cost of every group are summed from the raw entries in the
    bucket; cost accrues per entry at whole-unit rounding.
    """

    def __init__(self, utc_offset_minutes: int = 0):
        self.utc_offset_minutes = utc_offset_minutes

    def group_entries(
        self,
        entries: Iterable[Any],
        group_keys: Sequence[str],
        fill_range: tuple[date, date] | None = None,
    ) -> list[Group] | None:
        """Group entries by the given keys.

        Args:
            entries: Time entries (ORM objects or anything with the same attributes)
            group_keys: Ordered dimensions; empty means no grouping
            fill_range: Inclusive (start, end) days; with a single date key
                every day in the range is returned, zero-filled where empty

        Returns:
            Top-level groups, or None when no keys were given
        """
        keys = [str(key) for key in group_keys]
        if not keys:
            return None

        groups = self._partition(list(entries), keys)

        if fill_range is not None and len(keys) == 1 and keys[0] in DATE_KEYS:
            groups = self.fill_date_range(groups, fill_range[0], fill_range[1])

        return groups

    def _partition(self, entries: list[Any], keys: list[str]) -> list[Group]:
        current, rest = keys[0], keys[1:]

        buckets: dict[str, list[Any]] = {}
        for entry in entries:
            value = self.group_value(entry, current)
            buckets.setdefault(NULL_KEY if value is None else value, []).append(entry)

        groups = []
        for key, bucket in buckets.items():
            groups.append(
                Group(
                    key=key,
                    name=self.group_name(bucket[0], current, key),
                    seconds=sum(entry_seconds(e) for e in bucket),
                    cost=sum(entry_cost(e) for e in bucket),
                    grouped_type=rest[0] if rest else None,
                    grouped_data=self._partition(bucket, rest) if rest else None,
                )
            )
        return groups

    def group_value(self, entry: Any, key: str) -> str | None:
        """Raw grouping value of an entry for one dimension."""
        if key in DATE_KEYS:
            if entry.start is None:
                return None
            return to_local(entry.start, self.utc_offset_minutes).date().isoformat()
        if key == GroupKey.MEMBERS:
            return _id_or_none(entry.member_id)
        if key == GroupKey.TASKS:
            return _id_or_none(entry.task_id)
        if key == GroupKey.CLIENTS:
            project = entry.project
            return _id_or_none(project.client_id) if project is not None else None
        if key == GroupKey.BILLABLE:
            return None if entry.billable is None else str(int(entry.billable))
        if key == GroupKey.DESCRIPTION:
            return entry.description or None
        if key == GroupKey.PROJECTS:
            return _id_or_none(entry.project_id)

        # Unrecognized dimensions fall back to the attribute of the same name
        value = getattr(entry, key, None)
        if value is None or value == "":
            return None
        return str(value)

    def group_name(self, entry: Any, key: str, value: str) -> str:
        """Human-readable label of a bucket, taken from its first entry."""
        if value == NULL_KEY:
            return NULL_NAMES.get(key, UNKNOWN_NAME)
        if key in DATE_KEYS:
            return format_day_name(date.fromisoformat(value))
        if key == GroupKey.MEMBERS:
            member = entry.member
            return member.name if member is not None and member.name else "Unknown Member"
        if key == GroupKey.TASKS:
            task = entry.task
            return task.name if task is not None else "No Task"
        if key == GroupKey.CLIENTS:
            client = entry.project.client if entry.project is not None else None
            return client.name if client is not None else "No Client"
        if key == GroupKey.BILLABLE:
            return "Billable" if entry.billable else "Non-Billable"
        if key == GroupKey.DESCRIPTION:
            return entry.description
        if key == GroupKey.PROJECTS:
            project = entry.project
            return project.name if project is not None else "No Project"
        return value

    def fill_date_range(self, groups: list[Group], start: date, end: date) -> list[Group]:
        """One group per day of [start, end], zero-filled where no entries exist."""
        by_key = {group.key: group for group in groups}
        filled = []
        for day in date_range(start, end):
            key = day.isoformat()
            filled.append(
                by_key.get(key)
                or Group(
                    key=key,
                    name=format_day_name(day),
                    seconds=0,
                    cost=0,
                    grouped_type=None,
                    grouped_data=None,
                )
            )
        return filled

    def local_day(self, moment: datetime) -> date:
        """Local calendar day of a UTC instant."""
        return to_local(moment, self.utc_offset_minutes).date()
