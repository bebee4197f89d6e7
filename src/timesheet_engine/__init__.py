"""Billable-rate resolution and time-entry aggregation engine."""

__version__ = "0.1.0"
