"""Services composing the calculators with the entry store."""

from timesheet_engine.services.entry_billing import EntryBillingService
from timesheet_engine.services.permissions import (
    Action,
    PermissionDeniedError,
    PermissionService,
    Resource,
    get_role,
)
from timesheet_engine.services.rate_cascade import (
    InvalidRateChangeError,
    RateCascadeService,
    RateChangeResult,
    RateSourceNotFoundError,
)
from timesheet_engine.services.report_assembler import ReportAssembler
from timesheet_engine.services.report_query import (
    ReportFilters,
    ReportProperties,
    ViewerContext,
    build_entry_criteria,
)
from timesheet_engine.services.report_service import ReportNotFoundError, ReportService

__all__ = [
    "EntryBillingService",
    "Action",
    "PermissionDeniedError",
    "PermissionService",
    "Resource",
    "get_role",
    "InvalidRateChangeError",
    "RateCascadeService",
    "RateChangeResult",
    "RateSourceNotFoundError",
    "ReportAssembler",
    "ReportFilters",
    "ReportProperties",
    "ViewerContext",
    "build_entry_criteria",
    "ReportNotFoundError",
    "ReportService",
]
