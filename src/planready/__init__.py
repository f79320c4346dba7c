"""Plan readiness and cost allocation for farm input plans."""

from .config import EngineConfig, load_config
from .errors import AccessorError, PlanReadyError, SnapshotError, UnitError, UnitFamilyMismatch, UnknownUnitError
from .models import Invoice, InvoiceLine, PlannedUsage, PriceBookEntry, Product, Season
from .planning import calculate_planned_usage, planned_usages_for_readiness
from .readiness import ReadinessReport, ReadinessStatus, compute_readiness
from .reporting import make_summary_text, readiness_frame, summarize_readiness, variance_frame
from .snapshot import evaluate, load_snapshot
from .units import Unit, UnitFamily, convert, parse_unit
from .variance import allocation_gap, build_variance_by_pass_report, build_variance_report

__all__ = [
    "AccessorError",
    "EngineConfig",
    "Invoice",
    "InvoiceLine",
    "PlanReadyError",
    "PlannedUsage",
    "PriceBookEntry",
    "Product",
    "ReadinessReport",
    "ReadinessStatus",
    "Season",
    "SnapshotError",
    "Unit",
    "UnitError",
    "UnitFamily",
    "UnitFamilyMismatch",
    "UnknownUnitError",
    "allocation_gap",
    "build_variance_by_pass_report",
    "build_variance_report",
    "calculate_planned_usage",
    "compute_readiness",
    "convert",
    "evaluate",
    "load_config",
    "load_snapshot",
    "make_summary_text",
    "parse_unit",
    "planned_usages_for_readiness",
    "readiness_frame",
    "summarize_readiness",
    "variance_frame",
]
