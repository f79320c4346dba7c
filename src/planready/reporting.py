from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional, Sequence, Union

import pandas as pd

from .accessors import field_getter
from .errors import UnitError
from .models import Product
from .readiness import ReadinessReport, ReadinessStatus
from .units import Unit, convert, parse_unit
from .variance import PassVarianceReport, VarianceReport

logger = logging.getLogger(__name__)

READINESS_COLUMNS = [
    "ID",
    "LABEL",
    "PRODUCT_ID",
    "CROP",
    "PASS",
    "UNIT",
    "REQUIRED_QTY",
    "ON_HAND_QTY",
    "ON_ORDER_QTY",
    "DEFICIT",
    "SHORT_QTY",
    "STATUS",
]
PASS_VARIANCE_COLUMNS = [
    "CROP",
    "PASS",
    "PLANNED_COST",
    "ACTUAL_COST_ALLOCATED",
    "VARIANCE",
    "VARIANCE_PCT",
    "FLAGS",
]
PRODUCT_VARIANCE_COLUMNS = [
    "PRODUCT_ID",
    "PRODUCT_NAME",
    "PLANNED_QTY",
    "UNIT",
    "PLANNED_UNIT_PRICE",
    "PLANNED_COST",
    "PRICE_SOURCE",
    "ACTUAL_QTY",
    "ACTUAL_UNIT_COST",
    "ACTUAL_COST",
    "VARIANCE",
    "VARIANCE_PCT",
    "FLAGS",
]


@dataclass(frozen=True)
class ReadinessSummary:
    total_products: int
    ready_count: int
    on_order_count: int
    blocking_count: int
    ready_pct: float
    on_order_pct: float
    blocking_pct: float
    on_hand_value: float
    on_order_value: float
    planned_value: float
    short_value: float
    coverage_pct: float
    on_hand_qty_total: float
    on_order_qty_total: float
    planned_qty_total: float


def readiness_frame(report: ReadinessReport) -> pd.DataFrame:
    records = [
        {
            "ID": item.id,
            "LABEL": item.label,
            "PRODUCT_ID": item.product_id,
            "CROP": item.usage.crop,
            "PASS": item.usage.pass_name,
            "UNIT": item.planned_unit.label,
            "REQUIRED_QTY": item.required_qty,
            "ON_HAND_QTY": item.on_hand_qty,
            "ON_ORDER_QTY": item.on_order_qty,
            "DEFICIT": item.deficit,
            "SHORT_QTY": item.short_qty,
            "STATUS": item.status.value,
        }
        for item in report.items
    ]
    return pd.DataFrame.from_records(records, columns=READINESS_COLUMNS)


def variance_frame(report: Union[PassVarianceReport, VarianceReport]) -> pd.DataFrame:
    """Tabulate either variance report, one row per report row, in report order.

    Unknown planned costs and variances become ``NaN``.
    """

    if isinstance(report, PassVarianceReport):
        records = [
            {
                "CROP": row.crop_name,
                "PASS": row.pass_name,
                "PLANNED_COST": row.planned_cost,
                "ACTUAL_COST_ALLOCATED": row.actual_cost_allocated,
                "VARIANCE": row.variance,
                "VARIANCE_PCT": row.variance_pct,
                "FLAGS": ", ".join(row.flags.names()),
            }
            for row in report.rows
        ]
        columns = PASS_VARIANCE_COLUMNS
    else:
        records = [
            {
                "PRODUCT_ID": row.product_id,
                "PRODUCT_NAME": row.product_name,
                "PLANNED_QTY": row.planned_qty,
                "UNIT": row.planned_unit.label,
                "PLANNED_UNIT_PRICE": row.planned_unit_price,
                "PLANNED_COST": row.planned_cost,
                "PRICE_SOURCE": row.planned_price_source,
                "ACTUAL_QTY": row.actual_qty,
                "ACTUAL_UNIT_COST": row.actual_unit_cost,
                "ACTUAL_COST": row.actual_cost,
                "VARIANCE": row.variance,
                "VARIANCE_PCT": row.variance_pct,
                "FLAGS": ", ".join(row.flags.names()),
            }
            for row in report.rows
        ]
        columns = PRODUCT_VARIANCE_COLUMNS
    frame = pd.DataFrame.from_records(records, columns=columns)
    for column in columns:
        if column == "VARIANCE" or column.endswith(("_COST", "_PCT", "_PRICE", "_QTY", "_ALLOCATED")):
            frame[column] = pd.to_numeric(frame[column], errors="coerce")
    return frame


def _unit_price(product: Optional[Product], unit: Unit) -> float:
    if product is None or product.price is None:
        return 0.0
    if not product.price_unit:
        return float(product.price)
    try:
        price_unit = parse_unit(product.price_unit, product.form)
        return float(product.price) * convert(1.0, unit, price_unit)
    except UnitError:
        logger.debug("Cannot express price of %s per %s; valuing it at 0", product.id, unit.label)
        return 0.0


def summarize_readiness(
    report: ReadinessReport,
    products: Sequence[Product],
    order_values: Optional[Mapping[str, float]] = None,
) -> ReadinessSummary:
    """Dashboard view of a readiness report: counts, shares and value coverage.

    Parameters
    ----------
    report:
        Result of :func:`~planready.readiness.compute_readiness`.
    products:
        Catalogue providing unit prices for on-hand and planned value.
    order_values:
        Value of open purchase lines per product id.  On-order value uses
        these amounts, not catalogue prices.

    Returns
    -------
    ReadinessSummary
        Percentages are of the number of planned items; coverage is the share
        of planned value already held or ordered, capped at 100.
    """

    by_id = {p.id: p for p in products}
    values = order_values or {}
    total = report.total_count or 1

    on_hand_value = on_order_value = planned_value = 0.0
    on_hand_qty = on_order_qty = planned_qty = 0.0
    for item in report.items:
        price = _unit_price(by_id.get(item.product_id), item.planned_unit)
        on_hand_value += item.on_hand_qty * price
        on_order_value += float(values.get(item.product_id, 0.0) or 0.0)
        planned_value += item.required_qty * price
        on_hand_qty += item.on_hand_qty
        on_order_qty += item.on_order_qty
        planned_qty += item.required_qty

    short_value = max(0.0, planned_value - on_hand_value - on_order_value)
    coverage = min(100.0, (on_hand_value + on_order_value) / planned_value * 100.0) if planned_value > 0 else 100.0

    return ReadinessSummary(
        total_products=report.total_count,
        ready_count=report.ready_count,
        on_order_count=report.on_order_count,
        blocking_count=report.blocking_count,
        ready_pct=report.ready_count / total * 100.0,
        on_order_pct=report.on_order_count / total * 100.0,
        blocking_pct=report.blocking_count / total * 100.0,
        on_hand_value=on_hand_value,
        on_order_value=on_order_value,
        planned_value=planned_value,
        short_value=short_value,
        coverage_pct=coverage,
        on_hand_qty_total=on_hand_qty,
        on_order_qty_total=on_order_qty,
        planned_qty_total=planned_qty,
    )


_purchase_status = field_getter("status")
_purchase_season = field_getter("seasonId", "season_id")
_purchase_lines = field_getter("lineItems", "line_items", "lines", default=())
_line_product = field_getter("productId", "product_id")
_line_total = field_getter("totalPrice", "total_price")


def order_values_from_purchases(
    purchases: Iterable[Any],
    open_statuses: Iterable[str] = ("ordered",),
    season_id: Optional[str] = None,
) -> dict:
    """Sum ``totalPrice`` of purchase lines per product for purchases still on order.

    Purchases may be mappings or objects.  With ``season_id`` only purchases
    tagged with that season count; untagged purchases are kept.
    """

    statuses = {s.lower() for s in open_statuses}
    totals: dict = {}
    for purchase in purchases or ():
        if str(_purchase_status(purchase) or "").lower() not in statuses:
            continue
        tagged = _purchase_season(purchase)
        if season_id is not None and tagged is not None and str(tagged) != str(season_id):
            continue
        for line in _purchase_lines(purchase) or ():
            product_id = _line_product(line)
            amount = _line_total(line)
            if product_id and amount:
                key = str(product_id).strip()
                totals[key] = totals.get(key, 0.0) + float(amount)
    return totals


def make_readiness_text(report: ReadinessReport) -> str:
    blocking = report.by_status(ReadinessStatus.BLOCKING)
    lines = [
        f"{report.total_count} planned input(s): {report.ready_count} ready, "
        f"{report.on_order_count} on order, {report.blocking_count} blocking."
    ]
    for item in blocking:
        lines.append(f"  BLOCKING {item.label}: short {item.short_qty:,.2f} {item.planned_unit.label}")
    return "\n".join(lines) + "\n"


def make_summary_text(report: Union[PassVarianceReport, VarianceReport]) -> str:
    frame = variance_frame(report)
    top = frame.head(5)
    if isinstance(report, PassVarianceReport):
        actual = report.actual_total_allocated
        top = top[["CROP", "PASS", "PLANNED_COST", "ACTUAL_COST_ALLOCATED", "VARIANCE"]]
        footer = (
            f"Unallocated invoice cost (products not in plan): ${report.unallocated_actual:,.0f}.\n"
            f"{report.caveat}\n"
        )
    else:
        actual = report.actual_total
        top = top[["PRODUCT_NAME", "PLANNED_COST", "ACTUAL_COST", "VARIANCE"]]
        cov = report.coverage
        footer = (
            f"Variance computed for {cov.computed} of {cov.total_products_in_plan} planned product(s); "
            f"{cov.unit_mismatch} unit mismatch(es).\n"
        )
    return (
        f"Season {report.season_year}: planned ${report.planned_total:,.0f}, actual ${actual:,.0f}, "
        f"variance ${report.variance_total:,.0f}.\n"
        f"Top variance drivers:\n{top.to_string(index=False)}\n"
        f"{footer}"
    )


__all__ = [
    "ReadinessSummary",
    "make_readiness_text",
    "make_summary_text",
    "order_values_from_purchases",
    "readiness_frame",
    "summarize_readiness",
    "variance_frame",
]
