"""Plan vs actual cost: allocation of invoice cost onto planned crop/pass buckets.

Invoices are recorded per product, not per pass.  The invoiced cost of the
products a crop plans to use is pooled into that crop's actual spend and then
spread over the crop's (crop, pass) buckets in proportion to their planned
quantity.  A product planned on several crops is divided between them by
planned quantity first, so no invoice is counted twice.  The planned cost of
each bucket comes from the price book.  The allocation is an estimate: it
shows where money *probably* went under the plan, not a traced ledger of
which lot went where.
"""

from __future__ import annotations

import logging
import math
from collections import OrderedDict, defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from .config import DEFAULT_CONFIG, EngineConfig
from .errors import UnitError
from .models import Invoice, PriceBookEntry, Product, Season
from .planning import ProductUsagePlan, calculate_planned_usage
from .units import Unit, convert, parse_unit

logger = logging.getLogger(__name__)

ALLOCATION_CAVEAT = (
    "Actual cost is allocated to crop/pass buckets in proportion to planned quantities. "
    "It is an estimate of where invoiced cost went, not a traced ledger of applied lots."
)


@dataclass(frozen=True)
class VarianceFlags:
    missing_planned_price: bool = False
    no_invoices: bool = False
    unit_mismatch: bool = False

    def names(self) -> List[str]:
        return [name for name in ("missing_planned_price", "no_invoices", "unit_mismatch") if getattr(self, name)]


@dataclass(frozen=True)
class PassVarianceRow:
    crop_name: str
    pass_name: str
    planned_cost: Optional[float]
    actual_cost_allocated: float
    variance: Optional[float]
    variance_pct: Optional[float]
    flags: VarianceFlags = field(default_factory=VarianceFlags)


@dataclass(frozen=True)
class PassVarianceReport:
    season_year: int
    rows: Tuple[PassVarianceRow, ...]
    planned_total: float
    actual_total_allocated: float
    variance_total: float
    crop_actual_totals: Dict[str, float]
    unallocated_actual: float
    caveat: str = ALLOCATION_CAVEAT


@dataclass(frozen=True)
class ProductVarianceRow:
    product_id: str
    product_name: str
    planned_qty: float
    planned_unit: Unit
    planned_unit_price: Optional[float]
    planned_cost: Optional[float]
    planned_price_source: Optional[str]
    actual_qty: float
    actual_unit_cost: Optional[float]
    actual_cost: float
    variance: Optional[float]
    variance_pct: Optional[float]
    flags: VarianceFlags = field(default_factory=VarianceFlags)


@dataclass(frozen=True)
class VarianceCoverage:
    total_products_in_plan: int
    with_invoices: int
    with_planned_price: int
    computed: int
    unit_mismatch: int


@dataclass(frozen=True)
class VarianceReport:
    season_year: int
    rows: Tuple[ProductVarianceRow, ...]
    planned_total: float
    actual_total: float
    variance_total: float
    coverage: VarianceCoverage


def select_price_entry(
    product_id: str,
    season_year: int,
    price_book: Iterable[PriceBookEntry],
    config: Optional[EngineConfig] = None,
) -> Optional[PriceBookEntry]:
    """Return the price-book entry that sets the planned price of a product.

    Only entries of ``season_year`` with a price count.  Entries from excluded
    sources (invoices by default) never set a planned price.  The rest are
    ranked by the configured source priority; ties keep price-book order.
    """

    cfg = config or DEFAULT_CONFIG
    excluded = {s.lower() for s in cfg.excluded_price_sources}
    candidates = [
        entry
        for entry in price_book or ()
        if entry.product_id == product_id
        and entry.season_year == season_year
        and entry.price is not None
        and (entry.source or "").strip().lower() not in excluded
    ]
    if not candidates:
        return None
    return min(candidates, key=lambda entry: cfg.price_source_rank(entry.source))


def price_per_unit(entry: PriceBookEntry, product: Product, target: Optional[Unit] = None) -> float:
    """Express the price of ``entry`` per ``target`` (default: the product's base unit).

    A missing price unit means the price is already per ``target``.

    Raises
    ------
    UnitError
        The price unit is unknown or belongs to the other family.
    """

    unit = target or product.base_unit
    if entry.price is None:
        raise ValueError(f"Price-book entry for {entry.product_id} has no price")
    if not entry.price_unit:
        return float(entry.price)
    price_unit = parse_unit(entry.price_unit, product.form)
    # price per one target unit = price per price unit * price units in one target unit
    return float(entry.price) * convert(1.0, unit, price_unit)


def _season_year(season: Optional[Season], config: EngineConfig) -> int:
    return config.resolve_season_year(season.year if season is not None else None)


def _invoice_lines(invoices: Iterable[Invoice], season_year: int):
    for invoice in invoices or ():
        if invoice.season_year != season_year:
            continue
        for line in invoice.lines:
            if not line.product_id:
                continue
            yield invoice, line


def actual_cost_by_product(invoices: Iterable[Invoice], season_year: int) -> Dict[str, float]:
    """Sum the landed cost of invoice lines of ``season_year`` per product."""

    costs: Dict[str, List[float]] = defaultdict(list)
    for _, line in _invoice_lines(invoices, season_year):
        costs[line.product_id].append(line.cost)
    return {product_id: math.fsum(values) for product_id, values in costs.items()}


def _planned_unit_price(
    plan: ProductUsagePlan,
    product: Optional[Product],
    entry: Optional[PriceBookEntry],
) -> Tuple[Optional[float], bool]:
    """Return the planned price per plan unit and whether the price unit mismatched."""

    if entry is None or product is None:
        return None, False
    try:
        return price_per_unit(entry, product, plan.unit), False
    except UnitError as exc:
        logger.warning(
            "Price-book entry for %s uses unit %r which cannot be expressed in %s: %s",
            plan.product_id,
            entry.price_unit,
            plan.unit.label,
            exc,
        )
        return None, True


def _split(amount: float, quantities: Sequence[float], total: float) -> np.ndarray:
    shares = np.asarray(quantities, dtype=float) / total
    parts = amount * shares
    if len(parts):
        # the last bucket takes the rounding remainder so the parts sum to amount
        parts[-1] = amount - parts[:-1].sum()
    return parts


class _Bucket:
    __slots__ = ("crop_name", "pass_name", "planned", "priced", "quantities", "actual", "invoiced", "unit_mismatch")

    def __init__(self, crop_name: str, pass_name: str) -> None:
        self.crop_name = crop_name
        self.pass_name = pass_name
        self.planned: List[float] = []
        self.priced = True
        self.quantities: List[float] = []
        self.actual = 0.0
        self.invoiced = False
        self.unit_mismatch = False

    @property
    def quantity(self) -> float:
        return math.fsum(self.quantities)

    def to_row(self) -> PassVarianceRow:
        planned = math.fsum(self.planned) if self.priced else None
        actual = self.actual
        variance = actual - planned if planned is not None else None
        variance_pct = (variance / planned * 100.0) if planned else None
        return PassVarianceRow(
            crop_name=self.crop_name,
            pass_name=self.pass_name,
            planned_cost=planned,
            actual_cost_allocated=actual,
            variance=variance,
            variance_pct=variance_pct,
            flags=VarianceFlags(
                missing_planned_price=not self.priced,
                no_invoices=not self.invoiced,
                unit_mismatch=self.unit_mismatch,
            ),
        )


def _by_abs_variance(rows: Iterable) -> Tuple:
    return tuple(sorted(rows, key=lambda row: -abs(row.variance or 0.0)))


def build_variance_by_pass_report(
    season: Optional[Season],
    products: Sequence[Product],
    invoices: Iterable[Invoice],
    price_book: Iterable[PriceBookEntry],
    config: Optional[EngineConfig] = None,
) -> PassVarianceReport:
    """Allocate invoiced cost onto planned crop/pass buckets and compare with plan.

    Parameters
    ----------
    season:
        The season plan; ``None`` yields an empty report.
    products:
        Product catalogue; defines each product's form and name.
    invoices:
        Invoices of any season; only those of the plan's season year count.
    price_book:
        Price-book entries used for the planned price.
    config:
        Engine configuration (price source ranking, season year fallback).

    Returns
    -------
    PassVarianceReport
        Rows ordered by absolute variance, largest first.  Within each crop
        the allocated costs sum to the invoiced cost pooled for that crop.
        Invoiced cost that no bucket can absorb (products missing from the
        plan or planned at zero quantity) is reported as ``unallocated_actual``.
    """

    cfg = config or DEFAULT_CONFIG
    season_year = _season_year(season, cfg)
    plans = calculate_planned_usage(season, products)
    products_by_id = {p.id: p for p in products}
    actual_by_product = actual_cost_by_product(invoices, season_year)
    price_entries = list(price_book or ())

    buckets: "OrderedDict[Tuple[str, str], _Bucket]" = OrderedDict()
    crop_pools: Dict[str, List[float]] = OrderedDict()
    planned_ids = {plan.product_id for plan in plans}
    unallocated_parts = [cost for product_id, cost in actual_by_product.items() if product_id not in planned_ids]

    for plan in plans:
        entry = select_price_entry(plan.product_id, season_year, price_entries, cfg)
        unit_price, mismatch = _planned_unit_price(plan, products_by_id.get(plan.product_id), entry)
        planned_cost = plan.total_needed * unit_price if unit_price is not None else None
        actual = actual_by_product.get(plan.product_id, 0.0)

        quantities = [usage.quantity for usage in plan.usages]
        total = plan.total_needed
        if total > 0:
            planned_parts = _split(planned_cost, quantities, total) if planned_cost is not None else None
        else:
            planned_parts = np.zeros(len(quantities)) if planned_cost is not None else None

        crop_qty: Dict[str, float] = OrderedDict()
        for index, usage in enumerate(plan.usages):
            key = (usage.crop_name, usage.pass_name)
            bucket = buckets.get(key)
            if bucket is None:
                bucket = buckets[key] = _Bucket(usage.crop_name, usage.pass_name)
            if planned_parts is None:
                bucket.priced = False
            else:
                bucket.planned.append(float(planned_parts[index]))
            if mismatch:
                bucket.unit_mismatch = True
            bucket.quantities.append(usage.quantity)
            crop_qty[usage.crop_name] = crop_qty.get(usage.crop_name, 0.0) + usage.quantity
            crop_pools.setdefault(usage.crop_name, [])

        # a product planned on several crops feeds each crop's pool by its share of the product
        if total > 0:
            for crop_name, part in zip(crop_qty, _split(actual, list(crop_qty.values()), total)):
                crop_pools[crop_name].append(float(part))
        else:
            unallocated_parts.append(actual)

        logger.debug(
            "[variance] %s :: planned=%s actual=%s over %d bucket(s) in %d crop(s)",
            plan.product_id,
            "n/a" if planned_cost is None else f"{planned_cost:,.2f}",
            f"{actual:,.2f}",
            len(plan.usages),
            len(crop_qty),
        )

    for crop_name, parts in crop_pools.items():
        crop_actual = math.fsum(parts)
        crop_buckets = [bucket for bucket in buckets.values() if bucket.crop_name == crop_name]
        quantities = [bucket.quantity for bucket in crop_buckets]
        crop_total = math.fsum(quantities)
        if crop_total <= 0:
            unallocated_parts.append(crop_actual)
            continue
        for bucket, share in zip(crop_buckets, _split(crop_actual, quantities, crop_total)):
            bucket.actual = float(share)
            bucket.invoiced = crop_actual != 0.0
        logger.debug(
            "[variance] crop %s :: pooled actual %s over %d bucket(s)",
            crop_name,
            f"{crop_actual:,.2f}",
            len(crop_buckets),
        )

    rows = [bucket.to_row() for bucket in buckets.values()]
    crop_totals: Dict[str, List[float]] = OrderedDict()
    for row in rows:
        crop_totals.setdefault(row.crop_name, []).append(row.actual_cost_allocated)

    unallocated = math.fsum(unallocated_parts)
    planned_total = math.fsum(row.planned_cost or 0.0 for row in rows)
    actual_total = math.fsum(row.actual_cost_allocated for row in rows)
    variance_total = math.fsum(row.variance or 0.0 for row in rows)

    logger.info(
        "Variance by pass for %d: %d bucket(s), planned %s, allocated %s, unallocated %s",
        season_year,
        len(rows),
        f"{planned_total:,.2f}",
        f"{actual_total:,.2f}",
        f"{unallocated:,.2f}",
    )
    return PassVarianceReport(
        season_year=season_year,
        rows=_by_abs_variance(rows),
        planned_total=planned_total,
        actual_total_allocated=actual_total,
        variance_total=variance_total,
        crop_actual_totals={crop: math.fsum(values) for crop, values in crop_totals.items()},
        unallocated_actual=unallocated,
    )


def _actual_quantity(lines, product: Optional[Product], unit: Unit) -> Tuple[float, bool]:
    """Sum invoiced quantities in ``unit``; the flag is set when a line cannot be converted."""

    quantities: List[float] = []
    for line in lines:
        if not line.unit:
            quantities.append(line.quantity)
            continue
        try:
            source = parse_unit(line.unit, product.form if product is not None else unit.family)
            quantities.append(convert(line.quantity, source, unit))
        except UnitError as exc:
            logger.warning("Invoice line for %s in %r cannot be expressed in %s: %s", line.product_id, line.unit, unit.label, exc)
            return 0.0, True
    return math.fsum(quantities), False


def build_variance_report(
    season: Optional[Season],
    products: Sequence[Product],
    invoices: Iterable[Invoice],
    price_book: Iterable[PriceBookEntry],
    config: Optional[EngineConfig] = None,
) -> VarianceReport:
    """Plan vs actual per planned product, with coverage counters.

    Actual quantities are converted into the planned unit.  Variance is only
    computed when the product has a planned price, invoice cost and an actual
    quantity that could be converted; totals still include every known
    planned and actual cost.
    """

    cfg = config or DEFAULT_CONFIG
    season_year = _season_year(season, cfg)
    plans = calculate_planned_usage(season, products)
    products_by_id = {p.id: p for p in products}
    price_entries = list(price_book or ())

    lines_by_product: Dict[str, list] = defaultdict(list)
    for _, line in _invoice_lines(invoices, season_year):
        lines_by_product[line.product_id].append(line)

    rows: List[ProductVarianceRow] = []
    planned_costs: List[float] = []
    actual_costs: List[float] = []
    with_invoices = with_price = computed = mismatches = 0

    for plan in plans:
        product = products_by_id.get(plan.product_id)
        entry = select_price_entry(plan.product_id, season_year, price_entries, cfg)
        unit_price, price_mismatch = _planned_unit_price(plan, product, entry)
        planned_cost = plan.total_needed * unit_price if unit_price is not None else None

        lines = lines_by_product.get(plan.product_id, [])
        actual_cost = math.fsum(line.cost for line in lines)
        has_invoices = bool(lines) and actual_cost > 0

        actual_qty = 0.0
        actual_unit_cost: Optional[float] = None
        qty_mismatch = False
        if has_invoices:
            with_invoices += 1
            actual_qty, qty_mismatch = _actual_quantity(lines, product, plan.unit)
            if not qty_mismatch and actual_qty > 0:
                actual_unit_cost = actual_cost / actual_qty
        unit_mismatch = price_mismatch or qty_mismatch
        if unit_mismatch:
            mismatches += 1
        if entry is not None:
            with_price += 1

        variance: Optional[float] = None
        variance_pct: Optional[float] = None
        if planned_cost is not None and has_invoices and actual_unit_cost is not None:
            variance = actual_cost - planned_cost
            variance_pct = (variance / planned_cost * 100.0) if planned_cost > 0 else None
            computed += 1
        if planned_cost is not None:
            planned_costs.append(planned_cost)
        if has_invoices:
            actual_costs.append(actual_cost)

        rows.append(
            ProductVarianceRow(
                product_id=plan.product_id,
                product_name=product.name if product is not None else "Unknown product",
                planned_qty=plan.total_needed,
                planned_unit=plan.unit,
                planned_unit_price=unit_price,
                planned_cost=planned_cost,
                planned_price_source=entry.source if entry is not None else None,
                actual_qty=actual_qty,
                actual_unit_cost=actual_unit_cost,
                actual_cost=actual_cost if has_invoices else 0.0,
                variance=variance,
                variance_pct=variance_pct,
                flags=VarianceFlags(
                    missing_planned_price=unit_price is None,
                    no_invoices=not has_invoices,
                    unit_mismatch=unit_mismatch,
                ),
            )
        )

    planned_total = math.fsum(planned_costs)
    actual_total = math.fsum(actual_costs)
    coverage = VarianceCoverage(
        total_products_in_plan=len(plans),
        with_invoices=with_invoices,
        with_planned_price=with_price,
        computed=computed,
        unit_mismatch=mismatches,
    )
    logger.info(
        "Variance for %d: %d of %d product(s) computed, %d with invoices, %d unit mismatch(es)",
        season_year,
        computed,
        len(plans),
        with_invoices,
        mismatches,
    )
    return VarianceReport(
        season_year=season_year,
        rows=_by_abs_variance(rows),
        planned_total=planned_total,
        actual_total=actual_total,
        variance_total=actual_total - planned_total,
        coverage=coverage,
    )


def allocation_gap(report: PassVarianceReport, invoices: Iterable[Invoice], season_year: Optional[int] = None) -> float:
    """Invoiced cost of the season not accounted for by the report.

    Zero (within float tolerance) whenever every invoiced dollar was either
    allocated to a bucket or reported as unallocated.
    """

    year = season_year if season_year is not None else report.season_year
    costs = np.fromiter((line.cost for _, line in _invoice_lines(invoices, year)), dtype=float)
    accounted = report.actual_total_allocated + report.unallocated_actual
    return float(costs.sum()) - accounted


def is_balanced(report: PassVarianceReport, invoices: Iterable[Invoice], config: Optional[EngineConfig] = None) -> bool:
    cfg = config or DEFAULT_CONFIG
    gap = allocation_gap(report, invoices)
    return bool(np.isclose(gap, 0.0, atol=cfg.allocation_tolerance, rtol=0.0))


__all__ = [
    "ALLOCATION_CAVEAT",
    "PassVarianceReport",
    "PassVarianceRow",
    "ProductVarianceRow",
    "VarianceCoverage",
    "VarianceFlags",
    "VarianceReport",
    "actual_cost_by_product",
    "allocation_gap",
    "build_variance_by_pass_report",
    "build_variance_report",
    "is_balanced",
    "price_per_unit",
    "select_price_entry",
]
