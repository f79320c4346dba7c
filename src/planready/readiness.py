"""Readiness matching: can each planned input be covered by stock or open orders?

Inventory usually holds several rows per product (lots, bins, partial
deliveries).  Every matching row is counted, after converting its quantity
into the unit of the planned usage, and every open order line is netted the
same way.  The status of a planned usage is then:

``READY``
    on-hand stock covers the requirement;
``ON_ORDER``
    stock falls short but the remaining quantity on open orders covers the
    whole deficit (delivery dates are not considered);
``BLOCKING``
    anything else, including products with no stock and no orders at all.

Each item carries a :class:`ReadinessExplain` built from the same
contribution lists that produced its totals.
"""

from __future__ import annotations

import logging
import math
from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, TypeVar

from .accessors import (
    DEFAULT_INVENTORY_ACCESSORS,
    DEFAULT_ORDER_ACCESSORS,
    InventoryAccessors,
    OpenOrderLine,
    OrderAccessors,
    StockLot,
    UnitLabel,
    read_inventory,
    read_order_lines,
)
from .config import DEFAULT_CONFIG, EngineConfig
from .models import PlannedUsage
from .units import Unit, convert, parse_unit

logger = logging.getLogger(__name__)

T = TypeVar("T", StockLot, OpenOrderLine)


class ReadinessStatus(str, Enum):
    READY = "READY"
    ON_ORDER = "ON_ORDER"
    BLOCKING = "BLOCKING"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class InventoryContribution:
    source_index: int
    quantity: float
    unit: Unit
    converted_qty: float
    location: Optional[str] = None
    lot: Optional[str] = None
    received_date: Optional[str] = None


@dataclass(frozen=True)
class OrderLineContribution:
    order_id: str
    line_index: int
    remaining_qty: float
    unit: Unit
    converted_qty: float
    vendor_name: Optional[str] = None
    status: Optional[str] = None


@dataclass(frozen=True)
class OrderContribution:
    """Remaining quantity one order brings to a planned usage."""

    order_id: str
    vendor_name: Optional[str]
    quantity: float
    line_count: int


@dataclass(frozen=True)
class ReadinessExplain:
    """Trace of where the on-hand and on-order figures of an item came from."""

    product_id: str
    planned_unit: Unit
    required_qty: float
    on_hand_qty: float
    on_order_qty: float
    deficit: float
    short_qty: float
    inventory: Tuple[InventoryContribution, ...] = ()
    order_lines: Tuple[OrderLineContribution, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.inventory and not self.order_lines

    @property
    def by_order(self) -> Tuple[OrderContribution, ...]:
        totals: Dict[str, List[OrderLineContribution]] = {}
        for line in self.order_lines:
            totals.setdefault(line.order_id, []).append(line)
        return tuple(
            OrderContribution(
                order_id=order_id,
                vendor_name=lines[0].vendor_name,
                quantity=math.fsum(line.converted_qty for line in lines),
                line_count=len(lines),
            )
            for order_id, lines in totals.items()
        )

    def describe(self) -> List[str]:
        unit = self.planned_unit.label
        out = [f"{self.product_id}: required {self.required_qty:,.2f} {unit}"]
        out.append(f"  on hand {self.on_hand_qty:,.2f} {unit} from {len(self.inventory)} inventory row(s)")
        for row in self.inventory:
            where = " ".join(part for part in (row.location, row.lot and f"lot {row.lot}") if part)
            suffix = f" [{where}]" if where else ""
            out.append(
                f"    row {row.source_index}: {row.quantity:g} {row.unit.label} -> {row.converted_qty:,.2f} {unit}{suffix}"
            )
        out.append(f"  on order {self.on_order_qty:,.2f} {unit} from {len(self.order_lines)} open order line(s)")
        for line in self.order_lines:
            vendor = f" ({line.vendor_name})" if line.vendor_name else ""
            out.append(
                f"    order {line.order_id}{vendor} line {line.line_index}: "
                f"{line.remaining_qty:g} {line.unit.label} -> {line.converted_qty:,.2f} {unit}"
            )
        out.append(f"  deficit after stock {self.deficit:,.2f} {unit}; short after orders {self.short_qty:,.2f} {unit}")
        return out


@dataclass(frozen=True)
class ReadinessItem:
    usage: PlannedUsage
    status: ReadinessStatus
    required_qty: float
    on_hand_qty: float
    on_order_qty: float
    deficit: float
    short_qty: float
    explain: ReadinessExplain

    @property
    def id(self) -> str:
        return self.usage.id

    @property
    def label(self) -> str:
        return self.usage.label

    @property
    def product_id(self) -> str:
        return self.usage.product_id

    @property
    def planned_unit(self) -> Unit:
        return self.usage.planned_unit


@dataclass(frozen=True)
class ReadinessReport:
    items: Tuple[ReadinessItem, ...]
    ready_count: int
    on_order_count: int
    blocking_count: int
    total_count: int
    skipped_inventory_rows: int = 0
    skipped_order_lines: int = 0

    def by_status(self, status: ReadinessStatus) -> Tuple[ReadinessItem, ...]:
        return tuple(item for item in self.items if item.status is status)


def classify(required_qty: float, on_hand_qty: float, on_order_qty: float) -> Tuple[ReadinessStatus, float]:
    """Return the status and the deficit left after on-hand stock."""

    if required_qty <= 0:
        return ReadinessStatus.READY, 0.0
    deficit = max(0.0, required_qty - on_hand_qty)
    if deficit == 0:
        return ReadinessStatus.READY, deficit
    if on_order_qty >= deficit:
        return ReadinessStatus.ON_ORDER, deficit
    return ReadinessStatus.BLOCKING, deficit


def _to_planned_unit(quantity: float, label: Optional[UnitLabel], planned_unit: Unit) -> Tuple[Unit, float]:
    if label is None:
        return planned_unit, float(quantity)
    unit = parse_unit(label, planned_unit.family)
    return unit, convert(quantity, unit, planned_unit)


def _group_by_product(records: Iterable[T]) -> Dict[str, List[T]]:
    grouped: Dict[str, List[T]] = defaultdict(list)
    for record in records:
        grouped[record.product_id].append(record)
    return grouped


def evaluate_usage(
    usage: PlannedUsage,
    lots: Sequence[StockLot] = (),
    order_lines: Sequence[OpenOrderLine] = (),
) -> ReadinessItem:
    """Net one planned usage against the typed lots and open lines of its product."""

    planned_unit = usage.planned_unit
    inventory: List[InventoryContribution] = []
    for lot in lots:
        unit, converted = _to_planned_unit(lot.quantity, lot.unit_label, planned_unit)
        inventory.append(
            InventoryContribution(
                source_index=lot.source_index,
                quantity=lot.quantity,
                unit=unit,
                converted_qty=converted,
                location=lot.location,
                lot=lot.lot,
                received_date=lot.received_date,
            )
        )
    lines: List[OrderLineContribution] = []
    for line in order_lines:
        unit, converted = _to_planned_unit(line.remaining_qty, line.unit_label, planned_unit)
        lines.append(
            OrderLineContribution(
                order_id=line.order_id,
                line_index=line.line_index,
                remaining_qty=line.remaining_qty,
                unit=unit,
                converted_qty=converted,
                vendor_name=line.vendor_name,
                status=line.status,
            )
        )

    required = float(usage.required_qty) if math.isfinite(usage.required_qty) else 0.0
    on_hand = math.fsum(c.converted_qty for c in inventory)
    on_order = math.fsum(c.converted_qty for c in lines)
    status, deficit = classify(required, on_hand, on_order)
    short_qty = max(0.0, required - (on_hand + on_order))

    explain = ReadinessExplain(
        product_id=usage.product_id,
        planned_unit=planned_unit,
        required_qty=required,
        on_hand_qty=on_hand,
        on_order_qty=on_order,
        deficit=deficit,
        short_qty=short_qty,
        inventory=tuple(inventory),
        order_lines=tuple(lines),
    )
    logger.debug(
        "[readiness] %s (%s) :: required=%s on_hand=%s on_order=%s %s => %s",
        usage.label,
        usage.product_id,
        f"{required:,.3f}",
        f"{on_hand:,.3f}",
        f"{on_order:,.3f}",
        planned_unit.label,
        status.value,
    )
    return ReadinessItem(
        usage=usage,
        status=status,
        required_qty=required,
        on_hand_qty=on_hand,
        on_order_qty=on_order,
        deficit=deficit,
        short_qty=short_qty,
        explain=explain,
    )


def compute_readiness(
    planned: Sequence[PlannedUsage],
    inventory: Iterable[Any] | None,
    orders: Iterable[Any] | None = None,
    inventory_accessors: InventoryAccessors = DEFAULT_INVENTORY_ACCESSORS,
    order_accessors: OrderAccessors = DEFAULT_ORDER_ACCESSORS,
    config: Optional[EngineConfig] = None,
) -> ReadinessReport:
    """Evaluate every planned usage against inventory and open orders.

    Returns one item per planned usage, in input order.  Inputs are read once
    through the accessors and never modified.

    Raises
    ------
    UnitFamilyMismatch
        A stock or order unit belongs to the other family than the planned unit.
    UnknownUnitError
        A stock or order unit label is not recognised.
    AccessorError
        An accessor returned a value of the wrong shape.
    """

    cfg = config or DEFAULT_CONFIG
    lots, skipped_rows = read_inventory(inventory, inventory_accessors)
    if orders is None:
        open_lines: List[OpenOrderLine] = []
        skipped_lines = 0
    else:
        open_lines, skipped_lines = read_order_lines(orders, order_accessors, cfg.closed_order_statuses)

    lots_by_product = _group_by_product(lots)
    lines_by_product = _group_by_product(open_lines)

    items = tuple(
        evaluate_usage(
            usage,
            lots_by_product.get(usage.product_id, ()),
            lines_by_product.get(usage.product_id, ()),
        )
        for usage in planned or ()
    )

    counts = {status: 0 for status in ReadinessStatus}
    for item in items:
        counts[item.status] += 1

    logger.info(
        "Readiness computed for %d planned usage(s): %d ready, %d on order, %d blocking",
        len(items),
        counts[ReadinessStatus.READY],
        counts[ReadinessStatus.ON_ORDER],
        counts[ReadinessStatus.BLOCKING],
    )
    if skipped_rows or skipped_lines:
        logger.info("Skipped %d inventory row(s) and %d order line(s) as malformed", skipped_rows, skipped_lines)
    if cfg.verbose:
        for item in items:
            for line in item.explain.describe():
                logger.info("%s", line)

    return ReadinessReport(
        items=items,
        ready_count=counts[ReadinessStatus.READY],
        on_order_count=counts[ReadinessStatus.ON_ORDER],
        blocking_count=counts[ReadinessStatus.BLOCKING],
        total_count=len(items),
        skipped_inventory_rows=skipped_rows,
        skipped_order_lines=skipped_lines,
    )


__all__ = [
    "InventoryContribution",
    "OrderContribution",
    "OrderLineContribution",
    "ReadinessExplain",
    "ReadinessItem",
    "ReadinessReport",
    "ReadinessStatus",
    "classify",
    "compute_readiness",
    "evaluate_usage",
]
