"""Translation boundary between loosely shaped source rows and typed records.

Inventory rows and purchase orders arrive from several integrations whose
field names differ (``productId`` vs ``product_id`` and so on).  Callers
describe each source once with an :class:`InventoryAccessors` or
:class:`OrderAccessors` bundle; :func:`read_inventory` and
:func:`read_order_lines` apply it and hand typed :class:`StockLot` /
:class:`OpenOrderLine` records to the matchers.  Nothing past this module
reads a loose row.

Malformed values are handled in two ways:

* a missing product id or quantity makes the record non-matching: it is
  skipped, counted and logged, and the run continues;
* a value of the wrong shape (text that is not a number, a ``lines`` field
  that is not a sequence, an accessor that is not callable) raises
  :class:`~planready.errors.AccessorError`.

Exceptions raised by the accessor functions themselves are not caught.
"""

from __future__ import annotations

import logging
import math
import numbers
from dataclasses import dataclass, fields
from decimal import Decimal
from typing import Any, Callable, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from .config import DEFAULT_CLOSED_ORDER_STATUSES
from .errors import AccessorError
from .units import Unit

logger = logging.getLogger(__name__)

Getter = Callable[[Any], Any]
UnitLabel = Union[str, Unit]


def field_getter(*names: str, default: Any = None) -> Getter:
    """Return a getter reading the first non-null field among ``names``.

    Works for mappings and for plain objects (attribute access), so the same
    accessor can read JSON rows and ORM/dataclass instances.
    """

    if not names:
        raise ValueError("field_getter requires at least one field name")

    def _get(row: Any) -> Any:
        for name in names:
            if isinstance(row, Mapping):
                value = row.get(name)
            else:
                value = getattr(row, name, None)
            if value is not None:
                return value
        return default

    _get.__name__ = "get_" + "_or_".join(names)
    return _get


def _check_callables(bundle: object, optional: Sequence[str]) -> None:
    for f in fields(bundle):  # type: ignore[arg-type]
        value = getattr(bundle, f.name)
        if value is None and f.name in optional:
            continue
        if not callable(value):
            raise AccessorError(f"{type(bundle).__name__}.{f.name} must be callable, got {value!r}")


@dataclass(frozen=True)
class InventoryAccessors:
    product_id: Getter
    quantity: Getter
    unit: Optional[Getter] = None
    container_count: Optional[Getter] = None
    location: Optional[Getter] = None
    lot: Optional[Getter] = None
    received_date: Optional[Getter] = None

    def __post_init__(self) -> None:
        _check_callables(self, ("unit", "container_count", "location", "lot", "received_date"))


@dataclass(frozen=True)
class OrderAccessors:
    order_id: Getter
    lines: Getter
    line_product_id: Getter
    line_remaining_qty: Getter
    status: Optional[Getter] = None
    vendor_name: Optional[Getter] = None
    line_unit: Optional[Getter] = None
    is_open: Optional[Callable[[Any], bool]] = None

    def __post_init__(self) -> None:
        _check_callables(self, ("status", "vendor_name", "line_unit", "is_open"))


@dataclass(frozen=True)
class StockLot:
    """One physical inventory row after accessor translation."""

    product_id: str
    quantity: float
    unit_label: Optional[UnitLabel]
    source_index: int
    location: Optional[str] = None
    lot: Optional[str] = None
    received_date: Optional[str] = None


@dataclass(frozen=True)
class OpenOrderLine:
    """Remaining quantity of one line on an order that is still open."""

    order_id: str
    product_id: str
    remaining_qty: float
    unit_label: Optional[UnitLabel]
    vendor_name: Optional[str]
    status: Optional[str]
    order_index: int
    line_index: int


def _remaining_quantity(line: Any) -> Any:
    remaining = field_getter("remainingQuantity", "remaining_quantity", "remainingQty", "remaining_qty")(line)
    if remaining is not None:
        return remaining
    ordered = _read_number(field_getter("orderedQuantity", "ordered_quantity", "quantity")(line), "ordered quantity")
    if ordered is None:
        return None
    received = _read_number(field_getter("receivedQuantity", "received_quantity")(line), "received quantity")
    return ordered - (received or 0.0)


DEFAULT_INVENTORY_ACCESSORS = InventoryAccessors(
    product_id=field_getter("productId", "product_id"),
    quantity=field_getter("quantity", "qty"),
    unit=field_getter("unit"),
    container_count=field_getter("containerCount", "container_count"),
    location=field_getter("location"),
    lot=field_getter("lotNumber", "lot_number", "lot"),
    received_date=field_getter("receivedDate", "received_date"),
)

DEFAULT_ORDER_ACCESSORS = OrderAccessors(
    order_id=field_getter("id", "orderId", "order_id"),
    lines=field_getter("lineItems", "line_items", "lines"),
    line_product_id=field_getter("productId", "product_id"),
    line_remaining_qty=_remaining_quantity,
    status=field_getter("status"),
    vendor_name=field_getter("vendorName", "vendor_name"),
    line_unit=field_getter("unit"),
)


def _read_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _read_number(value: Any, what: str) -> Optional[float]:
    """Return ``value`` as a finite float, ``None`` when absent or non-finite."""

    if value is None:
        return None
    if isinstance(value, bool):
        raise AccessorError(f"{what} must be numeric, got {value!r}")
    if isinstance(value, (numbers.Real, Decimal)):
        number = float(value)
    elif isinstance(value, str):
        text = value.replace(",", "").strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            raise AccessorError(f"{what} must be numeric, got {value!r}") from None
    else:
        raise AccessorError(f"{what} must be numeric, got {type(value).__name__}")
    if not math.isfinite(number):
        return None
    return number


def _read_unit(value: Any) -> Optional[UnitLabel]:
    if value is None:
        return None
    if isinstance(value, Unit):
        return value
    if isinstance(value, str):
        return value.strip() or None
    raise AccessorError(f"unit must be a label, got {type(value).__name__}")


def _read_lines(value: Any, order_id: str) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (str, bytes, Mapping)):
        raise AccessorError(f"lines of order {order_id} must be a sequence, got {type(value).__name__}")
    try:
        return list(value)
    except TypeError:
        raise AccessorError(f"lines of order {order_id} must be a sequence, got {type(value).__name__}") from None


def _optional(getter: Optional[Getter], row: Any) -> Any:
    return getter(row) if getter is not None else None


def read_inventory(
    rows: Iterable[Any] | None,
    accessors: InventoryAccessors = DEFAULT_INVENTORY_ACCESSORS,
) -> Tuple[List[StockLot], int]:
    """Translate inventory rows into :class:`StockLot` records.

    Returns the lots and the number of rows skipped as malformed.  When the
    quantity field is absent the container count is used instead.
    """

    lots: List[StockLot] = []
    skipped = 0
    for index, row in enumerate(rows or ()):
        product_id = _read_text(accessors.product_id(row))
        if product_id is None:
            logger.warning("Skipping inventory row %d: no product id", index)
            skipped += 1
            continue
        quantity = _read_number(accessors.quantity(row), f"quantity of inventory row {index}")
        if quantity is None:
            quantity = _read_number(
                _optional(accessors.container_count, row), f"container count of inventory row {index}"
            )
        if quantity is None:
            logger.warning("Skipping inventory row %d (%s): no quantity", index, product_id)
            skipped += 1
            continue
        lots.append(
            StockLot(
                product_id=product_id,
                quantity=quantity,
                unit_label=_read_unit(_optional(accessors.unit, row)),
                source_index=index,
                location=_read_text(_optional(accessors.location, row)),
                lot=_read_text(_optional(accessors.lot, row)),
                received_date=_read_text(_optional(accessors.received_date, row)),
            )
        )
    return lots, skipped


def order_is_open(
    order: Any,
    accessors: OrderAccessors,
    closed_statuses: Iterable[str] = DEFAULT_CLOSED_ORDER_STATUSES,
) -> bool:
    """Return ``True`` when ``order`` still represents an active commitment.

    A caller supplied ``is_open`` predicate wins.  Otherwise the order is open
    unless its status is one of ``closed_statuses``; a missing status counts
    as open.
    """

    if accessors.is_open is not None:
        return bool(accessors.is_open(order))
    status = (_read_text(_optional(accessors.status, order)) or "").upper()
    return status not in {s.upper() for s in closed_statuses}


def read_order_lines(
    orders: Iterable[Any] | None,
    accessors: OrderAccessors = DEFAULT_ORDER_ACCESSORS,
    closed_statuses: Iterable[str] = DEFAULT_CLOSED_ORDER_STATUSES,
) -> Tuple[List[OpenOrderLine], int]:
    """Translate the lines of open orders into :class:`OpenOrderLine` records.

    Closed orders contribute nothing and are not counted as skipped.  Returns
    the lines and the number of malformed lines skipped.
    """

    closed = tuple(closed_statuses)
    lines: List[OpenOrderLine] = []
    skipped = 0
    for order_index, order in enumerate(orders or ()):
        if not order_is_open(order, accessors, closed):
            continue
        order_id = _read_text(accessors.order_id(order)) or f"order#{order_index}"
        vendor_name = _read_text(_optional(accessors.vendor_name, order))
        status = _read_text(_optional(accessors.status, order))
        for line_index, line in enumerate(_read_lines(accessors.lines(order), order_id)):
            product_id = _read_text(accessors.line_product_id(line))
            if product_id is None:
                logger.warning("Skipping line %d of order %s: no product id", line_index, order_id)
                skipped += 1
                continue
            remaining = _read_number(
                accessors.line_remaining_qty(line), f"remaining quantity of order {order_id} line {line_index}"
            )
            if remaining is None:
                logger.warning("Skipping line %d of order %s (%s): no remaining quantity", line_index, order_id, product_id)
                skipped += 1
                continue
            lines.append(
                OpenOrderLine(
                    order_id=order_id,
                    product_id=product_id,
                    remaining_qty=remaining,
                    unit_label=_read_unit(_optional(accessors.line_unit, line)),
                    vendor_name=vendor_name,
                    status=status,
                    order_index=order_index,
                    line_index=line_index,
                )
            )
    return lines, skipped


__all__ = [
    "DEFAULT_INVENTORY_ACCESSORS",
    "DEFAULT_ORDER_ACCESSORS",
    "InventoryAccessors",
    "OpenOrderLine",
    "OrderAccessors",
    "StockLot",
    "field_getter",
    "order_is_open",
    "read_inventory",
    "read_order_lines",
]
