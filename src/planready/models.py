"""Typed input records consumed by the readiness and variance matchers.

The ``from_mapping`` constructors accept the camelCase or snake_case
mappings stored by the planning front end and are the only place those loose
shapes are read.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Tuple

from .accessors import field_getter
from .units import Unit, UnitFamily, base_unit, family_for_form, parse_unit

UNKNOWN_PASS = "Unknown"


def _get(raw: Mapping[str, Any], *names: str, default: Any = None) -> Any:
    return field_getter(*names, default=default)(raw)


def _to_float(value: object | None) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        number = float(value)
    else:
        text = str(value).replace("$", "").replace(",", "").strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    return number if math.isfinite(number) else None


def _to_int(value: object | None) -> Optional[int]:
    number = _to_float(value)
    return int(number) if number is not None else None


def _text(value: object | None) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass(frozen=True)
class PlannedUsage:
    """A quantity of one product the plan requires, whatever its source."""

    id: str
    label: str
    product_id: str
    required_qty: float
    planned_unit: Unit
    crop: Optional[str] = None
    pass_name: Optional[str] = None
    when: Optional[str] = None

    @classmethod
    def from_mapping(cls, raw: Any, form: Optional[str] = None) -> "PlannedUsage":
        """Build a usage from a camelCase or snake_case mapping or object.

        ``form`` (``"liquid"``/``"dry"``) disambiguates ``oz``; it may also be
        given in the record itself.
        """

        product_id = _text(_get(raw, "productId", "product_id")) or ""
        unit_label = _get(raw, "plannedUnit", "planned_unit", "unit")
        family = form or _get(raw, "form")
        return cls(
            id=_text(_get(raw, "id")) or product_id,
            label=_text(_get(raw, "label")) or product_id,
            product_id=product_id,
            required_qty=_to_float(_get(raw, "requiredQty", "required_qty")) or 0.0,
            planned_unit=parse_unit(unit_label, family),
            crop=_text(_get(raw, "crop")),
            pass_name=_text(_get(raw, "passName", "pass_name")),
            when=_text(_get(raw, "when")),
        )


@dataclass(frozen=True)
class Product:
    id: str
    name: str
    form: UnitFamily
    price: Optional[float] = None
    price_unit: Optional[str] = None

    @property
    def base_unit(self) -> Unit:
        return base_unit(self.form)

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "Product":
        product_id = _text(_get(raw, "id", "productId", "product_id")) or ""
        return cls(
            id=product_id,
            name=_text(_get(raw, "name")) or product_id,
            form=family_for_form(_get(raw, "form", default="")),
            price=_to_float(_get(raw, "price")),
            price_unit=_text(_get(raw, "priceUnit", "price_unit", "unit")),
        )


@dataclass(frozen=True)
class Tier:
    id: str
    percentage: float


@dataclass(frozen=True)
class Timing:
    id: str
    name: str


@dataclass(frozen=True)
class Application:
    product_id: str
    timing_id: str
    rate: float
    rate_unit: str
    tier_id: Optional[str] = None
    acres_percentage: Optional[float] = None


@dataclass(frozen=True)
class SeedTreatment:
    product_id: str
    rate_per_cwt: float
    rate_unit: str
    planting_rate_lbs_per_acre: float


@dataclass(frozen=True)
class Crop:
    name: str
    total_acres: float
    tiers: Tuple[Tier, ...] = ()
    timings: Tuple[Timing, ...] = ()
    applications: Tuple[Application, ...] = ()
    seed_treatments: Tuple[SeedTreatment, ...] = ()

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "Crop":
        tiers = tuple(
            Tier(id=str(_get(t, "id")), percentage=_to_float(_get(t, "percentage")) or 0.0)
            for t in _get(raw, "tiers", default=())
        )
        timings = tuple(
            Timing(id=str(_get(t, "id")), name=_text(_get(t, "name")) or UNKNOWN_PASS)
            for t in _get(raw, "applicationTimings", "application_timings", "timings", default=())
        )
        applications = tuple(
            Application(
                product_id=_text(_get(a, "productId", "product_id")) or "",
                timing_id=str(_get(a, "timingId", "timing_id", default="")),
                rate=_to_float(_get(a, "rate")) or 0.0,
                rate_unit=_text(_get(a, "rateUnit", "rate_unit")) or "",
                tier_id=_text(_get(a, "tierId", "tier_id")),
                acres_percentage=_to_float(_get(a, "acresPercentage", "acres_percentage")),
            )
            for a in _get(raw, "applications", default=())
        )
        seed_treatments = tuple(
            SeedTreatment(
                product_id=_text(_get(s, "productId", "product_id")) or "",
                rate_per_cwt=_to_float(_get(s, "ratePerCwt", "rate_per_cwt")) or 0.0,
                rate_unit=_text(_get(s, "rateUnit", "rate_unit")) or "",
                planting_rate_lbs_per_acre=_to_float(
                    _get(s, "plantingRateLbsPerAcre", "planting_rate_lbs_per_acre")
                )
                or 0.0,
            )
            for s in _get(raw, "seedTreatments", "seed_treatments", default=())
        )
        return cls(
            name=_text(_get(raw, "name")) or "Unnamed crop",
            total_acres=_to_float(_get(raw, "totalAcres", "total_acres")) or 0.0,
            tiers=tiers,
            timings=timings,
            applications=applications,
            seed_treatments=seed_treatments,
        )

    def acres_share(self, application: Application) -> float:
        """Fraction of the crop's acres an application covers."""

        if application.acres_percentage is not None:
            return application.acres_percentage / 100.0
        if application.tier_id:
            for tier in self.tiers:
                if tier.id == application.tier_id:
                    return tier.percentage / 100.0
        return 1.0

    def timing_name(self, timing_id: str) -> str:
        for timing in self.timings:
            if timing.id == timing_id:
                return timing.name
        return UNKNOWN_PASS


@dataclass(frozen=True)
class Season:
    year: Optional[int]
    crops: Tuple[Crop, ...] = ()
    id: Optional[str] = None

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "Season":
        return cls(
            year=_to_int(_get(raw, "year", "seasonYear", "season_year")),
            crops=tuple(Crop.from_mapping(c) for c in _get(raw, "crops", default=())),
            id=_text(_get(raw, "id")),
        )


@dataclass(frozen=True)
class InvoiceLine:
    product_id: Optional[str]
    quantity: float
    unit: Optional[str]
    landed_total: float = 0.0
    landed_unit_cost: float = 0.0

    @property
    def cost(self) -> float:
        """Landed total of the line, falling back to unit cost times quantity."""

        return self.landed_total or (self.landed_unit_cost * self.quantity)

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "InvoiceLine":
        return cls(
            product_id=_text(_get(raw, "productId", "product_id")),
            quantity=_to_float(_get(raw, "quantity")) or 0.0,
            unit=_text(_get(raw, "unit")),
            landed_total=_to_float(_get(raw, "landedTotal", "landed_total", "lineTotal", "line_total")) or 0.0,
            landed_unit_cost=_to_float(_get(raw, "landedUnitCost", "landed_unit_cost")) or 0.0,
        )


@dataclass(frozen=True)
class Invoice:
    id: str
    season_year: Optional[int]
    lines: Tuple[InvoiceLine, ...] = ()
    vendor_id: Optional[str] = None

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "Invoice":
        return cls(
            id=_text(_get(raw, "id", "invoiceNumber", "invoice_number")) or "",
            season_year=_to_int(_get(raw, "seasonYear", "season_year")),
            lines=tuple(InvoiceLine.from_mapping(li) for li in _get(raw, "lineItems", "line_items", "lines", default=())),
            vendor_id=_text(_get(raw, "vendorId", "vendor_id")),
        )


@dataclass(frozen=True)
class PriceBookEntry:
    product_id: Optional[str]
    season_year: Optional[int]
    price: Optional[float]
    price_unit: Optional[str] = None
    source: Optional[str] = None
    vendor_id: Optional[str] = None
    id: Optional[str] = None

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "PriceBookEntry":
        return cls(
            product_id=_text(_get(raw, "productId", "product_id")),
            season_year=_to_int(_get(raw, "seasonYear", "season_year")),
            price=_to_float(_get(raw, "price", "landedUnitCost", "landed_unit_cost")),
            price_unit=_text(_get(raw, "priceUom", "price_uom", "price_unit", "unit")),
            source=_text(_get(raw, "source")),
            vendor_id=_text(_get(raw, "vendorId", "vendor_id")),
            id=_text(_get(raw, "id")),
        )


__all__ = [
    "Application",
    "Crop",
    "Invoice",
    "InvoiceLine",
    "PlannedUsage",
    "PriceBookEntry",
    "Product",
    "Season",
    "SeedTreatment",
    "Tier",
    "Timing",
    "UNKNOWN_PASS",
]
