"""Derivation of planned product usage from a season plan.

The variance report works from the season plan itself: crops with acres,
tiers and application timings, the product applications scheduled on them,
and seed treatments.  :func:`calculate_planned_usage` turns that plan into
per-product totals (in the base unit of the product's form) together with the
crop/pass usages that make them up.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .models import PlannedUsage, Product, Season, SeedTreatment
from .units import Unit, parse_unit, to_base

logger = logging.getLogger(__name__)

SEED_TREATMENT_PASS = "Seed Treatment"
_RATE_SUFFIXES = ("/100lbs", "/100 lbs", "/cwt", "/acre", "/ac", "per acre")


def _rate_unit_label(label: str) -> str:
    text = label.strip().lower()
    for suffix in _RATE_SUFFIXES:
        if text.endswith(suffix):
            return text[: -len(suffix)].strip()
    return text


@dataclass(frozen=True)
class PassUsage:
    crop_name: str
    pass_name: str
    acres_treated: float
    quantity: float


@dataclass(frozen=True)
class ProductUsagePlan:
    """Total planned quantity of one product and the crop/pass usages behind it."""

    product_id: str
    unit: Unit
    total_needed: float
    usages: Tuple[PassUsage, ...]


def _seed_treatment_quantity(treatment: SeedTreatment, product: Product, acres: float) -> float:
    unit = parse_unit(_rate_unit_label(treatment.rate_unit), product.form)
    cwt_per_acre = treatment.planting_rate_lbs_per_acre / 100.0
    per_acre = to_base(treatment.rate_per_cwt * cwt_per_acre, unit)
    return per_acre * acres


def calculate_planned_usage(season: Optional[Season], products: Sequence[Product]) -> List[ProductUsagePlan]:
    """Aggregate the season plan into per-product planned usage.

    Quantities are in the base unit of each product's form (gallons or
    pounds).  Applications and seed treatments referencing products missing
    from ``products`` are ignored.  Products keep the order in which the plan
    first mentions them.

    Raises
    ------
    UnitFamilyMismatch
        A rate unit does not belong to the product's form.
    """

    if season is None:
        return []

    by_id: Dict[str, Product] = {p.id: p for p in products}
    totals: Dict[str, float] = {}
    usages: Dict[str, List[PassUsage]] = {}

    def _record(product: Product, usage: PassUsage) -> None:
        if product.id not in totals:
            totals[product.id] = 0.0
            usages[product.id] = []
        totals[product.id] += usage.quantity
        usages[product.id].append(usage)

    for crop in season.crops:
        for app in crop.applications:
            product = by_id.get(app.product_id)
            if product is None:
                logger.debug("Ignoring application of unknown product %s on %s", app.product_id, crop.name)
                continue
            acres = crop.total_acres * crop.acres_share(app)
            rate_unit = parse_unit(_rate_unit_label(app.rate_unit), product.form)
            quantity = to_base(app.rate, rate_unit) * acres
            _record(product, PassUsage(crop.name, crop.timing_name(app.timing_id), acres, quantity))

        for treatment in crop.seed_treatments:
            product = by_id.get(treatment.product_id)
            if product is None:
                logger.debug("Ignoring seed treatment of unknown product %s on %s", treatment.product_id, crop.name)
                continue
            quantity = _seed_treatment_quantity(treatment, product, crop.total_acres)
            _record(product, PassUsage(crop.name, SEED_TREATMENT_PASS, crop.total_acres, quantity))

    return [
        ProductUsagePlan(
            product_id=product_id,
            unit=by_id[product_id].base_unit,
            total_needed=total,
            usages=tuple(usages[product_id]),
        )
        for product_id, total in totals.items()
    ]


def planned_usages_for_readiness(
    plans: Iterable[ProductUsagePlan],
    products: Sequence[Product],
) -> List[PlannedUsage]:
    """One readiness row per planned product, labelled with the product name."""

    names = {p.id: p.name for p in products}
    rows: List[PlannedUsage] = []
    for plan in plans:
        first = plan.usages[0] if plan.usages else None
        rows.append(
            PlannedUsage(
                id=plan.product_id,
                label=names.get(plan.product_id, "Unknown product"),
                product_id=plan.product_id,
                required_qty=plan.total_needed,
                planned_unit=plan.unit,
                crop=first.crop_name if first else None,
                pass_name=first.pass_name if first else None,
            )
        )
    return rows


__all__ = [
    "PassUsage",
    "ProductUsagePlan",
    "SEED_TREATMENT_PASS",
    "calculate_planned_usage",
    "planned_usages_for_readiness",
]
