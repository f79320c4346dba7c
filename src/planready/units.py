"""Unit normalization for liquid and dry product quantities.

Every unit belongs to exactly one family.  Quantities are normalized into the
family's base unit (gallons for liquids, pounds for dry products) using exact
rational factors.  Converting across families is always an error: there is no
density table.
"""

from __future__ import annotations

import math
from enum import Enum
from fractions import Fraction
from typing import Dict, Optional, Tuple, Union

from .errors import UnitError, UnitFamilyMismatch, UnknownUnitError

GRAMS_PER_POUND = Fraction("453.592")


class UnitFamily(str, Enum):
    LIQUID = "liquid"
    DRY = "dry"

    def __str__(self) -> str:
        return self.value


class Unit(Enum):
    """Closed set of supported units with their factor to the family base unit."""

    FLUID_OUNCE = ("oz", UnitFamily.LIQUID, Fraction(1, 128))
    QUART = ("qt", UnitFamily.LIQUID, Fraction(1, 4))
    GALLON = ("gal", UnitFamily.LIQUID, Fraction(1))
    OUNCE = ("oz", UnitFamily.DRY, Fraction(1, 16))
    POUND = ("lbs", UnitFamily.DRY, Fraction(1))
    GRAM = ("g", UnitFamily.DRY, 1 / GRAMS_PER_POUND)
    TON = ("ton", UnitFamily.DRY, Fraction(2000))

    def __init__(self, label: str, family: UnitFamily, factor: Fraction) -> None:
        self.label = label
        self.family = family
        self.factor = factor

    def __str__(self) -> str:
        return self.label

    @property
    def is_base(self) -> bool:
        return self.factor == 1


_BASE_UNITS: Dict[UnitFamily, Unit] = {
    UnitFamily.LIQUID: Unit.GALLON,
    UnitFamily.DRY: Unit.POUND,
}

# Label variations seen in inventory, order and invoice rows.
_ALIASES: Dict[str, Tuple[Unit, ...]] = {
    "oz": (Unit.FLUID_OUNCE, Unit.OUNCE),
    "ounce": (Unit.FLUID_OUNCE, Unit.OUNCE),
    "ounces": (Unit.FLUID_OUNCE, Unit.OUNCE),
    "fl oz": (Unit.FLUID_OUNCE,),
    "floz": (Unit.FLUID_OUNCE,),
    "fluid ounce": (Unit.FLUID_OUNCE,),
    "fluid ounces": (Unit.FLUID_OUNCE,),
    "qt": (Unit.QUART,),
    "qts": (Unit.QUART,),
    "quart": (Unit.QUART,),
    "quarts": (Unit.QUART,),
    "gal": (Unit.GALLON,),
    "gals": (Unit.GALLON,),
    "gallon": (Unit.GALLON,),
    "gallons": (Unit.GALLON,),
    "lb": (Unit.POUND,),
    "lbs": (Unit.POUND,),
    "pound": (Unit.POUND,),
    "pounds": (Unit.POUND,),
    "g": (Unit.GRAM,),
    "gr": (Unit.GRAM,),
    "gram": (Unit.GRAM,),
    "grams": (Unit.GRAM,),
    "ton": (Unit.TON,),
    "tons": (Unit.TON,),
    "short ton": (Unit.TON,),
}

FamilyLike = Union[UnitFamily, str]


def _coerce_family(family: FamilyLike) -> UnitFamily:
    if isinstance(family, UnitFamily):
        return family
    try:
        return UnitFamily(str(family).strip().lower())
    except ValueError:
        raise UnitError(f"Unknown product form {family!r}; expected 'liquid' or 'dry'") from None


def _normalize_label(label: str) -> str:
    return " ".join(label.strip().lower().replace(".", "").split())


def family_for_form(form: FamilyLike) -> UnitFamily:
    """Map a product form (``"liquid"`` / ``"dry"``) to its unit family."""

    return _coerce_family(form)


def base_unit(family: FamilyLike) -> Unit:
    return _BASE_UNITS[_coerce_family(family)]


def units_in(family: FamilyLike) -> Tuple[Unit, ...]:
    fam = _coerce_family(family)
    return tuple(unit for unit in Unit if unit.family is fam)


def parse_unit(label: Union[str, Unit], family: Optional[FamilyLike] = None) -> Unit:
    """
    Resolve ``label`` into a :class:`Unit`.

    Parameters
    ----------
    label:
        Unit label as found in source data (``"Gallons"``, ``"lb"``, ``"fl oz"``)
        or an existing :class:`Unit`.
    family:
        Product family the quantity belongs to.  Required for ``oz``, which
        names a fluid ounce for liquids and a weight ounce for dry products.

    Raises
    ------
    UnknownUnitError
        The label is not a supported unit.
    UnitFamilyMismatch
        The label only exists in the other family.
    """

    fam = _coerce_family(family) if family is not None else None
    if isinstance(label, Unit):
        if fam is not None and label.family is not fam:
            raise UnitFamilyMismatch(label, fam)
        return label
    if label is None or not str(label).strip():
        raise UnknownUnitError(label, fam)

    candidates = _ALIASES.get(_normalize_label(str(label)))
    if not candidates:
        raise UnknownUnitError(label, fam)
    if fam is None:
        if len(candidates) > 1:
            raise UnitError(f"Unit {label!r} is ambiguous without a product family")
        return candidates[0]
    for unit in candidates:
        if unit.family is fam:
            return unit
    raise UnitFamilyMismatch(candidates[0], fam)


def _scale(quantity: float, factor: Fraction) -> float:
    if isinstance(quantity, float) and not math.isfinite(quantity):
        return quantity * float(factor)
    return float(Fraction(quantity) * factor)


def to_base(quantity: float, unit: Unit) -> float:
    """Express ``quantity`` of ``unit`` in the base unit of its family."""

    return _scale(quantity, unit.factor)


def from_base(quantity: float, unit: Unit) -> float:
    """Express a base-unit ``quantity`` in ``unit``."""

    return _scale(quantity, 1 / unit.factor)


def convert(quantity: float, source: Unit, target: Unit) -> float:
    """Convert ``quantity`` from ``source`` to ``target`` within one family."""

    if source.family is not target.family:
        raise UnitFamilyMismatch(source, target)
    if source is target:
        return float(quantity)
    return _scale(quantity, source.factor / target.factor)


__all__ = [
    "GRAMS_PER_POUND",
    "Unit",
    "UnitFamily",
    "base_unit",
    "convert",
    "family_for_form",
    "from_base",
    "parse_unit",
    "to_base",
    "units_in",
]
