from __future__ import annotations

import pytest

from planready.errors import UnitError, UnitFamilyMismatch, UnknownUnitError
from planready.units import (
    Unit,
    UnitFamily,
    base_unit,
    convert,
    family_for_form,
    from_base,
    parse_unit,
    to_base,
    units_in,
)


@pytest.mark.parametrize(
    "label, family, expected",
    [
        ("gal", None, Unit.GALLON),
        ("Gallons", None, Unit.GALLON),
        ("  QT ", None, Unit.QUART),
        ("fl oz", None, Unit.FLUID_OUNCE),
        ("lb", None, Unit.POUND),
        ("Pounds", None, Unit.POUND),
        ("grams", None, Unit.GRAM),
        ("tons", None, Unit.TON),
        ("oz", "liquid", Unit.FLUID_OUNCE),
        ("oz", UnitFamily.DRY, Unit.OUNCE),
        ("lbs.", "dry", Unit.POUND),
    ],
)
def test_parse_unit_aliases(label, family, expected):
    assert parse_unit(label, family) is expected


def test_parse_unit_passes_through_units():
    assert parse_unit(Unit.QUART) is Unit.QUART
    assert parse_unit(Unit.QUART, "liquid") is Unit.QUART
    with pytest.raises(UnitFamilyMismatch):
        parse_unit(Unit.QUART, "dry")


def test_ounce_needs_a_family():
    with pytest.raises(UnitError):
        parse_unit("oz")


def test_unknown_unit_raises():
    with pytest.raises(UnknownUnitError) as excinfo:
        parse_unit("bag", "dry")
    assert excinfo.value.label == "bag"
    with pytest.raises(UnknownUnitError):
        parse_unit("", "dry")


def test_label_from_other_family_raises():
    with pytest.raises(UnitFamilyMismatch):
        parse_unit("lbs", "liquid")
    with pytest.raises(UnitFamilyMismatch):
        parse_unit("gal", UnitFamily.DRY)


def test_unknown_form_raises():
    with pytest.raises(UnitError):
        family_for_form("gas")


def test_base_units():
    assert base_unit("liquid") is Unit.GALLON
    assert base_unit(UnitFamily.DRY) is Unit.POUND
    assert Unit.GALLON.is_base and not Unit.QUART.is_base


def test_known_factors():
    assert to_base(128, Unit.FLUID_OUNCE) == 1.0
    assert to_base(4, Unit.QUART) == 1.0
    assert to_base(16, Unit.OUNCE) == 1.0
    assert to_base(1, Unit.TON) == 2000.0
    assert to_base(453.592, Unit.GRAM) == pytest.approx(1.0)
    assert convert(2, Unit.TON, Unit.OUNCE) == 64000.0
    assert convert(3, Unit.GALLON, Unit.QUART) == 12.0


@pytest.mark.parametrize("family", list(UnitFamily))
def test_round_trip_every_unit(family):
    for unit in units_in(family):
        for quantity in (0.0, 1.0, 37.5, 1234.5678):
            assert from_base(to_base(quantity, unit), unit) == pytest.approx(quantity, rel=1e-12)
        for other in units_in(family):
            assert convert(convert(12.34, unit, other), other, unit) == pytest.approx(12.34, rel=1e-12)


def test_cross_family_conversion_raises():
    with pytest.raises(UnitFamilyMismatch):
        convert(1, Unit.GALLON, Unit.POUND)
    with pytest.raises(UnitFamilyMismatch):
        convert(1, Unit.OUNCE, Unit.FLUID_OUNCE)


def test_negative_quantities_are_not_clamped():
    assert convert(-8, Unit.QUART, Unit.GALLON) == -2.0
