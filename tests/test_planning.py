from __future__ import annotations

import pytest

from planready.errors import UnitError, UnitFamilyMismatch
from planready.models import Crop, Product, Season
from planready.planning import SEED_TREATMENT_PASS, calculate_planned_usage, planned_usages_for_readiness
from planready.units import Unit, UnitFamily


def test_applications_roll_up_per_product(season, products):
    plans = calculate_planned_usage(season, products)
    assert len(plans) == 1
    plan = plans[0]
    assert plan.product_id == "p1"
    assert plan.unit is Unit.GALLON
    assert plan.total_needed == pytest.approx(1000.0)
    assert [(u.crop_name, u.pass_name, u.quantity) for u in plan.usages] == [
        ("Corn", "Pre-plant", 600.0),
        ("Corn", "Side-dress", 400.0),
    ]


def test_no_season_means_no_usage(products):
    assert calculate_planned_usage(None, products) == []


def test_acres_share_from_tier_and_override():
    crop = Crop.from_mapping(
        {
            "name": "Soybeans",
            "totalAcres": 200,
            "tiers": [{"id": "top", "percentage": 25}],
            "applicationTimings": [{"id": "t1", "name": "Burndown"}],
            "applications": [
                {"productId": "p2", "timingId": "t1", "rate": 100, "rateUnit": "lbs", "tierId": "top"},
                {"productId": "p2", "timingId": "missing", "rate": 1, "rateUnit": "ton", "acresPercentage": 10},
                {"productId": "zz", "timingId": "t1", "rate": 5, "rateUnit": "lbs"},
            ],
        }
    )
    products = [Product(id="p2", name="Potash", form=UnitFamily.DRY)]
    plans = calculate_planned_usage(Season(year=2025, crops=(crop,)), products)
    plan = plans[0]
    usages = plan.usages
    assert usages[0].acres_treated == pytest.approx(50.0)
    assert usages[0].quantity == pytest.approx(5000.0)
    assert usages[1].pass_name == "Unknown"
    assert usages[1].quantity == pytest.approx(40000.0)
    assert plan.total_needed == pytest.approx(45000.0)


def test_seed_treatment_within_product_family():
    season = Season.from_mapping(
        {
            "year": 2025,
            "crops": [
                {
                    "name": "Soybeans",
                    "totalAcres": 100,
                    "seedTreatments": [
                        {"productId": "st-dry", "ratePerCwt": 2, "rateUnit": "oz/cwt", "plantingRateLbsPerAcre": 30},
                        {"productId": "st-liq", "ratePerCwt": 2, "rateUnit": "fl oz/100lbs", "plantingRateLbsPerAcre": 30},
                    ],
                }
            ],
        }
    )
    products = [
        Product(id="st-dry", name="Dry ST", form=UnitFamily.DRY),
        Product(id="st-liq", name="Liquid ST", form=UnitFamily.LIQUID),
    ]
    plans = {p.product_id: p for p in calculate_planned_usage(season, products)}
    assert plans["st-dry"].total_needed == pytest.approx(3.75)
    assert plans["st-dry"].unit is Unit.POUND
    assert plans["st-liq"].total_needed == pytest.approx(60 / 128)
    assert plans["st-liq"].usages[0].pass_name == SEED_TREATMENT_PASS


def test_seed_treatment_in_grams_for_liquid_raises():
    season = Season.from_mapping(
        {
            "crops": [
                {
                    "name": "Wheat",
                    "totalAcres": 10,
                    "seedTreatments": [{"productId": "st", "ratePerCwt": 5, "rateUnit": "g", "plantingRateLbsPerAcre": 90}],
                }
            ]
        }
    )
    with pytest.raises(UnitFamilyMismatch):
        calculate_planned_usage(season, [Product(id="st", name="ST", form=UnitFamily.LIQUID)])


def test_product_form_is_required():
    with pytest.raises(UnitError):
        Product.from_mapping({"id": "p9", "name": "Mystery"})


def test_planned_usages_for_readiness(season, products):
    rows = planned_usages_for_readiness(calculate_planned_usage(season, products), products)
    assert len(rows) == 1
    usage = rows[0]
    assert usage.label == "UAN 28%"
    assert usage.planned_unit is Unit.GALLON
    assert usage.required_qty == pytest.approx(1000.0)
    assert (usage.crop, usage.pass_name) == ("Corn", "Pre-plant")


def test_season_from_mapping_accepts_snake_case():
    season = Season.from_mapping(
        {"season_year": "2024", "crops": [{"name": "Corn", "total_acres": "1,000", "application_timings": []}]}
    )
    assert season.year == 2024
    assert season.crops[0].total_acres == 1000.0
