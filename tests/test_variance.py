from __future__ import annotations

import math

import numpy as np
import pytest

from planready.config import EngineConfig
from planready.models import Invoice, PriceBookEntry, Product, Season
from planready.units import UnitFamily
from planready.variance import (
    ALLOCATION_CAVEAT,
    allocation_gap,
    build_variance_by_pass_report,
    build_variance_report,
    is_balanced,
    price_per_unit,
    select_price_entry,
)


def _invoice(product_id, total, year=2025, quantity=1000, unit="gal"):
    return Invoice.from_mapping(
        {
            "id": f"inv-{product_id}-{year}",
            "seasonYear": year,
            "lineItems": [{"productId": product_id, "quantity": quantity, "unit": unit, "landedTotal": total}],
        }
    )


def _entry(price, unit="gal", source="awarded", year=2025, product_id="p1"):
    return PriceBookEntry(product_id=product_id, season_year=year, price=price, price_unit=unit, source=source)


def test_sixty_forty_split(season, products, invoices, price_book):
    report = build_variance_by_pass_report(season, products, invoices, price_book)
    rows = {row.pass_name: row for row in report.rows}

    assert rows["Pre-plant"].actual_cost_allocated == pytest.approx(720.0)
    assert rows["Side-dress"].actual_cost_allocated == pytest.approx(480.0)
    assert rows["Pre-plant"].planned_cost == pytest.approx(600.0)
    assert rows["Pre-plant"].variance == pytest.approx(120.0)
    assert rows["Pre-plant"].variance_pct == pytest.approx(20.0)
    assert report.rows[0].pass_name == "Pre-plant"
    assert report.planned_total == pytest.approx(1000.0)
    assert report.actual_total_allocated == pytest.approx(1200.0)
    assert report.variance_total == pytest.approx(200.0)
    assert report.crop_actual_totals == {"Corn": pytest.approx(1200.0)}
    assert report.unallocated_actual == 0.0
    assert report.caveat == ALLOCATION_CAVEAT
    assert not any(row.flags.names() for row in report.rows)


def _crop(name, acres, applications):
    timings = sorted({app[1] for app in applications})
    return {
        "name": name,
        "totalAcres": acres,
        "applicationTimings": [{"id": timing, "name": timing} for timing in timings],
        "applications": [
            {"productId": product_id, "timingId": timing, "rate": rate, "rateUnit": unit}
            for product_id, timing, rate, unit in applications
        ],
    }


@pytest.fixture
def more_products(products):
    return products + [Product(id="p3", name="Glyphosate", form=UnitFamily.LIQUID)]


def test_allocated_cost_sums_to_invoiced_cost_per_crop(more_products):
    season = Season.from_mapping(
        {
            "year": 2025,
            "crops": [
                _crop("Corn", 130, [("p1", "Pre", 3.3, "gal"), ("p3", "Post", 1.7, "qt")]),
                _crop("Soybeans", 70, [("p2", "Pre", 150, "lbs")]),
            ],
        }
    )
    invoices = [_invoice("p1", 1234.57), _invoice("p3", 99.99), _invoice("p2", 333.33, quantity=10500, unit="lbs")]
    report = build_variance_by_pass_report(season, more_products, invoices, [])

    corn = [row.actual_cost_allocated for row in report.rows if row.crop_name == "Corn"]
    soy = [row.actual_cost_allocated for row in report.rows if row.crop_name == "Soybeans"]
    assert math.isclose(math.fsum(corn), 1234.57 + 99.99, rel_tol=0, abs_tol=1e-9)
    assert math.isclose(math.fsum(soy), 333.33, rel_tol=0, abs_tol=1e-9)
    assert report.crop_actual_totals["Corn"] == pytest.approx(1334.56)
    assert report.crop_actual_totals["Soybeans"] == pytest.approx(333.33)
    assert math.isclose(report.actual_total_allocated, 1667.89, rel_tol=0, abs_tol=1e-9)
    assert np.isclose(allocation_gap(report, invoices), 0.0)
    assert is_balanced(report, invoices)


def test_crop_spend_is_pooled_across_its_products(more_products):
    season = Season.from_mapping(
        {"year": 2025, "crops": [_crop("Corn", 100, [("p1", "Pre-plant", 6, "gal"), ("p3", "Side-dress", 4, "gal")])]}
    )
    report = build_variance_by_pass_report(season, more_products, [_invoice("p1", 1200)], [])
    rows = {row.pass_name: row for row in report.rows}

    assert rows["Pre-plant"].actual_cost_allocated == pytest.approx(720.0)
    assert rows["Side-dress"].actual_cost_allocated == pytest.approx(480.0)
    assert not rows["Side-dress"].flags.no_invoices
    assert not rows["Pre-plant"].flags.no_invoices
    assert report.crop_actual_totals == {"Corn": pytest.approx(1200.0)}


def test_product_shared_between_crops_is_not_counted_twice(products):
    season = Season.from_mapping(
        {
            "year": 2025,
            "crops": [
                _crop("Corn", 100, [("p1", "Pre", 6, "gal")]),
                _crop("Soybeans", 100, [("p1", "Pre", 4, "gal")]),
            ],
        }
    )
    invoices = [_invoice("p1", 1000)]
    report = build_variance_by_pass_report(season, products, invoices, [])

    assert report.crop_actual_totals["Corn"] == pytest.approx(600.0)
    assert report.crop_actual_totals["Soybeans"] == pytest.approx(400.0)
    assert report.actual_total_allocated == pytest.approx(1000.0)
    assert allocation_gap(report, invoices) == pytest.approx(0.0, abs=1e-9)


def test_missing_price_leaves_planned_cost_unknown(season, products, invoices):
    report = build_variance_by_pass_report(season, products, invoices, [_entry(5.0, source="invoice")])
    for row in report.rows:
        assert row.planned_cost is None
        assert row.variance is None and row.variance_pct is None
        assert row.flags.missing_planned_price
        assert not row.flags.no_invoices
    assert report.planned_total == 0.0
    assert report.variance_total == 0.0
    assert report.actual_total_allocated == pytest.approx(1200.0)


def test_bucket_without_invoices_is_flagged(season, products, price_book):
    report = build_variance_by_pass_report(season, products, [_invoice("p1", 1200, year=2024)], price_book)
    assert all(row.flags.no_invoices for row in report.rows)
    assert all(row.actual_cost_allocated == 0.0 for row in report.rows)
    assert report.variance_total == pytest.approx(-1000.0)


def test_invoices_for_unplanned_products_are_unallocated(season, products, invoices, price_book):
    extra = invoices + [_invoice("p9", 55.5), _invoice("p1", 0.0)]
    report = build_variance_by_pass_report(season, products, extra, price_book)
    assert report.unallocated_actual == pytest.approx(55.5)
    assert report.actual_total_allocated == pytest.approx(1200.0)
    assert allocation_gap(report, extra) == pytest.approx(0.0, abs=1e-9)


def test_price_unit_from_other_family_is_flagged(season, products, invoices):
    report = build_variance_by_pass_report(season, products, invoices, [_entry(1.0, unit="lbs")])
    for row in report.rows:
        assert row.flags.unit_mismatch
        assert row.flags.missing_planned_price
        assert row.planned_cost is None


def test_price_source_ranking():
    book = [
        _entry(3.0, source="estimated"),
        _entry(2.0, source="manual"),
        _entry(9.0, source="invoice"),
        _entry(1.0, source="manual", year=2024),
        _entry(4.0, source="vendor_quote"),
    ]
    assert select_price_entry("p1", 2025, book).price == 2.0
    custom = EngineConfig(price_source_priority=("estimated",))
    assert select_price_entry("p1", 2025, book, custom).price == 3.0
    assert select_price_entry("p1", 2023, book) is None


def test_price_per_unit_converts_within_family():
    potash = Product(id="p2", name="Potash", form=UnitFamily.DRY)
    assert price_per_unit(_entry(400.0, unit="ton", product_id="p2"), potash) == pytest.approx(0.2)
    assert price_per_unit(_entry(0.5, unit=None, product_id="p2"), potash) == 0.5
    assert price_per_unit(_entry(1.0, unit="oz", product_id="p2"), potash) == pytest.approx(16.0)


def test_season_year_falls_back_to_config(products, invoices, price_book, engine_config):
    report = build_variance_by_pass_report(None, products, invoices, price_book, config=engine_config)
    assert report.season_year == 2025
    assert report.rows == ()
    assert report.unallocated_actual == pytest.approx(1200.0)


def test_zero_planned_cost_has_no_percentage(season, products, invoices):
    report = build_variance_by_pass_report(season, products, invoices, [_entry(0.0)])
    for row in report.rows:
        assert row.planned_cost == 0.0
        assert row.variance == pytest.approx(row.actual_cost_allocated)
        assert row.variance_pct is None


def test_product_level_report(season, products, invoices, price_book):
    report = build_variance_report(season, products, invoices, price_book)
    row = report.rows[0]
    assert row.product_name == "UAN 28%"
    assert row.planned_qty == pytest.approx(1000.0)
    assert row.planned_unit_price == pytest.approx(1.0)
    assert row.planned_price_source == "awarded"
    assert row.actual_qty == pytest.approx(1000.0)
    assert row.actual_unit_cost == pytest.approx(1.2)
    assert row.variance == pytest.approx(200.0)
    assert row.variance_pct == pytest.approx(20.0)
    cov = report.coverage
    assert (cov.total_products_in_plan, cov.with_invoices, cov.with_planned_price, cov.computed, cov.unit_mismatch) == (
        1,
        1,
        1,
        1,
        0,
    )


def test_product_level_converts_invoice_units(season, products, price_book):
    invoices = [_invoice("p1", 600, quantity=2000, unit="qt"), _invoice("p1", 600, year=2025, quantity=64000, unit="oz")]
    report = build_variance_report(season, products, invoices, price_book)
    assert report.rows[0].actual_qty == pytest.approx(1000.0)
    assert report.actual_total == pytest.approx(1200.0)


def test_product_level_unit_mismatch(season, products, price_book):
    report = build_variance_report(season, products, [_invoice("p1", 1200, unit="lbs")], price_book)
    row = report.rows[0]
    assert row.flags.unit_mismatch
    assert row.actual_qty == 0.0
    assert row.actual_unit_cost is None
    assert row.variance is None
    assert report.coverage.unit_mismatch == 1
    assert report.coverage.computed == 0
    assert report.actual_total == pytest.approx(1200.0)
    assert report.planned_total == pytest.approx(1000.0)


def test_product_level_without_invoices(season, products, price_book):
    report = build_variance_report(season, products, [], price_book)
    row = report.rows[0]
    assert row.flags.no_invoices
    assert row.actual_cost == 0.0
    assert report.variance_total == pytest.approx(-1000.0)
