from __future__ import annotations

from typing import Any, Dict, List

import pytest

from planready.config import EngineConfig
from planready.models import Invoice, PriceBookEntry, Product, Season


@pytest.fixture
def engine_config() -> EngineConfig:
    return EngineConfig(default_season_year=2025)


@pytest.fixture
def season_raw() -> Dict[str, Any]:
    """Corn on 100 acres; 600 gal of p1 pre-plant and 400 gal side-dress."""

    return {
        "id": "s-2025",
        "year": 2025,
        "crops": [
            {
                "name": "Corn",
                "totalAcres": 100,
                "applicationTimings": [
                    {"id": "t1", "name": "Pre-plant"},
                    {"id": "t2", "name": "Side-dress"},
                ],
                "applications": [
                    {"productId": "p1", "timingId": "t1", "rate": 6, "rateUnit": "gal/acre"},
                    {"productId": "p1", "timingId": "t2", "rate": 4, "rateUnit": "gal/acre"},
                ],
            }
        ],
    }


@pytest.fixture
def products_raw() -> List[Dict[str, Any]]:
    return [
        {"id": "p1", "name": "UAN 28%", "form": "liquid", "price": 1.0},
        {"id": "p2", "name": "Potash", "form": "dry", "price": 0.25, "priceUnit": "lbs"},
    ]


@pytest.fixture
def season(season_raw) -> Season:
    return Season.from_mapping(season_raw)


@pytest.fixture
def products(products_raw) -> List[Product]:
    return [Product.from_mapping(p) for p in products_raw]


@pytest.fixture
def invoices() -> List[Invoice]:
    return [
        Invoice.from_mapping(
            {
                "id": "inv-1",
                "seasonYear": 2025,
                "lineItems": [{"productId": "p1", "quantity": 1000, "unit": "gal", "landedTotal": 1200}],
            }
        )
    ]


@pytest.fixture
def price_book() -> List[PriceBookEntry]:
    return [
        PriceBookEntry.from_mapping(
            {"productId": "p1", "seasonYear": 2025, "price": 1.0, "priceUom": "gal", "source": "awarded"}
        )
    ]
