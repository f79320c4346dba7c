"""Loading of input snapshots from JSON or YAML files.

A snapshot bundles everything both matchers need for one farm and season::

    season:       the crop plan (crops, tiers, timings, applications ...)
    products:     catalogue with id, name, form and price
    plannedUsages: optional explicit planned usages; derived from the
                  season plan when absent
    inventory:    inventory rows
    orders:       purchase orders with line items
    invoices:     invoices with line items
    priceBook:    price-book entries
    config:       optional engine configuration overrides

Documents are validated against :data:`SNAPSHOT_SCHEMA` before any record
is built.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml
from jsonschema import Draft7Validator

from .config import EngineConfig, load_config
from .errors import SnapshotError, UnitError
from .models import Invoice, PlannedUsage, PriceBookEntry, Product, Season
from .planning import calculate_planned_usage, planned_usages_for_readiness
from .readiness import ReadinessReport, compute_readiness
from .variance import (
    PassVarianceReport,
    VarianceReport,
    build_variance_by_pass_report,
    build_variance_report,
)

logger = logging.getLogger(__name__)

_NUMBER = {"type": ["number", "string", "null"]}
_ROWS = {"type": "array", "items": {"type": "object"}}
_NAMES = {"type": ["string", "array", "null"], "items": {"type": "string"}}

SNAPSHOT_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "title": "Plan readiness snapshot",
    "type": "object",
    "properties": {
        "season": {
            "type": ["object", "null"],
            "properties": {
                "year": {"type": ["integer", "string", "null"]},
                "crops": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "required": ["name"],
                        "properties": {
                            "name": {"type": "string"},
                            "totalAcres": _NUMBER,
                            "tiers": _ROWS,
                            "applicationTimings": _ROWS,
                            "applications": _ROWS,
                            "seedTreatments": _ROWS,
                        },
                    },
                },
            },
        },
        "products": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["id", "form"],
                "properties": {
                    "id": {"type": ["string", "integer"]},
                    "name": {"type": "string"},
                    "form": {"enum": ["liquid", "dry"]},
                    "price": _NUMBER,
                },
            },
        },
        "plannedUsages": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["productId", "plannedUnit"],
                "properties": {
                    "productId": {"type": ["string", "integer"]},
                    "plannedUnit": {"type": "string"},
                    "requiredQty": _NUMBER,
                },
            },
        },
        "inventory": _ROWS,
        "orders": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "status": {"type": ["string", "null"]},
                    "lineItems": _ROWS,
                },
            },
        },
        "invoices": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "seasonYear": {"type": ["integer", "string", "null"]},
                    "lineItems": _ROWS,
                },
            },
        },
        "priceBook": _ROWS,
        "config": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "closed_order_statuses": _NAMES,
                "price_source_priority": _NAMES,
                "excluded_price_sources": _NAMES,
                "allocation_tolerance": _NUMBER,
                "default_season_year": {"type": ["integer", "string", "null"]},
                "verbose": {"type": ["boolean", "integer", "string", "null"]},
            },
        },
    },
}


@dataclass(frozen=True)
class Snapshot:
    season: Optional[Season]
    products: Tuple[Product, ...] = ()
    planned: Tuple[PlannedUsage, ...] = ()
    inventory: Tuple[Mapping[str, Any], ...] = ()
    orders: Tuple[Mapping[str, Any], ...] = ()
    invoices: Tuple[Invoice, ...] = ()
    price_book: Tuple[PriceBookEntry, ...] = ()
    config_overrides: Mapping[str, Any] = field(default_factory=dict)
    source: Optional[Path] = None


@dataclass(frozen=True)
class SnapshotResult:
    readiness: ReadinessReport
    variance_by_pass: PassVarianceReport
    variance: VarianceReport


def validate_snapshot(raw: Any) -> None:
    """Raise :class:`SnapshotError` listing every schema violation of ``raw``."""

    validator = Draft7Validator(SNAPSHOT_SCHEMA)
    errors = sorted(validator.iter_errors(raw), key=lambda e: [str(p) for p in e.absolute_path])
    if not errors:
        return
    messages: List[str] = []
    for error in errors:
        where = "/".join(str(p) for p in error.absolute_path) or "<root>"
        messages.append(f"{where}: {error.message}")
    raise SnapshotError("Invalid snapshot: " + "; ".join(messages))


def snapshot_from_dict(raw: Mapping[str, Any], source: Optional[Path] = None) -> Snapshot:
    validate_snapshot(raw)
    try:
        season = Season.from_mapping(raw["season"]) if raw.get("season") else None
        products = tuple(Product.from_mapping(p) for p in raw.get("products") or ())
        forms = {p.id: p.form for p in products}
        if raw.get("plannedUsages"):
            planned = tuple(
                PlannedUsage.from_mapping(u, forms.get(str(u.get("productId") or u.get("product_id"))))
                for u in raw["plannedUsages"]
            )
        else:
            planned = tuple(planned_usages_for_readiness(calculate_planned_usage(season, products), products))
    except UnitError as exc:
        raise SnapshotError(f"Invalid snapshot{f' {source}' if source else ''}: {exc}") from exc

    return Snapshot(
        season=season,
        products=products,
        planned=planned,
        inventory=tuple(raw.get("inventory") or ()),
        orders=tuple(raw.get("orders") or ()),
        invoices=tuple(Invoice.from_mapping(i) for i in raw.get("invoices") or ()),
        price_book=tuple(PriceBookEntry.from_mapping(e) for e in raw.get("priceBook") or ()),
        config_overrides=dict(raw.get("config") or {}),
        source=source,
    )


def load_snapshot(path: Path | str) -> Snapshot:
    """Load a snapshot from a ``.json``, ``.yaml`` or ``.yml`` file."""

    snapshot_path = Path(path)
    if not snapshot_path.exists():
        raise SnapshotError(f"Snapshot file not found: {snapshot_path}")

    with snapshot_path.open("r", encoding="utf-8") as f:
        try:
            if snapshot_path.suffix.lower() in {".yaml", ".yml"}:
                raw = yaml.safe_load(f)
            else:
                raw = json.load(f)
        except (json.JSONDecodeError, yaml.YAMLError) as exc:
            raise SnapshotError(f"Unable to parse snapshot {snapshot_path}: {exc}") from exc

    if not isinstance(raw, Mapping):
        raise SnapshotError(f"Snapshot {snapshot_path} must contain a mapping at the top level")
    logger.debug("Loaded snapshot %s", snapshot_path)
    return snapshot_from_dict(raw, source=snapshot_path)


def evaluate(snapshot: Snapshot, config: Optional[EngineConfig] = None) -> SnapshotResult:
    """Run the readiness matcher and both variance reports over ``snapshot``.

    Without an explicit ``config`` the environment configuration is loaded
    and the snapshot's own ``config`` overrides are applied on top.
    Unit errors raised while matching (an unknown stock or order unit, a rate
    in the wrong family) are reported as :class:`SnapshotError`.
    """

    cfg = config or load_config(overrides=snapshot.config_overrides)
    try:
        readiness = compute_readiness(snapshot.planned, snapshot.inventory, snapshot.orders, config=cfg)
        by_pass = build_variance_by_pass_report(
            snapshot.season, snapshot.products, snapshot.invoices, snapshot.price_book, config=cfg
        )
        variance = build_variance_report(
            snapshot.season, snapshot.products, snapshot.invoices, snapshot.price_book, config=cfg
        )
    except UnitError as exc:
        where = f" {snapshot.source}" if snapshot.source else ""
        raise SnapshotError(f"Cannot evaluate snapshot{where}: {exc}") from exc
    return SnapshotResult(readiness=readiness, variance_by_pass=by_pass, variance=variance)


def run_snapshot(path: Path | str, config: Optional[EngineConfig] = None) -> SnapshotResult:
    return evaluate(load_snapshot(path), config=config)


__all__ = [
    "SNAPSHOT_SCHEMA",
    "Snapshot",
    "SnapshotResult",
    "evaluate",
    "load_snapshot",
    "run_snapshot",
    "snapshot_from_dict",
    "validate_snapshot",
]
