from __future__ import annotations

import os
from dataclasses import dataclass, replace
from datetime import date
from typing import Mapping, Optional, Tuple

from dotenv import load_dotenv


_BOOLEAN_TRUE = {"1", "true", "yes", "on"}

DEFAULT_CLOSED_ORDER_STATUSES: Tuple[str, ...] = (
    "CLOSED",
    "CANCELLED",
    "CANCELED",
    "RECEIVED",
    "COMPLETE",
    "COMPLETED",
    "DELIVERED",
)
# Planned prices never come from invoices; earlier entries win.
DEFAULT_PRICE_SOURCE_PRIORITY: Tuple[str, ...] = (
    "manual_override",
    "manual",
    "awarded",
    "estimated",
)
DEFAULT_EXCLUDED_PRICE_SOURCES: Tuple[str, ...] = ("invoice",)
DEFAULT_ALLOCATION_TOLERANCE = 1e-6


@dataclass(frozen=True)
class EngineConfig:
    """Runtime configuration assembled from environment variables and overrides."""

    closed_order_statuses: Tuple[str, ...] = DEFAULT_CLOSED_ORDER_STATUSES
    price_source_priority: Tuple[str, ...] = DEFAULT_PRICE_SOURCE_PRIORITY
    excluded_price_sources: Tuple[str, ...] = DEFAULT_EXCLUDED_PRICE_SOURCES
    allocation_tolerance: float = DEFAULT_ALLOCATION_TOLERANCE
    default_season_year: Optional[int] = None
    verbose: bool = False

    def resolve_season_year(self, year: Optional[int] = None) -> int:
        if year:
            return int(year)
        if self.default_season_year:
            return self.default_season_year
        return date.today().year

    def price_source_rank(self, source: Optional[str]) -> int:
        text = (source or "").strip().lower()
        try:
            return self.price_source_priority.index(text)
        except ValueError:
            return len(self.price_source_priority)


def _to_int(value: object | None) -> Optional[int]:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    try:
        return int(float(text))
    except ValueError:
        return None


def _to_float(value: object | None) -> Optional[float]:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    try:
        return float(text)
    except ValueError:
        return None


def _flag(value: object | None) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _BOOLEAN_TRUE


def _to_tuple(value: object | None, *, upper: bool = False, lower: bool = False) -> Optional[Tuple[str, ...]]:
    if value is None:
        return None
    if isinstance(value, str):
        parts = value.split(",")
    else:
        parts = [str(part) for part in value]  # type: ignore[union-attr]
    cleaned = []
    for part in parts:
        text = part.strip()
        if not text:
            continue
        if upper:
            text = text.upper()
        elif lower:
            text = text.lower()
        cleaned.append(text)
    return tuple(cleaned) or None


def load_config(env: Mapping[str, str] | None = None, overrides: Mapping[str, object] | None = None) -> EngineConfig:
    """Build an :class:`EngineConfig` from environment variables and explicit overrides.

    When ``env`` is omitted the process environment is used after loading any
    ``.env`` file found by python-dotenv.
    """

    if env is None:
        load_dotenv()
        env = os.environ

    closed = _to_tuple(env.get("PLANREADY_CLOSED_ORDER_STATUSES"), upper=True) or DEFAULT_CLOSED_ORDER_STATUSES
    priority = _to_tuple(env.get("PLANREADY_PRICE_SOURCE_PRIORITY"), lower=True) or DEFAULT_PRICE_SOURCE_PRIORITY
    excluded = _to_tuple(env.get("PLANREADY_EXCLUDED_PRICE_SOURCES"), lower=True) or DEFAULT_EXCLUDED_PRICE_SOURCES
    tolerance = _to_float(env.get("PLANREADY_ALLOCATION_TOLERANCE"))
    if tolerance is None or tolerance < 0:
        tolerance = DEFAULT_ALLOCATION_TOLERANCE
    season_year = _to_int(env.get("PLANREADY_DEFAULT_SEASON_YEAR"))
    verbose = _flag(env.get("PLANREADY_VERBOSE"))

    config = EngineConfig(
        closed_order_statuses=closed,
        price_source_priority=priority,
        excluded_price_sources=excluded,
        allocation_tolerance=tolerance,
        default_season_year=season_year,
        verbose=verbose,
    )
    if not overrides:
        return config

    changes = {}
    for key, value in overrides.items():
        if value is None:
            continue
        if key == "closed_order_statuses":
            changes[key] = _to_tuple(value, upper=True) or config.closed_order_statuses
        elif key in {"price_source_priority", "excluded_price_sources"}:
            changes[key] = _to_tuple(value, lower=True) or getattr(config, key)
        elif key == "allocation_tolerance":
            tolerance = _to_float(value)
            changes[key] = tolerance if tolerance is not None and tolerance >= 0 else config.allocation_tolerance
        elif key == "default_season_year":
            changes[key] = _to_int(value)
        elif key == "verbose":
            changes[key] = _flag(value)
        else:
            raise TypeError(f"Unknown configuration option: {key}")
    return replace(config, **changes)


DEFAULT_CONFIG = EngineConfig()


__all__ = [
    "DEFAULT_CONFIG",
    "DEFAULT_CLOSED_ORDER_STATUSES",
    "DEFAULT_PRICE_SOURCE_PRIORITY",
    "DEFAULT_EXCLUDED_PRICE_SOURCES",
    "EngineConfig",
    "load_config",
]
