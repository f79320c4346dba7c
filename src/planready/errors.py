"""Exception types raised by the readiness and allocation engine."""
from __future__ import annotations


class PlanReadyError(Exception):
    """Base class for engine errors."""


class UnitError(PlanReadyError, ValueError):
    """Raised when a quantity cannot be expressed in the requested unit."""


class UnknownUnitError(UnitError):
    """Raised when a unit label does not name any supported unit."""

    def __init__(self, label: object, family: object = None) -> None:
        self.label = label
        self.family = family
        scope = f" in the {family} family" if family is not None else ""
        super().__init__(f"Unknown unit {label!r}{scope}")


class UnitFamilyMismatch(UnitError):
    """Raised when a liquid unit is converted as dry (or the reverse)."""

    def __init__(self, source: object, target: object) -> None:
        self.source = source
        self.target = target
        super().__init__(f"Cannot convert {source} to {target}: unit families differ")


class AccessorError(PlanReadyError, TypeError):
    """Raised when an accessor returns a value of the wrong shape."""


class SnapshotError(PlanReadyError):
    """Raised when an input snapshot cannot be loaded or fails validation."""


__all__ = [
    "PlanReadyError",
    "UnitError",
    "UnknownUnitError",
    "UnitFamilyMismatch",
    "AccessorError",
    "SnapshotError",
]
