"""
Error types raised by the axis position generator.

Lookups against the coil index do not raise; they return None and the
position builder turns that into a neutral value plus a trace annotation.
The exceptions below cover the failures that must reach the caller.
"""
from typing import Optional


class AxisPositionsError(Exception):
    """Base class for all package errors."""


class LoadError(AxisPositionsError):
    """The coil map could not be read. Nothing downstream can run."""


class CoilLookupError(AxisPositionsError, LookupError):
    """A coil map lookup produced a value the caller cannot work with."""


class ColumnAzimuthError(CoilLookupError):
    """A coil angle does not resolve to one of the six machine columns."""

    def __init__(self, coil_angle: float, azimuth: int):
        self.coil_angle = coil_angle
        self.azimuth = azimuth
        super().__init__(
            f"Coil angle {coil_angle} resolves to azimuth {azimuth}, which is not a column azimuth."
        )


class WriteError(AxisPositionsError):
    """A position row (or the whole table) could not be persisted."""

    def __init__(self, message: str, ria_angle: Optional[int] = None):
        self.ria_angle = ria_angle
        super().__init__(message)
