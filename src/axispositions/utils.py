import math
from typing import Optional

from axispositions.config import COLUMN_AZIMUTHS


def round_half_away(value: float) -> int:
    """Round to the nearest integer, halves away from zero."""
    return int(math.copysign(math.floor(abs(value) + 0.5), value))


def column_azimuth(coil_angle: float, wrap_negative: bool = True) -> int:
    """Integer azimuth (deg) of a coil angle within one revolution."""
    azimuth = int(math.fmod(coil_angle, 360.0))
    if wrap_negative and azimuth < 0:
        azimuth += 360
    return azimuth


def column_for_angle(coil_angle: float, wrap_negative: bool = True) -> Optional[int]:
    """
    Zero-based column (A=0 .. F=5) whose azimuth matches the coil angle,
    or None when the angle falls between columns.
    """
    azimuth = column_azimuth(coil_angle, wrap_negative)
    if azimuth in COLUMN_AZIMUTHS:
        return COLUMN_AZIMUTHS.index(azimuth)
    return None


def fmt_trace(value: float) -> str:
    """Six-decimal rendering used for numbers in logic traces."""
    return f"{value:f}"
