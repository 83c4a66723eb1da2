"""
Transition Adjustment
=====================
Radial foot correction while a column passes over a layer transition.

A transition moves the winding from one layer radius to the next
(one nominal turn index, 53 mm) over TRANS_ARC_DEG degrees. Odd layers
leave the old radius along an arc and finish along a straight segment;
even layers do the reverse. The correction is how far the foot radius
has moved away from the layer radius at a given angle past the start.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
import logging
import math
from typing import Optional

from axispositions.config import (
    DEG_TO_RADIANS,
    RADIANS_TO_DEG,
    TRANS_ARC_DEG,
    TRANS_STRAIGHT_LENGTH,
    TURN_INDEX_NOMINAL,
)
from axispositions.model.coil import CoilIndex

logger = logging.getLogger(__name__)

# Radius of the circle the transition arc is centred on
TRANS_RO: float = TRANS_STRAIGHT_LENGTH / math.sin(TRANS_ARC_DEG * DEG_TO_RADIANS)


class TransitionRegion(StrEnum):
    ARC = "arc"
    STRAIGHT = "straight"
    OUTSIDE = "outside"


@dataclass(frozen=True)
class TransitionGeometry:
    is_odd_layer: bool
    inner_radius: float  # R1
    outer_radius: float  # R2
    arc_radius: float
    degrees_from_start: float
    change_angle: float  # arc/straight boundary (deg from start)
    region: TransitionRegion
    radius: Optional[float] = None

    @property
    def adjustment(self) -> float:
        if self.radius is None:
            return 0.0
        if self.is_odd_layer:
            return self.outer_radius - self.radius
        return self.radius - self.inner_radius


def _arc_radius_at(arc_radius: float, angle_deg: float) -> Optional[float]:
    a = angle_deg * DEG_TO_RADIANS
    discriminant = arc_radius ** 2 - (TRANS_RO * math.sin(a)) ** 2
    if discriminant < 0.0:
        logger.warning(f"Transition arc has no solution at {angle_deg} deg (arc radius {arc_radius}).")
        return None
    return TRANS_RO * math.cos(a) + math.sqrt(discriminant)


def transition_geometry(start_radius: float, degrees_from_start: float, is_odd_layer: bool) -> TransitionGeometry:
    """
    Solves the transition profile at a point.

    Args:
        start_radius: Nominal radius of the coil row where the transition starts.
        degrees_from_start: Angle (deg) past the start of the transition.
        is_odd_layer: Layer parity at the transition.

    Returns:
        The solved geometry. ``radius`` is None outside the transition.
    """
    a = degrees_from_start
    if is_odd_layer:
        r2 = start_radius
        r1 = r2 - TURN_INDEX_NOMINAL
        r_arc = r2 - TRANS_RO
        change = TRANS_ARC_DEG - math.atan(TRANS_STRAIGHT_LENGTH / r1) * RADIANS_TO_DEG
        if 0.0 <= a <= change:
            region, radius = TransitionRegion.ARC, _arc_radius_at(r_arc, a)
        elif change < a <= TRANS_ARC_DEG:
            region = TransitionRegion.STRAIGHT
            radius = r1 / math.cos((TRANS_ARC_DEG - a) * DEG_TO_RADIANS)
        else:
            region, radius = TransitionRegion.OUTSIDE, None
    else:
        r1 = start_radius
        r2 = r1 + TURN_INDEX_NOMINAL
        r_arc = r2 - TRANS_RO
        change = math.atan(TRANS_STRAIGHT_LENGTH / r1) * RADIANS_TO_DEG
        if 0.0 <= a <= change:
            region = TransitionRegion.STRAIGHT
            radius = r1 / math.cos(a * DEG_TO_RADIANS)
        elif change < a <= TRANS_ARC_DEG:
            region, radius = TransitionRegion.ARC, _arc_radius_at(r_arc, a - TRANS_ARC_DEG)
        else:
            region, radius = TransitionRegion.OUTSIDE, None

    return TransitionGeometry(
        is_odd_layer=is_odd_layer,
        inner_radius=r1,
        outer_radius=r2,
        arc_radius=r_arc,
        degrees_from_start=a,
        change_angle=change,
        region=region,
        radius=radius,
    )


def radial_adjustment(start_radius: float, degrees_from_start: float, is_odd_layer: bool) -> float:
    """Foot correction (mm) at a point of a transition. 0 outside it."""
    return transition_geometry(start_radius, degrees_from_start, is_odd_layer).adjustment


class TransitionAdjuster:
    """Looks up the transition at or before an angle and solves its profile."""

    def __init__(self, index: CoilIndex):
        self.index = index

    def geometry(self, angle: float) -> Optional[TransitionGeometry]:
        row = self.index.at_or_before(angle)
        if row is None:
            logger.debug(f"No coil row at or before {angle}; no transition adjustment.")
            return None
        return transition_geometry(row.radius, angle - row.angle, not row.is_even_layer)

    def adjustment(self, angle: float) -> float:
        geometry = self.geometry(angle)
        return 0.0 if geometry is None else geometry.adjustment
