"""
Joggle Classification
=====================
Decides how the feet at a column behave around a joggle, the step where the
winding climbs to the next layer.

Regions, by distance from the column to the nearest joggles:

* Region 1: the next joggle is about one turn ahead. The retreating foot
  gets half a turn index on top of its nominal move.
* Region 2: the column sits inside the previous joggle's window. The
  retreating foot fully retracts and the advancing foot stays put.
* Region 3: the previous joggle is about one turn behind. Current machines
  treat this as nominal; the older rule (retreating foot holds, advancing
  foot nominal) can be switched back on.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
import logging
from typing import Optional

from axispositions.config import (
    JOGGLE_ADJUSTMENT,
    JOGGLE_THRESHOLD_CURRENT,
    JOGGLE_THRESHOLD_LOOKAHEAD,
    JOGGLE_THRESHOLD_LOOKBACK,
)
from axispositions.model.coil import CoilIndex

logger = logging.getLogger(__name__)


class JoggleAdjustment(StrEnum):
    NOMINAL = "nominal"
    RETREAT_ADJUST_ADVANCE_NOMINAL = "retreat_adjust_advance_nominal"  # region 1
    RETREAT_FULL_ADVANCE_NONE = "retreat_full_advance_none"  # region 2
    RETREAT_NONE_ADVANCE_NOMINAL = "retreat_none_advance_nominal"  # region 3 (legacy)

    @property
    def is_joggle_case(self) -> bool:
        return self is not JoggleAdjustment.NOMINAL


@dataclass(frozen=True)
class JoggleClassification:
    adjustment: JoggleAdjustment
    distance_to_next: Optional[float]  # next joggle - angle; None if there is none
    distance_to_prev: Optional[float]  # prev joggle - angle (<= 0); None if there is none
    magnitude: float = 0.0


class JoggleClassifier:

    def __init__(self, index: CoilIndex, *, legacy_region3: bool = False):
        self.index = index
        self.legacy_region3 = legacy_region3

    def classify(self, angle: float) -> JoggleClassification:
        next_joggle = self.index.joggle_at_or_after(angle)
        prev_joggle = self.index.joggle_at_or_before(angle)

        deg_next: Optional[float] = None
        next_len = 0.0
        if next_joggle is not None:
            deg_next = next_joggle - angle
            next_len = self.index.joggle_window_length(next_joggle)

        deg_prev: Optional[float] = None
        prev_len = 0.0
        if prev_joggle is not None:
            deg_prev = prev_joggle - angle
            prev_len = self.index.joggle_window_length(prev_joggle)

        # A missing joggle is infinitely far away
        next_far = deg_next is None or deg_next > JOGGLE_THRESHOLD_LOOKAHEAD
        prev_far = deg_prev is None or deg_prev < JOGGLE_THRESHOLD_LOOKBACK - prev_len

        if next_far and prev_far:
            return JoggleClassification(JoggleAdjustment.NOMINAL, deg_next, deg_prev)

        if deg_next is not None and JOGGLE_THRESHOLD_LOOKAHEAD - next_len <= deg_next <= JOGGLE_THRESHOLD_LOOKAHEAD:
            return JoggleClassification(
                JoggleAdjustment.RETREAT_ADJUST_ADVANCE_NOMINAL, deg_next, deg_prev, JOGGLE_ADJUSTMENT
            )

        if deg_prev is not None and JOGGLE_THRESHOLD_CURRENT - prev_len <= deg_prev <= JOGGLE_THRESHOLD_CURRENT:
            return JoggleClassification(JoggleAdjustment.RETREAT_FULL_ADVANCE_NONE, deg_next, deg_prev)

        if deg_prev is not None and JOGGLE_THRESHOLD_LOOKBACK - prev_len <= deg_prev <= JOGGLE_THRESHOLD_LOOKBACK:
            if self.legacy_region3:
                return JoggleClassification(JoggleAdjustment.RETREAT_NONE_ADVANCE_NOMINAL, deg_next, deg_prev)
            logger.debug(f"Column {angle} one turn past joggle {prev_joggle}; nominal moves.")

        return JoggleClassification(JoggleAdjustment.NOMINAL, deg_next, deg_prev)
