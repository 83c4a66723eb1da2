"""
Coil Map Index
==============
Read-only, angle-ordered view of the coil map.

Why is this file needed?
------------------------
1. Lookup semantics: The position builder asks "which feature am I at or just
   past?" hundreds of thousands of times per coil. The index answers with
   binary searches over a sorted numpy array of angles.
2. Derived views: Joggle angles and odd-layer turn-14 transition angles are
   extracted once at load time so the hot path never rescans the rows.

Classes:
    FeatureCode: The feature a coil row marks.
    CoilRow: One immutable coil map row.
    CoilIndex: The loaded index and all its queries.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
import logging
from typing import Dict, Iterable, Optional, Tuple, TYPE_CHECKING

import numpy as np

from axispositions.config import (
    COLUMN_INCREMENT,
    JOGGLE_LENGTH_MAX,
    JOGGLE_LENGTH_MIN,
    LAST_HQP_LAYERS,
    LAYERS_PER_COIL,
    MEASUREMENT_COMPRESSION_LAYERS,
    TRANS_ARC_DEG,
    TURNS_PER_LAYER,
)
from axispositions.errors import LoadError

if TYPE_CHECKING:
    import numpy.typing as npt
    from axispositions.model.io import CoilSource

logger = logging.getLogger(__name__)


class FeatureCode(StrEnum):
    TRANSITION = "T"
    INLET = "I"
    OUTLET = "O"
    JOGGLE = "J"
    WINDING_LOCK = "W"
    LOCAL_ZERO = "L"
    NONE = "none"

    @classmethod
    def from_code(cls, code: Optional[str]) -> FeatureCode:
        """Parses a stored feature code. Blank codes mean no feature."""
        code = (code or "").strip()
        if not code or code.lower() == cls.NONE:
            return cls.NONE
        return cls(code.upper())


@dataclass(frozen=True)
class CoilRow:
    angle: float
    feature_code: FeatureCode
    hqp: int
    layer: int
    turn: int
    azimuth: float
    radius: float

    @property
    def is_even_layer(self) -> bool:
        return self.layer % 2 == 0


@dataclass(frozen=True)
class WindowCheck:
    """Result of a window test at an angle: inside or not, and how far past the feature."""
    inside: bool
    degrees_past: float


@dataclass(frozen=True)
class LayerBoundary:
    is_last_move: bool
    joggle_angle: Optional[float] = None
    in_joggle_window: bool = False


class CoilIndex:
    """
    Angle-ordered coil map with lower/upper bound queries.

    "At or before" queries return the row with the greatest angle not above
    the query. Two edge behaviours match the tables produced on the machine:

    * A query below the first row returns the first row.
    * A query exactly equal to the last row's angle returns None. Pass
      ``include_last_row=True`` to get the last row instead.
    """

    def __init__(self, rows: Iterable[CoilRow] = (), *, include_last_row: bool = False):
        self.include_last_row = include_last_row

        by_angle: Dict[float, CoilRow] = {}
        for row in rows:
            if row.angle in by_angle:
                logger.warning(f"Duplicate coil angle {row.angle}; keeping the later row.")
            by_angle[row.angle] = row

        self._rows: Tuple[CoilRow, ...] = tuple(by_angle[a] for a in sorted(by_angle))
        self._angles: npt.NDArray[np.float64] = np.array([r.angle for r in self._rows], dtype=np.float64)

        self._joggles: npt.NDArray[np.float64] = np.array(
            [r.angle for r in self._rows if r.feature_code == FeatureCode.JOGGLE], dtype=np.float64
        )

        self._odd_layer_turn14: Dict[int, float] = {}
        for r in self._rows:
            if r.layer % 2 == 1 and r.turn == TURNS_PER_LAYER and r.feature_code == FeatureCode.TRANSITION:
                self._odd_layer_turn14[r.layer] = r.angle

        logger.debug(
            f"Coil index built: {len(self._rows)} rows, {len(self._joggles)} joggles, "
            f"{len(self._odd_layer_turn14)} odd layer turn 14 transitions."
        )

    @classmethod
    def load(cls, source: CoilSource, *, include_last_row: bool = False) -> CoilIndex:
        """
        Reads every row from the source and builds the index.

        Raises:
            LoadError: If the source fails or yields no rows.
        """
        rows = source.load_rows()
        if not rows:
            msg = "Coil map source returned no rows."
            logger.error(msg)
            raise LoadError(msg)
        index = cls(rows, include_last_row=include_last_row)
        logger.info(f"Coil map loaded: {len(index)} rows ({index.first_angle} .. {index.last_angle} deg).")
        return index

    # --- Basic views ---

    def __len__(self) -> int:
        return len(self._rows)

    @property
    def rows(self) -> Tuple[CoilRow, ...]:
        return self._rows

    @property
    def first_angle(self) -> Optional[float]:
        return self._rows[0].angle if self._rows else None

    @property
    def last_angle(self) -> Optional[float]:
        return self._rows[-1].angle if self._rows else None

    @property
    def joggle_angles(self) -> Tuple[float, ...]:
        return tuple(float(a) for a in self._joggles)

    # --- Row lookups ---

    def exact(self, angle: float) -> Optional[CoilRow]:
        i = int(np.searchsorted(self._angles, angle, side="left"))
        if i < len(self._rows) and self._angles[i] == angle:
            return self._rows[i]
        return None

    def at_or_before(self, angle: float) -> Optional[CoilRow]:
        if not self._rows:
            return None
        i = int(np.searchsorted(self._angles, angle, side="right"))
        if i == len(self._rows) and not self.include_last_row and self._angles[-1] == angle:
            return None
        if i > 0:
            i -= 1
        return self._rows[i]

    def at_or_after(self, angle: float) -> Optional[CoilRow]:
        i = int(np.searchsorted(self._angles, angle, side="left"))
        return self._rows[i] if i < len(self._rows) else None

    def next_after(self, angle: float) -> Optional[CoilRow]:
        i = int(np.searchsorted(self._angles, angle, side="right"))
        return self._rows[i] if i < len(self._rows) else None

    def previous_angle(self, angle: float) -> Optional[float]:
        """Angle of the nearest row strictly before the given angle."""
        i = int(np.searchsorted(self._angles, angle, side="left"))
        return float(self._angles[i - 1]) if i > 0 else None

    # --- Joggles ---

    def joggle_at_or_before(self, angle: float) -> Optional[float]:
        i = int(np.searchsorted(self._joggles, angle, side="right"))
        return float(self._joggles[i - 1]) if i > 0 else None

    def joggle_at_or_after(self, angle: float) -> Optional[float]:
        i = int(np.searchsorted(self._joggles, angle, side="left"))
        return float(self._joggles[i]) if i < len(self._joggles) else None

    def joggle_window_length(self, angle: float) -> float:
        """
        Length (deg) of the joggle window starting at the given joggle angle.

        Odd to even layer joggles sit on turn 14 and use the long window;
        even to odd joggles sit on turn 1 and use the short one.
        """
        row = self.at_or_before(angle)
        if row is None:
            return 0.0
        if row.turn == 1:
            return JOGGLE_LENGTH_MIN
        if row.turn == TURNS_PER_LAYER:
            return JOGGLE_LENGTH_MAX
        return 0.0

    def in_joggle_window(self, angle: float) -> Optional[bool]:
        """True when the feature at or before the angle is a joggle whose window covers it."""
        row = self.at_or_before(angle)
        if row is None:
            return None
        if row.feature_code != FeatureCode.JOGGLE:
            return False
        return angle - row.angle <= self.joggle_window_length(row.angle)

    def last_move_of_layer(self, angle: float) -> LayerBoundary:
        """
        Decides whether the column at this angle makes the last move of its layer.

        That is the case when the next joggle starts and ends before the next
        column, or when the column sits inside the window of the previous joggle.
        """
        next_joggle = self.joggle_at_or_after(angle)
        if next_joggle is not None:
            if next_joggle + self.joggle_window_length(next_joggle) < angle + COLUMN_INCREMENT:
                return LayerBoundary(True, next_joggle, False)

        prev_joggle = self.joggle_at_or_before(angle)
        if prev_joggle is not None:
            if prev_joggle + self.joggle_window_length(prev_joggle) >= angle:
                return LayerBoundary(True, prev_joggle, True)

        return LayerBoundary(False)

    # --- Transitions ---

    def transition_window(self, angle: float) -> Optional[WindowCheck]:
        """
        Tests whether the angle lies inside the transition window of the
        feature at or before it. None means the lookup failed.
        """
        row = self.at_or_before(angle)
        if row is None:
            return None
        degrees_past = angle - row.angle
        inside = row.feature_code == FeatureCode.TRANSITION and TRANS_ARC_DEG >= degrees_past
        return WindowCheck(inside, degrees_past)

    def odd_layer_turn14_angle(self, layer: int) -> Optional[float]:
        return self._odd_layer_turn14.get(layer)

    # --- Layer and turn predicates ---

    def is_local_zero_at_or_before(self, angle: float) -> Optional[bool]:
        row = self.at_or_before(angle)
        return None if row is None else row.feature_code == FeatureCode.LOCAL_ZERO

    def is_even_layer_at_or_before(self, angle: float) -> Optional[bool]:
        row = self.at_or_before(angle)
        return None if row is None else row.is_even_layer

    def is_last_turn_at_or_before(self, angle: float) -> Optional[bool]:
        row = self.at_or_before(angle)
        return None if row is None else self.is_last_turn_of_layer(row.turn, row.is_even_layer)

    def is_last_layer_at_or_before(self, angle: float) -> Optional[bool]:
        row = self.at_or_before(angle)
        return None if row is None else self.is_last_layer_of_hqp(row.layer)

    @staticmethod
    def is_last_turn_of_layer(turn: int, is_even_layer: bool) -> bool:
        # Even layers wind back down to turn 1
        if is_even_layer:
            return turn == 1
        return turn == TURNS_PER_LAYER

    @staticmethod
    def is_last_layer_of_hqp(layer: int) -> bool:
        return layer in LAST_HQP_LAYERS or layer >= LAYERS_PER_COIL

    @staticmethod
    def is_measurement_compression_layer(layer: int) -> bool:
        return layer in MEASUREMENT_COMPRESSION_LAYERS

    # --- Pairs for the event stage ---

    def current_and_next(self, angle: float) -> Tuple[Optional[CoilRow], Optional[CoilRow]]:
        """The row at exactly this angle and the row after it."""
        return self.exact(angle), self.next_after(angle)

    def current_and_next_at_or_before(self, angle: float) -> Tuple[Optional[CoilRow], Optional[CoilRow]]:
        """The row at or before this angle and the row after it."""
        return self.at_or_before(angle), self.next_after(angle)
