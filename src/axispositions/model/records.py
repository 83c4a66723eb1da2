"""
Position Records
================
Defines the output data structures of the position builder.

Why is this file needed?
------------------------
1. Move variants: A row either sets all twelve feet at once or moves a single
   axis. Each kind of move is its own class, so a record can never carry a
   selected axis and a full position array at the same time.
2. Compatibility: The flat views (foot/column arrays, selection mask, selected
   axis detail) reproduce the column layout the machine controller reads.

Classes:
    AxisIndex: The 24 machine axes (12 feet, 12 columns).
    MoveSpec: Base class of the five move variants.
    PositionRecord: One output row.
    PositionMap: Output rows keyed by integer RIA angle.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import IntEnum, StrEnum
import logging
from typing import Dict, Iterator, List, Optional, Tuple

from axispositions.config import AXIS_COUNT, INITIAL_NO_POSITION, MOVE_SUMMARY_TOKEN
from axispositions.utils import round_half_away

logger = logging.getLogger(__name__)


class AxisIndex(IntEnum):
    UNKNOWN = 0
    A_FOOT_INNER = 1
    A_FOOT_OUTER = 2
    B_FOOT_INNER = 3
    B_FOOT_OUTER = 4
    C_FOOT_INNER = 5
    C_FOOT_OUTER = 6
    D_FOOT_INNER = 7
    D_FOOT_OUTER = 8
    E_FOOT_INNER = 9
    E_FOOT_OUTER = 10
    F_FOOT_INNER = 11
    F_FOOT_OUTER = 12
    A_COLUMN_INNER = 13
    A_COLUMN_OUTER = 14
    B_COLUMN_INNER = 15
    B_COLUMN_OUTER = 16
    C_COLUMN_INNER = 17
    C_COLUMN_OUTER = 18
    D_COLUMN_INNER = 19
    D_COLUMN_OUTER = 20
    E_COLUMN_INNER = 21
    E_COLUMN_OUTER = 22
    F_COLUMN_INNER = 23
    F_COLUMN_OUTER = 24

    @property
    def label(self) -> str:
        """Display name, e.g. 'C Foot Outer'."""
        if self is AxisIndex.UNKNOWN:
            return "Unknown Index!"
        return self.name.replace("_", " ").title()

    @property
    def is_foot(self) -> bool:
        return 1 <= self.value <= AXIS_COUNT

    @classmethod
    def foot(cls, column: int, inner: bool) -> AxisIndex:
        """Foot axis of a zero-based column (A=0 .. F=5)."""
        return cls(column * 2 + (1 if inner else 2))


class FootRole(StrEnum):
    ADVANCING = "advancing"
    RETREATING = "retreating"


# --- Move variants ---

class MoveSpec(ABC):
    """What a single position row asks the machine to do."""

    @property
    @abstractmethod
    def is_absolute(self) -> bool:
        pass

    @property
    @abstractmethod
    def is_selective(self) -> bool:
        pass

    @property
    def is_adjustment_of_previous(self) -> bool:
        return False

    @property
    def selection_mask(self) -> Tuple[bool, ...]:
        """One flag per axis (feet first, then columns)."""
        return (False,) * (2 * AXIS_COUNT)

    @property
    def selected_axis_detail(self) -> Optional[Tuple[float, AxisIndex, bool]]:
        """(value, axis, is_adjustment_of_previous) for single-axis moves."""
        return None


@dataclass(frozen=True)
class _AllAxesMove(MoveSpec):
    foot_positions: Tuple[float, ...]
    column_positions: Tuple[float, ...]

    def __post_init__(self):
        if len(self.foot_positions) != AXIS_COUNT or len(self.column_positions) != AXIS_COUNT:
            raise ValueError(f"All-axes moves need {AXIS_COUNT} foot and {AXIS_COUNT} column values.")

    @property
    def is_selective(self) -> bool:
        return False


@dataclass(frozen=True)
class AllAxesAbsolute(_AllAxesMove):
    @property
    def is_absolute(self) -> bool:
        return True


@dataclass(frozen=True)
class AllAxesRelative(_AllAxesMove):
    @property
    def is_absolute(self) -> bool:
        return False


@dataclass(frozen=True)
class SingleAxisMove(MoveSpec):
    """
    Moves one axis. ``value`` is a position for absolute moves and a
    distance for relative ones.
    """
    axis: AxisIndex
    value: float

    @property
    def is_selective(self) -> bool:
        return True

    @property
    def foot_positions(self) -> Tuple[float, ...]:
        return (INITIAL_NO_POSITION,) * AXIS_COUNT

    @property
    def column_positions(self) -> Tuple[float, ...]:
        return (INITIAL_NO_POSITION,) * AXIS_COUNT

    @property
    def selection_mask(self) -> Tuple[bool, ...]:
        return tuple(i + 1 == self.axis for i in range(2 * AXIS_COUNT))

    @property
    def selected_axis_detail(self) -> Optional[Tuple[float, AxisIndex, bool]]:
        return self.value, self.axis, self.is_adjustment_of_previous


@dataclass(frozen=True)
class SingleAxisAbsolute(SingleAxisMove):
    @property
    def is_absolute(self) -> bool:
        return True


@dataclass(frozen=True)
class SingleAxisRelative(SingleAxisMove):
    @property
    def is_absolute(self) -> bool:
        return False


@dataclass(frozen=True)
class SingleAxisRelativeToPrevious(SingleAxisMove):
    """Relative distance applied on top of the previous absolute target."""

    @property
    def is_absolute(self) -> bool:
        return True

    @property
    def is_adjustment_of_previous(self) -> bool:
        return True


MOVE_TYPES: Dict[str, type] = {
    cls.__name__: cls
    for cls in (AllAxesAbsolute, AllAxesRelative, SingleAxisAbsolute, SingleAxisRelative,
                SingleAxisRelativeToPrevious)
}


@dataclass
class PositionRecord:
    move: MoveSpec
    coil_angle: float
    logic_trace: str = ""
    is_in_transition: bool = False
    is_in_joggle: bool = False
    is_new_hqp: bool = False
    is_new_layer: bool = False
    is_last_turn: bool = False
    is_last_layer: bool = False
    hqp_adjust: int = 0
    layer_adjust: int = 0

    @property
    def is_absolute(self) -> bool:
        return self.move.is_absolute

    @property
    def is_selective(self) -> bool:
        return self.move.is_selective

    @property
    def action_description(self) -> str:
        """The move summary part of the trace, or the whole trace if there is none."""
        idx = self.logic_trace.find(MOVE_SUMMARY_TOKEN)
        if idx == -1:
            return self.logic_trace
        return self.logic_trace[idx + 1:]


@dataclass(frozen=True)
class EventAnchors:
    """Start angles the event stage hangs its HQP and layer events on."""
    new_hqp_angles: Tuple[int, ...] = ()
    new_layer_angles: Tuple[int, ...] = ()


class PositionMap:
    """
    Position records keyed by integer RIA angle (deg), iterated in key order.
    Inserting at an occupied key replaces the earlier record.
    """

    def __init__(self) -> None:
        self._records: Dict[int, PositionRecord] = {}

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PositionMap):
            return NotImplemented
        return self._records == other._records

    def insert(self, ria_angle: float, record: PositionRecord) -> int:
        key = round_half_away(ria_angle)
        if key in self._records:
            logger.debug(f"RIA angle {key} already mapped; overwriting.")
        self._records[key] = record
        return key

    def __getitem__(self, key: int) -> PositionRecord:
        return self._records[key]

    def get(self, key: int) -> Optional[PositionRecord]:
        return self._records.get(key)

    def __contains__(self, key: object) -> bool:
        return key in self._records

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[int]:
        return iter(sorted(self._records))

    def keys(self) -> List[int]:
        return sorted(self._records)

    def items(self) -> List[Tuple[int, PositionRecord]]:
        return sorted(self._records.items(), key=lambda kv: kv[0])

    def values(self) -> List[PositionRecord]:
        return [rec for _, rec in self.items()]

    def clear(self) -> None:
        self._records.clear()

    @property
    def first_angle(self) -> Optional[int]:
        return min(self._records) if self._records else None

    @property
    def last_angle(self) -> Optional[int]:
        return max(self._records) if self._records else None

    def new_hqp_angles(self) -> List[int]:
        return [key for key, rec in self.items() if rec.is_new_hqp]

    def new_layer_angles(self) -> List[int]:
        return [key for key, rec in self.items() if rec.is_new_layer]

    def event_anchors(self) -> EventAnchors:
        return EventAnchors(tuple(self.new_hqp_angles()), tuple(self.new_layer_angles()))
