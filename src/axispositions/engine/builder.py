"""
Position Builder
================
Walks the coil one column at a time and produces the axis moves for the
winding machine's feet.

Why is this file needed?
------------------------
1. Move synthesis: For every column azimuth it decides what the advancing
   and the retreating foot must do (nominal index, transition correction,
   joggle handling, full extend/retract at the end of a layer).
2. Seeding: Start of coil, new HQP and new layer rows set every foot to an
   absolute start position, so the relative moves that follow have a base.
3. Provenance: Each row carries a human-readable logic trace explaining why
   the move was chosen.

Classes:
    BuilderState: Mutable walk state, fresh for every build.
    PositionBuilder: The single-pass generator.
"""
from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import List, Type

from axispositions.config import (
    ADV_FOOT_RIA_OFFSET_ANGLE,
    ADVANCING_FOOT_START_POS,
    AXIS_COUNT,
    COIL_ANGLE_MAX,
    COLUMN_COUNT,
    COLUMN_INCREMENT,
    E_AZIMUTH,
    F_AZIMUTH,
    INITIAL_COLUMN_ANGLE,
    INITIAL_FULL_EXTEND_POS,
    INITIAL_FULL_RETRACT_POS,
    JOGGLE_LENGTH_MIN,
    NEW_LAYER_OFFSET,
    NO_FEATURE,
    POSITION_NOT_CALCULATED,
    RET_FOOT_RIA_OFFSET_ANGLE,
    RETREATING_FOOT_START_POS,
    SOC_INITIAL_ADVANCE_RIA_ANGLE,
    SOC_INITIAL_RETRACT_RIA_ANGLE,
    SOC_POST_LOAD_RIA_ANGLE,
    TURN_INDEX_NOMINAL,
)
from axispositions.engine.joggle import JoggleAdjustment, JoggleClassification, JoggleClassifier
from axispositions.engine.transition import TransitionAdjuster
from axispositions.errors import ColumnAzimuthError
from axispositions.model.coil import CoilIndex
from axispositions.model.records import (
    AllAxesAbsolute,
    AllAxesRelative,
    AxisIndex,
    FootRole,
    PositionMap,
    PositionRecord,
    SingleAxisAbsolute,
    SingleAxisMove,
    SingleAxisRelativeToPrevious,
)
from axispositions.utils import column_azimuth, column_for_angle, fmt_trace, round_half_away

logger = logging.getLogger(__name__)


@dataclass
class BuilderState:
    hqp_number: int = 0
    hqp_number_prev: int = 0
    layer_number: int = 0
    layer_number_prev: int = 0
    # Transition correction already applied to the column currently on a transition
    accumulated_transition: float = 0.0
    transition_marks: List[bool] = field(default_factory=lambda: [False] * COLUMN_COUNT)
    in_transition: bool = False
    positions: PositionMap = field(default_factory=PositionMap)

    def mark_column(self, coil_angle: float) -> bool:
        column = column_for_angle(coil_angle, wrap_negative=False)
        if column is None:
            return False
        self.transition_marks[column] = True
        return True

    def is_column_marked(self, coil_angle: float) -> bool:
        column = column_for_angle(coil_angle, wrap_negative=False)
        return column is not None and self.transition_marks[column]

    def clear_transition(self) -> None:
        """Forget the transition being tracked: no accumulated correction, no marked columns."""
        self.accumulated_transition = 0.0
        self.transition_marks = [False] * COLUMN_COUNT


class PositionBuilder:
    """
    Generates the position map for a whole coil.

    Args:
        index: Loaded coil map.
        coil_angle_max: Last coil angle (deg) a column may sit at.
        legacy_region3: Use the old "retreating foot holds" rule one turn
            past a joggle instead of nominal moves.
    """

    def __init__(self, index: CoilIndex, *, coil_angle_max: int = COIL_ANGLE_MAX, legacy_region3: bool = False):
        self.index = index
        self.coil_angle_max = coil_angle_max
        self.transitions = TransitionAdjuster(index)
        self.joggles = JoggleClassifier(index, legacy_region3=legacy_region3)

    def build(self) -> PositionMap:
        state = BuilderState()
        angles = range(INITIAL_COLUMN_ANGLE, self.coil_angle_max + 1, COLUMN_INCREMENT)
        total = len(angles)
        logger.info(f"Building positions for {total} columns between {INITIAL_COLUMN_ANGLE} and {self.coil_angle_max} deg.")

        step = max(total // 10, 1)
        for count, current_angle in enumerate(angles, start=1):
            self._process_column(state, current_angle)
            if count % step == 0:
                logger.debug(f"On angle {current_angle} of {self.coil_angle_max} ({100 * count // total} %)")

        logger.info(f"Position map built: {len(state.positions)} rows.")
        return state.positions

    # --- Record population ---

    def all_axes_record(self, coil_angle: float, is_even: bool, inner: float, outer: float, trace: str, *,
                        absolute: bool = True, is_in_transition: bool = False, is_in_joggle: bool = False,
                        is_new_hqp: bool = False, is_new_layer: bool = False, is_last_turn: bool = False,
                        is_last_layer: bool = False, hqp_adjust: int = 0, layer_adjust: int = 0) -> PositionRecord:
        """
        Inner feet to ``inner``, outer feet to ``outer``. Column positions are
        only known at run time and get the "not calculated" sentinel.

        An absolute row inside a joggle shifts the feet of the column at the
        coil angle by one nominal index.

        Raises:
            ColumnAzimuthError: If the coil angle is not on a column azimuth.
        """
        column = self._column(coil_angle)

        feet: List[float] = []
        for col in range(COLUMN_COUNT):
            bump = TURN_INDEX_NOMINAL if (absolute and is_in_joggle and col == column) else 0.0
            if not is_even:
                feet.append(inner + bump)
                feet.append(outer if is_last_layer else outer - bump)
            else:
                feet.append(inner if is_last_layer else inner - bump)
                feet.append(outer + bump)

        columns = (POSITION_NOT_CALCULATED,) * AXIS_COUNT
        move_cls = AllAxesAbsolute if absolute else AllAxesRelative
        return PositionRecord(
            move=move_cls(foot_positions=tuple(feet), column_positions=columns),
            coil_angle=coil_angle,
            logic_trace=trace,
            is_in_transition=is_in_transition,
            is_in_joggle=is_in_joggle,
            is_new_hqp=is_new_hqp,
            is_new_layer=is_new_layer,
            is_last_turn=is_last_turn,
            is_last_layer=is_last_layer,
            hqp_adjust=hqp_adjust,
            layer_adjust=layer_adjust,
        )

    def select_axis(self, coil_angle: float, is_even: bool, role: FootRole) -> AxisIndex:
        """
        Foot axis under the column at the coil angle for the given role.
        Odd layers retreat on the inner feet, even layers advance on them.

        Raises:
            ColumnAzimuthError: If the coil angle is not on a column azimuth.
        """
        column = self._column(coil_angle)
        inner = (is_even and role == FootRole.ADVANCING) or (not is_even and role == FootRole.RETREATING)
        return AxisIndex.foot(column, inner)

    @staticmethod
    def _column(coil_angle: float) -> int:
        column = column_for_angle(coil_angle)
        if column is None:
            raise ColumnAzimuthError(coil_angle, column_azimuth(coil_angle))
        return column

    # --- Seeds ---

    def _map_coil_start(self, state: BuilderState) -> float:
        """Seeds the start of coil and releases the lead. Returns the transition correction applied."""
        trace = (f"Start of coil positions. Column Angle: {int((F_AZIMUTH - 10) - 360.0)}. "
                 f"Inner feet to retr. start, Outer feet to adv. start. Columns not known, use sentinel.")
        try:
            record = self.all_axes_record(E_AZIMUTH - 360.0, False, RETREATING_FOOT_START_POS,
                                          ADVANCING_FOOT_START_POS, trace, is_new_hqp=True)
            state.positions.insert(SOC_POST_LOAD_RIA_ANGLE, record)
        except ColumnAzimuthError as e:
            logger.error(f"** ERROR ** Populating start of coil at RIA angle {SOC_POST_LOAD_RIA_ANGLE}. Row not added. {e}")

        check = self.index.transition_window(F_AZIMUTH)
        if check is None or not check.inside:
            # The lead sits on a transition on every real coil
            logger.warning("Column F is not on a transition at the start of the coil; no lead release moves.")
            return 0.0

        state.mark_column(F_AZIMUTH)
        t_adj = self.transitions.adjustment(F_AZIMUTH)
        column_angle = int(F_AZIMUTH - 360.0)

        releases = (
            (FootRole.RETREATING, abs(t_adj), SOC_INITIAL_RETRACT_RIA_ANGLE,
             f"Release lead.  Column Angle: {column_angle}. F Inner past trans. by "
             f"{fmt_trace(check.degrees_past)} degs. Retract {fmt_trace(t_adj)} mm."),
            (FootRole.ADVANCING, -abs(t_adj), SOC_INITIAL_ADVANCE_RIA_ANGLE,
             f"Lead released.  Column Angle: {column_angle}. F Outer past trans. by "
             f"{fmt_trace(check.degrees_past)} degs. Advance {fmt_trace(t_adj)} mm."),
        )
        for role, distance, ria_angle, release_trace in releases:
            try:
                axis = self.select_axis(F_AZIMUTH - 360.0, False, role)
            except ColumnAzimuthError as e:
                logger.error(f"** ERROR ** Populating lead release at RIA angle {ria_angle}. Row not added. {e}")
                continue
            record = PositionRecord(
                move=SingleAxisRelativeToPrevious(axis=axis, value=distance),
                coil_angle=F_AZIMUTH - 360.0,
                logic_trace=release_trace,
                is_in_transition=True,
            )
            state.positions.insert(ria_angle, record)

        return t_adj

    def _map_post_load(self, state: BuilderState, current_angle: int, in_joggle_window: bool) -> None:
        """Seeds the start of a new HQP (hex/quad pancake)."""
        if not in_joggle_window:
            joggle = self.index.joggle_at_or_after(current_angle)
            hqp_adjust = layer_adjust = 1
            trace = (f"Post Load Positions. Column Angle: {current_angle}. "
                     f"Inner feet to Retr. Start, Outer to Adv. Start. Columns not known, use sentinel.")
        else:
            joggle = self.index.joggle_at_or_before(current_angle)
            hqp_adjust = layer_adjust = 0
            trace = (f"Post Load Positions (column in joggle window). Column Angle: {current_angle}. "
                     f"Inner feet to Retr. Start, Outer to Adv. Start. Columns not known, use sentinel.")

        if joggle is None:
            ria_angle = POSITION_NOT_CALCULATED
            hqp_adjust = layer_adjust = 0
            trace = (f"Error looking up HQP LB at Column Angle: {current_angle}. "
                     f"Trying to enter post load feet positions.")
        else:
            # New HQPs always start on an even to odd joggle (turn 1 window)
            ria_angle = joggle + JOGGLE_LENGTH_MIN - RET_FOOT_RIA_OFFSET_ANGLE

        try:
            record = self.all_axes_record(current_angle, False, RETREATING_FOOT_START_POS, ADVANCING_FOOT_START_POS,
                                          trace, is_in_joggle=in_joggle_window, is_new_hqp=True,
                                          hqp_adjust=hqp_adjust, layer_adjust=layer_adjust)
        except ColumnAzimuthError as e:
            logger.error(f"** ERROR ** Populating new HQP foot positions at RIA angle {ria_angle}. Row not added. {e}")
            return
        state.positions.insert(ria_angle, record)

    def _map_new_layer(self, state: BuilderState, ria_angle: float, coil_angle: int, is_even: bool,
                       is_last_layer: bool, in_joggle_window: bool) -> None:
        """Seeds the start of a new layer. Even layers advance on the inner feet."""
        window_note = " (column in joggle window)" if in_joggle_window else ""
        if is_even:
            inner, outer = ADVANCING_FOOT_START_POS, RETREATING_FOOT_START_POS
            trace = (f"New Even Layer Start Positions{window_note}. Column Angle: {coil_angle}. "
                     f"Inner feet to adv. start, Outer feet to retr. start. Columns not known, use sentinel.")
        else:
            inner, outer = RETREATING_FOOT_START_POS, ADVANCING_FOOT_START_POS
            trace = (f"New Odd Layer Start Positions{window_note}. Column Angle: {coil_angle}. "
                     f"Inner feet to retr. start, Outer feet to adv. start. Columns not known, use sentinel.")

        try:
            record = self.all_axes_record(coil_angle, is_even, inner, outer, trace,
                                          is_in_joggle=in_joggle_window, is_new_layer=True,
                                          is_last_layer=is_last_layer,
                                          layer_adjust=0 if in_joggle_window else 1)
        except ColumnAzimuthError as e:
            logger.error(f"** ERROR ** Populating new layer positions at RIA angle {ria_angle}. Row not added. {e}")
            return
        state.positions.insert(ria_angle, record)

    def _seed_layer_boundary(self, state: BuilderState, current_angle: int) -> str:
        """
        Seeds a new HQP or new layer ahead of the column when it makes the
        last move of its layer. Returns a trace annotation on failure.
        """
        boundary = self.index.last_move_of_layer(current_angle)
        if not boundary.is_last_move:
            return ""

        # Layer changes at every joggle, HQP only at some. Check HQP first.
        joggle_row = self.index.at_or_before(boundary.joggle_angle)
        state.hqp_number = joggle_row.hqp if joggle_row is not None else NO_FEATURE
        state.layer_number = joggle_row.layer if joggle_row is not None else NO_FEATURE

        if state.hqp_number != state.hqp_number_prev:
            self._map_post_load(state, current_angle, boundary.in_joggle_window)
            state.hqp_number_prev = state.hqp_number
        elif state.layer_number != state.layer_number_prev:
            is_last_layer = self.index.is_last_layer_of_hqp(state.layer_number)
            ria_angle = current_angle - ADV_FOOT_RIA_OFFSET_ANGLE + NEW_LAYER_OFFSET
            is_even = bool(self.index.is_even_layer_at_or_before(boundary.joggle_angle))
            self._map_new_layer(state, ria_angle, current_angle, is_even, is_last_layer, boundary.in_joggle_window)
            state.layer_number_prev = state.layer_number
        else:
            return f"Error looking for new layer or hqp @ angle: {current_angle}. "
        return ""

    # --- Main step ---

    def _transition_step(self, state: BuilderState, current_angle: int) -> tuple[float, str]:
        """Transition correction for this column when no joggle applies."""
        check = self.index.transition_window(current_angle)
        if check is None:
            state.accumulated_transition = 0.0
            state.in_transition = False
            return 0.0, f"Error looking up IsInTransitionLb @ angle: {current_angle}. "

        if check.inside:
            # Correction grows over the turns the column spends on the transition
            state.mark_column(current_angle)
            this_adj = self.transitions.adjustment(current_angle) - state.accumulated_transition
            state.accumulated_transition += this_adj
            state.in_transition = True
            return this_adj, (f"No Joggle Adj, Past Trans by {fmt_trace(check.degrees_past)} degs. "
                              f"Adj: {fmt_trace(this_adj)} mm, ")

        if state.is_column_marked(current_angle):
            # Just left the transition: top up to a full index
            this_adj = TURN_INDEX_NOMINAL - state.accumulated_transition
            state.clear_transition()
            state.in_transition = True
            return this_adj, f"No Joggle Adj, Now off trans. Adj: {fmt_trace(this_adj)} mm, "

        state.in_transition = False
        return 0.0, "No Joggle Adj, No Trans Adj, "

    @staticmethod
    def _joggle_trace(joggle: JoggleClassification) -> str:
        if joggle.adjustment is JoggleAdjustment.RETREAT_ADJUST_ADVANCE_NOMINAL:
            return (f"Joggle in {fmt_trace(joggle.distance_to_next)} degs. "
                    f"Ret Ft Nom + Adj {fmt_trace(joggle.magnitude)}mm, Adv Ft Nom, ")
        if joggle.adjustment is JoggleAdjustment.RETREAT_FULL_ADVANCE_NONE:
            return (f"Past Joggle by {fmt_trace(-joggle.distance_to_prev)} degs. "
                    f"Ret Ft Full Retract, Adv Ft No Move, ")
        return (f"Past Joggle by {fmt_trace(-joggle.distance_to_prev)} degs. "
                f"Ret Ft No Move, Adv Ft Nom, ")

    def _process_column(self, state: BuilderState, current_angle: int) -> None:
        trace = f"Column Ang: {current_angle}, "

        if current_angle == INITIAL_COLUMN_ANGLE:
            state.hqp_number = state.hqp_number_prev = 1
            state.layer_number = state.layer_number_prev = 1
            state.accumulated_transition = self._map_coil_start(state)
        else:
            trace += self._seed_layer_boundary(state, current_angle)

        # Joggle regions take precedence over transition corrections
        joggle = self.joggles.classify(current_angle)
        region = joggle.adjustment
        is_joggle_adj = region.is_joggle_case
        if is_joggle_adj:
            this_adj = 0.0
            trace += self._joggle_trace(joggle)
        else:
            this_adj, note = self._transition_step(state, current_angle)
            trace += note

        row = self.index.at_or_before(current_angle)
        if row is None:
            layer = NO_FEATURE
            advancing_turn = NO_FEATURE
            trace += f"Error looking up layer number @ angle: {current_angle}. "
        else:
            # Inside the joggle window the coil map is already on the next layer
            layer = row.layer - 1 if region is JoggleAdjustment.RETREAT_FULL_ADVANCE_NONE else row.layer
            advancing_turn = row.turn

        is_even = layer % 2 == 0
        if is_even:
            retreating_turn = advancing_turn - 1
            trace += f"Even Layer({layer}), "
        else:
            retreating_turn = advancing_turn + 1
            trace += f"Odd Layer({layer}), "

        is_last_turn = self.index.is_last_turn_of_layer(advancing_turn, is_even)
        trace += "Last Turn, " if is_last_turn else "Not Last Turn, "
        is_last_layer = self.index.is_last_layer_of_hqp(layer)
        trace += "LastLayer. " if is_last_layer else "NotLastLayer. "

        # The coil map has moved on to the next layer/HQP but this column has not
        layer_adjust = -1 if is_last_turn and is_joggle_adj else 0
        hqp_adjust = -1 if is_last_turn and is_last_layer and is_joggle_adj else 0

        flags = dict(is_in_transition=state.in_transition, is_in_joggle=is_joggle_adj,
                     is_last_turn=is_last_turn, is_last_layer=is_last_layer,
                     hqp_adjust=hqp_adjust, layer_adjust=layer_adjust)

        # Advancing foot (the last layer leaves them fully extended)
        if not is_last_layer:
            move_cls: Type[SingleAxisMove]
            if ((not is_last_turn and region is JoggleAdjustment.NOMINAL)
                    or region is JoggleAdjustment.RETREAT_ADJUST_ADVANCE_NOMINAL
                    or region is JoggleAdjustment.RETREAT_NONE_ADVANCE_NOMINAL):
                move_cls, value = SingleAxisRelativeToPrevious, -(TURN_INDEX_NOMINAL + this_adj)
            elif region is JoggleAdjustment.RETREAT_FULL_ADVANCE_NONE:
                move_cls, value = SingleAxisRelativeToPrevious, 0.0
            else:
                # Last turn, no joggle: leaving this layer
                move_cls, value = SingleAxisAbsolute, INITIAL_FULL_EXTEND_POS
                state.clear_transition()

            self._add_foot_move(state, current_angle - round_half_away(ADV_FOOT_RIA_OFFSET_ANGLE), current_angle,
                                is_even, FootRole.ADVANCING, move_cls, value, advancing_turn, trace, flags)
        elif is_last_turn:
            # Covers a column still on a transition when the HQP ends
            state.clear_transition()

        # Retreating foot
        if region is JoggleAdjustment.RETREAT_ADJUST_ADVANCE_NOMINAL:
            move_cls, value = SingleAxisRelativeToPrevious, TURN_INDEX_NOMINAL + this_adj + joggle.magnitude
        elif region is JoggleAdjustment.RETREAT_FULL_ADVANCE_NONE:
            move_cls, value = SingleAxisAbsolute, INITIAL_FULL_RETRACT_POS
        elif region is JoggleAdjustment.RETREAT_NONE_ADVANCE_NOMINAL:
            move_cls, value = SingleAxisRelativeToPrevious, 0.0
        elif not is_last_turn:
            move_cls, value = SingleAxisRelativeToPrevious, TURN_INDEX_NOMINAL + this_adj
        else:
            move_cls, value = SingleAxisAbsolute, INITIAL_FULL_RETRACT_POS

        self._add_foot_move(state, current_angle - round_half_away(RET_FOOT_RIA_OFFSET_ANGLE), current_angle,
                            is_even, FootRole.RETREATING, move_cls, value, retreating_turn, trace, flags)

    def _add_foot_move(self, state: BuilderState, ria_angle: int, coil_angle: int, is_even: bool, role: FootRole,
                       move_cls: Type[SingleAxisMove], value: float, turn: int, trace: str, flags: dict) -> None:
        """Builds one single-axis row, appends its move summary and maps it."""
        try:
            axis = self.select_axis(coil_angle, is_even, role)
        except ColumnAzimuthError as e:
            logger.error(f"** ERROR ** Populating {role} foot position at angle {ria_angle}. Row not added. {e}")
            return

        if role == FootRole.ADVANCING:
            # Advancing moves are negative; the summary shows them positive
            shown = -value
            prefix = f"*MS: Adv Ft To Trn: {turn}. Adv"
        else:
            shown = value
            prefix = f"*MS: Ret Ft To Trn: {turn}. Ret"
        if move_cls is SingleAxisAbsolute:
            summary = f"{prefix} (abs) {axis.label} to {fmt_trace(shown)} mm."
        else:
            summary = f"{prefix} (rel) {axis.label} {fmt_trace(shown)} mm."

        record = PositionRecord(move=move_cls(axis=axis, value=value), coil_angle=coil_angle,
                                logic_trace=trace + summary, **flags)
        state.positions.insert(ria_angle, record)
