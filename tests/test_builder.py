from dataclasses import replace
import logging

import pytest

from axispositions.config import (
    INITIAL_FULL_RETRACT_POS,
    INITIAL_NO_POSITION,
    MOVE_SUMMARY_TOKEN,
    POSITION_NOT_CALCULATED,
    TURN_INDEX_NOMINAL,
)
from axispositions.engine.builder import BuilderState, PositionBuilder
from axispositions.engine.transition import TransitionAdjuster
from axispositions.errors import ColumnAzimuthError
from axispositions.model.coil import CoilIndex, FeatureCode
from axispositions.model.records import (
    AllAxesAbsolute,
    AxisIndex,
    FootRole,
    SingleAxisAbsolute,
    SingleAxisRelativeToPrevious,
)

from conftest import row, two_layer_rows


@pytest.fixture
def two_layer_positions(two_layer_index):
    return PositionBuilder(two_layer_index, coil_angle_max=9990).build()


@pytest.fixture
def lead_positions(lead_transition_index):
    return PositionBuilder(lead_transition_index, coil_angle_max=750).build()


def test_map_spans_start_seed_to_last_column(two_layer_positions):
    assert two_layer_positions.first_angle == -140
    assert two_layer_positions.last_angle == 9940


def test_start_of_coil_seed(two_layer_positions):
    start = two_layer_positions[-140]
    assert isinstance(start.move, AllAxesAbsolute)
    assert start.is_new_hqp
    assert start.move.foot_positions == (-13.0, 729.0) * 6
    assert start.move.column_positions == (POSITION_NOT_CALCULATED,) * 12


def test_no_lead_release_without_transition(two_layer_positions):
    assert -130 not in two_layer_positions
    assert -80 not in two_layer_positions


def test_single_new_hqp_and_new_layer(two_layer_positions):
    assert two_layer_positions.new_hqp_angles() == [-140]
    assert two_layer_positions.new_layer_angles() == [4965]


def test_new_layer_seed_inside_joggle_window(two_layer_positions):
    record = two_layer_positions[4965]
    assert record.coil_angle == 5010
    assert record.is_in_joggle
    assert (record.hqp_adjust, record.layer_adjust) == (0, 0)
    assert isinstance(record.move, AllAxesAbsolute)

    feet = record.move.foot_positions
    # Even layer: inner feet advance, column F is shifted by one index
    assert feet[10] == 729.0 - TURN_INDEX_NOMINAL
    assert feet[11] == -13.0 + TURN_INDEX_NOMINAL
    assert all(v == 729.0 for v in feet[0:10:2])
    assert all(v == -13.0 for v in feet[1:10:2])


def test_turn_before_joggle_adds_half_index(two_layer_positions):
    record = two_layer_positions[4550]
    assert isinstance(record.move, SingleAxisRelativeToPrevious)
    assert record.move.axis is AxisIndex.F_FOOT_INNER
    assert record.move.value == pytest.approx(TURN_INDEX_NOMINAL + TURN_INDEX_NOMINAL / 2)
    assert record.is_in_joggle


def test_inside_joggle_window(two_layer_positions):
    advancing = two_layer_positions[4960]
    assert isinstance(advancing.move, SingleAxisRelativeToPrevious)
    assert advancing.move.axis is AxisIndex.F_FOOT_OUTER
    assert advancing.move.value == 0.0
    assert advancing.layer_adjust == -1
    assert advancing.is_last_turn

    retreating = two_layer_positions[4910]
    assert isinstance(retreating.move, SingleAxisAbsolute)
    assert retreating.move.axis is AxisIndex.F_FOOT_INNER
    assert retreating.move.value == INITIAL_FULL_RETRACT_POS


def test_nominal_moves_are_one_index(two_layer_positions):
    nominal = [
        rec for rec in two_layer_positions.values()
        if isinstance(rec.move, SingleAxisRelativeToPrevious)
        and not (rec.is_in_joggle or rec.is_in_transition or rec.is_last_turn)
    ]
    assert nominal
    assert all(abs(rec.move.value) == TURN_INDEX_NOMINAL for rec in nominal)


def test_advancing_moves_are_negative(two_layer_positions):
    record = two_layer_positions[-20]
    assert record.move.axis is AxisIndex.A_FOOT_OUTER
    assert record.move.value == -TURN_INDEX_NOMINAL
    assert two_layer_positions[-70].move.value == TURN_INDEX_NOMINAL


def test_traces_carry_move_summary(two_layer_positions):
    record = two_layer_positions[-20]
    assert record.logic_trace.startswith("Column Ang: 30, ")
    assert MOVE_SUMMARY_TOKEN in record.logic_trace
    assert record.action_description == "MS: Adv Ft To Trn: 1. Adv (rel) A Foot Outer 53.000000 mm."


def test_selective_rows_use_no_position_sentinel(two_layer_positions):
    record = two_layer_positions[-70]
    assert record.is_selective
    assert record.move.foot_positions == (INITIAL_NO_POSITION,) * 12


def test_build_is_repeatable(two_layer_index):
    builder = PositionBuilder(two_layer_index, coil_angle_max=9990)
    assert builder.build() == builder.build()


def test_region_three_is_nominal_by_default(two_layer_index):
    default = PositionBuilder(two_layer_index, coil_angle_max=9990).build()
    legacy = PositionBuilder(two_layer_index, coil_angle_max=9990, legacy_region3=True).build()
    assert default[5270].move.value == TURN_INDEX_NOMINAL
    assert default[5270].move.axis is AxisIndex.F_FOOT_OUTER
    assert legacy[5270].move.value == 0.0
    assert legacy[5270].is_in_joggle


def test_lead_release(lead_transition_index, lead_positions):
    t_adj = TransitionAdjuster(lead_transition_index).adjustment(330)
    assert t_adj > 0.0

    retract = lead_positions[-130]
    assert retract.move.axis is AxisIndex.F_FOOT_INNER
    assert retract.move.value == pytest.approx(t_adj)
    assert retract.is_in_transition

    advance = lead_positions[-80]
    assert advance.move.axis is AxisIndex.F_FOOT_OUTER
    assert advance.move.value == pytest.approx(-t_adj)
    assert advance.is_in_transition


def test_transition_correction_tops_up_to_full_index(lead_transition_index, lead_positions):
    t_adj = TransitionAdjuster(lead_transition_index).adjustment(330)
    # Column F is still on the transition one column later: nothing new to add
    assert lead_positions[230].move.value == pytest.approx(TURN_INDEX_NOMINAL)

    off = lead_positions[590]
    assert off.move.axis is AxisIndex.F_FOOT_INNER
    assert off.move.value == pytest.approx(2 * TURN_INDEX_NOMINAL - t_adj)
    assert off.is_in_transition
    assert lead_positions[640].move.value == pytest.approx(-(2 * TURN_INDEX_NOMINAL - t_adj))


def test_select_axis_by_parity_and_role(two_layer_index):
    builder = PositionBuilder(two_layer_index)
    assert builder.select_axis(30, False, FootRole.RETREATING) is AxisIndex.A_FOOT_INNER
    assert builder.select_axis(30, False, FootRole.ADVANCING) is AxisIndex.A_FOOT_OUTER
    assert builder.select_axis(390, True, FootRole.ADVANCING) is AxisIndex.A_FOOT_INNER
    assert builder.select_axis(-30, True, FootRole.RETREATING) is AxisIndex.F_FOOT_OUTER


def test_column_marks():
    state = BuilderState()
    assert state.mark_column(330)
    assert state.is_column_marked(690)
    assert not state.is_column_marked(30)
    assert not state.mark_column(45)
    state.clear_transition()
    assert not state.is_column_marked(330)
    assert state.accumulated_transition == 0.0


def _second_hqp_rows(joggle_angle):
    """The two-layer coil with layer 2 wound as a new HQP."""
    rows = []
    for r in two_layer_rows():
        if r.layer == 2:
            r = replace(r, hqp=2)
        if r.feature_code == FeatureCode.JOGGLE:
            r = replace(r, angle=float(joggle_angle))
        rows.append(r)
    return rows


@pytest.mark.parametrize("joggle_angle, key, coil_angle, adjusts, in_joggle, f_feet", [
    # Column 5010 sits inside the turn 14 window
    (5000, 4916, 5010, (0, 0), True, (40.0, 676.0)),
    # The window closes before column 5010, so column 4950 seeds ahead of it
    (4960, 4876, 4950, (1, 1), False, (-13.0, 729.0)),
])
def test_post_load_seed(joggle_angle, key, coil_angle, adjusts, in_joggle, f_feet):
    positions = PositionBuilder(CoilIndex(_second_hqp_rows(joggle_angle)), coil_angle_max=9990).build()
    assert positions.new_hqp_angles() == [-140, key]
    assert positions.new_layer_angles() == []

    record = positions[key]
    assert isinstance(record.move, AllAxesAbsolute)
    assert record.coil_angle == coil_angle
    assert (record.hqp_adjust, record.layer_adjust) == adjusts
    assert record.is_in_joggle is in_joggle
    assert record.logic_trace.startswith("Post Load Positions")

    feet = record.move.foot_positions
    assert (feet[10], feet[11]) == f_feet
    assert feet[:10] == (-13.0, 729.0) * 5


@pytest.fixture
def last_layer_positions():
    """Layer 6 (the last of its HQP) wound down to turn 1, then a new HQP on layer 7."""
    rows = [row(0, FeatureCode.LOCAL_ZERO, layer=6, turn=14)]
    rows += [row((14 - t) * 360, layer=6, turn=t) for t in range(13, 0, -1)]
    rows.append(row(5000, FeatureCode.JOGGLE, hqp=2, layer=7, turn=1, radius=1053))
    rows += [row(5400 + (t - 2) * 360, hqp=2, layer=7, turn=t, radius=1053) for t in range(2, 15)]
    rows.append(row(20000, FeatureCode.WINDING_LOCK, hqp=2, layer=7, turn=14, radius=1053))
    return PositionBuilder(CoilIndex(rows), coil_angle_max=9990).build()


def test_last_layer_has_no_advancing_moves(last_layer_positions):
    for advancing_key in (-20, 4600, 4960):
        assert advancing_key not in last_layer_positions

    retreating = last_layer_positions[-70]
    assert retreating.move.axis is AxisIndex.A_FOOT_OUTER
    assert retreating.move.value == TURN_INDEX_NOMINAL
    assert retreating.is_last_layer

    # Next layer advances again
    assert last_layer_positions[5020].move.value == -TURN_INDEX_NOMINAL


def test_last_layer_joggle_rows(last_layer_positions):
    ahead = last_layer_positions[4550]
    assert ahead.move.axis is AxisIndex.F_FOOT_OUTER
    assert ahead.move.value == pytest.approx(TURN_INDEX_NOMINAL + TURN_INDEX_NOMINAL / 2)
    assert (ahead.hqp_adjust, ahead.layer_adjust) == (0, 0)

    inside = last_layer_positions[4910]
    assert isinstance(inside.move, SingleAxisAbsolute)
    assert inside.move.axis is AxisIndex.F_FOOT_OUTER
    assert inside.move.value == INITIAL_FULL_RETRACT_POS
    assert inside.is_last_turn and inside.is_last_layer
    assert (inside.hqp_adjust, inside.layer_adjust) == (-1, -1)

    seed = last_layer_positions[4916]
    assert seed.is_new_hqp
    assert (seed.move.foot_positions[10], seed.move.foot_positions[11]) == (40.0, 676.0)


def test_last_layer_keeps_joggle_shift_off_the_retreating_side(two_layer_index):
    builder = PositionBuilder(two_layer_index)
    even = builder.all_axes_record(5010, True, 729.0, -13.0, "", is_in_joggle=True, is_last_layer=True)
    assert even.move.foot_positions[10:] == (729.0, -13.0 + TURN_INDEX_NOMINAL)
    odd = builder.all_axes_record(5010, False, -13.0, 729.0, "", is_in_joggle=True, is_last_layer=True)
    assert odd.move.foot_positions[10:] == (-13.0 + TURN_INDEX_NOMINAL, 729.0)
    not_last = builder.all_axes_record(5010, True, 729.0, -13.0, "", is_in_joggle=True)
    assert not_last.move.foot_positions[10:] == (729.0 - TURN_INDEX_NOMINAL, -13.0 + TURN_INDEX_NOMINAL)


def test_failed_lookups_annotate_and_keep_the_row():
    index = CoilIndex([row(0, FeatureCode.LOCAL_ZERO), row(360, turn=2), row(750, turn=3)])
    positions = PositionBuilder(index, coil_angle_max=750).build()

    # Column 750 is the last row, which "at or before" lookups do not match
    retreating = positions[650]
    assert "Error looking up IsInTransitionLb @ angle: 750. " in retreating.logic_trace
    assert "Error looking up layer number @ angle: 750. " in retreating.logic_trace
    assert "Odd Layer(-1)" in retreating.logic_trace
    assert retreating.move.value == TURN_INDEX_NOMINAL
    assert 700 in positions


def test_joggle_without_layer_change_is_annotated():
    index = CoilIndex([row(0, FeatureCode.LOCAL_ZERO), row(1000, FeatureCode.JOGGLE, turn=14), row(9000, turn=2)])
    positions = PositionBuilder(index, coil_angle_max=1050).build()
    assert "Error looking for new layer or hqp @ angle: 990. " in positions[890].logic_trace
    assert positions.new_hqp_angles() == [-140]
    assert positions.new_layer_angles() == []


def test_off_column_angles_raise(two_layer_index):
    builder = PositionBuilder(two_layer_index)
    with pytest.raises(ColumnAzimuthError):
        builder.select_axis(45, False, FootRole.ADVANCING)
    with pytest.raises(ColumnAzimuthError):
        builder.all_axes_record(45, False, -13.0, 729.0, "")


def test_off_column_move_is_skipped(two_layer_index, caplog):
    builder = PositionBuilder(two_layer_index)
    state = BuilderState()
    with caplog.at_level(logging.ERROR, logger="axispositions.engine.builder"):
        builder._add_foot_move(state, -5, 45, False, FootRole.ADVANCING, SingleAxisRelativeToPrevious,
                               -TURN_INDEX_NOMINAL, 1, "", {})
    assert len(state.positions) == 0
    assert "Row not added" in caplog.text

    builder._add_foot_move(state, -20, 30, False, FootRole.ADVANCING, SingleAxisRelativeToPrevious,
                           -TURN_INDEX_NOMINAL, 1, "", {})
    assert state.positions.keys() == [-20]
