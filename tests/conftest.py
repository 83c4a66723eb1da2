from typing import List

import pytest

from axispositions.model.coil import CoilIndex, CoilRow, FeatureCode

RADIUS = 1000.0


def row(angle, fc=FeatureCode.NONE, hqp=1, layer=1, turn=1, radius=RADIUS) -> CoilRow:
    return CoilRow(angle=float(angle), feature_code=fc, hqp=hqp, layer=layer, turn=turn,
                   azimuth=float(angle % 360), radius=radius)


def two_layer_rows() -> List[CoilRow]:
    """
    One HQP, two layers, no transitions.
    Layer 1 winds turns 1..14 (one turn per 360 deg), the joggle at 5000
    starts layer 2 on turn 14, and layer 2 winds back down to turn 1.
    """
    rows = [row(0, FeatureCode.LOCAL_ZERO)]
    rows += [row((t - 1) * 360, layer=1, turn=t) for t in range(2, 15)]
    rows.append(row(5000, FeatureCode.JOGGLE, layer=2, turn=14, radius=RADIUS + 53))
    rows += [row(5400 + (13 - t) * 360, layer=2, turn=t, radius=RADIUS + 53) for t in range(13, 0, -1)]
    # Terminal row well past the last column
    rows.append(row(20000, FeatureCode.WINDING_LOCK, layer=2, turn=1, radius=RADIUS + 53))
    return rows


@pytest.fixture
def two_layer_index() -> CoilIndex:
    return CoilIndex(two_layer_rows())


@pytest.fixture
def lead_transition_index() -> CoilIndex:
    """Layer 1 with a transition starting 10 deg before column F."""
    return CoilIndex([
        row(0, FeatureCode.LOCAL_ZERO),
        row(320, FeatureCode.TRANSITION),
        row(50000, turn=2),
    ])


@pytest.fixture
def single_joggle_index() -> CoilIndex:
    """A single turn 1 joggle (16.18 deg window) at 1000 deg."""
    return CoilIndex([
        row(0, FeatureCode.LOCAL_ZERO),
        row(1000, FeatureCode.JOGGLE, layer=2, turn=1),
        row(5000, layer=2, turn=2),
    ])
