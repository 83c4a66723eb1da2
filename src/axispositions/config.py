"""
Configuration & Machine Constants
=================================
This module serves as the central registry for the winding machine constants
and the run settings of the command-line tool.

Why is this file needed?
------------------------
1. Single source: Foot positions, angular offsets and joggle/transition
   geometry are shared by the coil index, the geometry helpers and the
   position builder. Keeping them here prevents magic numbers scattered
   throughout the engine.
2. Deployment: Input and output locations are read from the environment, so
   the same installed package can be pointed at different coil maps without
   touching the code.

Exports:
    RunSettings: Paths and options for a command-line run.
    COLUMN_AZIMUTHS (tuple): Azimuths of the six machine columns (A..F).
"""
import logging
import os
from dataclasses import dataclass
from typing import Optional

# --- Lookup sentinels ---
NO_FEATURE: int = -1
NO_FEATURE_STR: str = "none"

# --- Axis position sentinels ---
INITIAL_NO_POSITION: float = -20000.0
POSITION_NOT_CALCULATED: float = -10000.0

# --- Machine layout ---
COLUMN_COUNT: int = 6
AXIS_COUNT: int = 12  # feet (or columns) per machine: one inner and one outer per column
COLUMN_AZIMUTHS: tuple[int, ...] = (30, 90, 150, 210, 270, 330)
A_AZIMUTH, B_AZIMUTH, C_AZIMUTH, D_AZIMUTH, E_AZIMUTH, F_AZIMUTH = COLUMN_AZIMUTHS

# Truncated value used on the machine. Changing it shifts transition results.
PI: float = 3.14159
DEG_TO_RADIANS: float = PI / 180.0
RADIANS_TO_DEG: float = 180.0 / PI

# --- Coil walk ---
TURNS_PER_LAYER: int = 14
LAYERS_PER_COIL: int = 40
COIL_ANGLE_MAX: int = LAYERS_PER_COIL * TURNS_PER_LAYER * 360 - 360 * 6
COLUMN_INCREMENT: int = 60
INITIAL_COLUMN_ANGLE: int = A_AZIMUTH

# Foot travel for one nominal turn (mm)
TURN_INDEX_NOMINAL: float = 53.0

# --- Foot positions (mm) ---
INITIAL_FULL_RETRACT_POS: float = 735.0
INITIAL_FULL_EXTEND_POS: float = -13.0
RETREATING_FOOT_START_POS: float = -13.0
ADVANCING_FOOT_START_POS: float = 729.0

# --- RIA offsets (deg) ---
NEW_LAYER_OFFSET: float = 5.0
ADV_FOOT_RIA_OFFSET_ANGLE: float = 50.0
RET_FOOT_RIA_OFFSET_ANGLE: float = 100.0
SOC_POST_LOAD_RIA_ANGLE: float = -140.0
SOC_INITIAL_RETRACT_RIA_ANGLE: float = -130.0
SOC_INITIAL_ADVANCE_RIA_ANGLE: float = -80.0

# --- Joggle geometry ---
JOGGLE_LENGTH_MIN: float = 16.18  # even to odd layer joggle, on turn 1
JOGGLE_LENGTH_MAX: float = 28.12  # odd to even layer joggle, on turn 14
JOGGLE_ADJUSTMENT: float = TURN_INDEX_NOMINAL / 2.0
JOGGLE_THRESHOLD_LOOKAHEAD: float = 360.0
JOGGLE_THRESHOLD_CURRENT: float = 0.0
JOGGLE_THRESHOLD_LOOKBACK: float = -360.0

# --- Transition geometry ---
TRANS_STRAIGHT_LENGTH: float = 220.25
TRANS_ARC_DEG: float = 27.06

# --- Layer sets ---
LAST_HQP_LAYERS: frozenset[int] = frozenset({6, 12, 18, 22, 28, 34})
MEASUREMENT_COMPRESSION_LAYERS: frozenset[int] = frozenset(
    {4, 7, 10, 13, 16, 19, 21, 23, 26, 29, 32, 35, 38, 41}
)

# Token opening the move summary inside a logic trace
MOVE_SUMMARY_TOKEN: str = "*MS:"

# --- Environment ---
ENV_COIL_MAP: str = "AXISPOSITIONS_COIL_MAP"
ENV_OUTPUT: str = "AXISPOSITIONS_OUTPUT"
ENV_COIL_ANGLE_MAX: str = "AXISPOSITIONS_COIL_ANGLE_MAX"
ENV_LOG_LEVEL: str = "AXISPOSITIONS_LOG_LEVEL"
ENV_LOG_FILE: str = "AXISPOSITIONS_LOG_FILE"

DEFAULT_COIL_MAP_PATH: str = "coil_map.csv"
DEFAULT_OUTPUT_PATH: str = "positions.h5"


@dataclass(frozen=True)
class RunSettings:
    """Locations and options for one command-line run."""
    coil_map_path: str = DEFAULT_COIL_MAP_PATH
    output_path: str = DEFAULT_OUTPUT_PATH
    coil_angle_max: int = COIL_ANGLE_MAX
    log_level: int = logging.INFO
    log_file: Optional[str] = None

    @classmethod
    def from_env(cls) -> "RunSettings":
        """
        Builds the settings from AXISPOSITIONS_* environment variables.
        Unset variables fall back to the defaults.

        Raises:
            ValueError: If the coil angle limit or log level cannot be parsed.
        """
        level_name = os.environ.get(ENV_LOG_LEVEL, "INFO").upper()
        level = logging.getLevelName(level_name)
        if not isinstance(level, int):
            raise ValueError(f"Unknown log level '{level_name}'.")

        return cls(
            coil_map_path=os.environ.get(ENV_COIL_MAP, DEFAULT_COIL_MAP_PATH),
            output_path=os.environ.get(ENV_OUTPUT, DEFAULT_OUTPUT_PATH),
            coil_angle_max=int(os.environ.get(ENV_COIL_ANGLE_MAX, COIL_ANGLE_MAX)),
            log_level=level,
            log_file=os.environ.get(ENV_LOG_FILE) or None,
        )
