"""
Input/Output (CSV coil maps, HDF5 position tables)
Reads coil maps and persists the generated position map.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
import csv
from dataclasses import dataclass, field
import logging
import math
import os
from importlib.metadata import version, PackageNotFoundError
from typing import Any, Dict, Iterable, List, Optional, Tuple

import h5py
import numpy as np

from axispositions.config import AXIS_COUNT
from axispositions.errors import LoadError, WriteError
from axispositions.model.coil import CoilRow, FeatureCode
from axispositions.model.records import (
    MOVE_TYPES,
    AxisIndex,
    EventAnchors,
    PositionMap,
    PositionRecord,
    SingleAxisMove,
)

# Get module logger
logger = logging.getLogger(__name__)

try:
    APP_VERSION = version("axispositions")
except PackageNotFoundError:
    APP_VERSION = "0.0.0-dev"

POSITIONS_GROUP = "positions"
EVENT_ANCHORS_GROUP = "event_anchors"

CSV_COLUMNS = ("coilAngle", "featureCode", "hqp", "layer", "turn", "azimuth", "radius")

_FLAG_FIELDS = ("is_in_transition", "is_in_joggle", "is_new_hqp", "is_new_layer", "is_last_turn", "is_last_layer")


# --- Coil sources ---

class CoilSource(ABC):
    """Where coil map rows come from."""

    @abstractmethod
    def load_rows(self) -> List[CoilRow]:
        """
        Returns every coil map row.

        Raises:
            LoadError: If the rows cannot be read.
        """


class InMemoryCoilSource(CoilSource):
    def __init__(self, rows: Iterable[CoilRow]):
        self._rows = list(rows)

    def load_rows(self) -> List[CoilRow]:
        return list(self._rows)


class CsvCoilSource(CoilSource):
    """
    Coil map exported as CSV with a header row. ';' and ',' delimiters are
    both accepted; an 'overallTurn' column, if present, is ignored.
    """

    def __init__(self, filepath: str):
        self.filepath = filepath

    def load_rows(self) -> List[CoilRow]:
        logger.info(f"Reading coil map from: {self.filepath}")
        try:
            with open(self.filepath, mode='r', encoding='utf-8-sig', newline='') as f:
                line = f.readline()
                delimiter = ';' if ';' in line else ','
                f.seek(0)
                reader = csv.DictReader(f, delimiter=delimiter)

                missing = [c for c in CSV_COLUMNS if c not in (reader.fieldnames or [])]
                if missing:
                    raise LoadError(f"Coil map '{self.filepath}' is missing columns: {', '.join(missing)}")

                rows = [self._parse(rec, reader.line_num) for rec in reader if any(rec.values())]
        except LoadError as e:
            logger.error(f"Coil map import failed: {e}")
            raise
        except OSError as e:
            logger.error(f"Coil map import failed: {e}")
            raise LoadError(f"Failed to read coil map '{self.filepath}': {e}") from e

        logger.debug(f"Read {len(rows)} coil rows.")
        return rows

    def _parse(self, rec: Dict[str, str], line_num: int) -> CoilRow:
        try:
            return CoilRow(
                angle=float(rec["coilAngle"]),
                feature_code=FeatureCode.from_code(rec["featureCode"]),
                hqp=int(rec["hqp"]),
                layer=int(rec["layer"]),
                turn=int(rec["turn"]),
                azimuth=float(rec["azimuth"]),
                radius=float(rec["radius"]),
            )
        except (TypeError, ValueError) as e:
            raise LoadError(f"Malformed coil row at line {line_num} of '{self.filepath}': {e}") from e


# --- Position sinks ---

@dataclass
class WriteReport:
    attempted: int = 0
    written: int = 0
    failures: List[WriteError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def failed_angles(self) -> List[Optional[int]]:
        return [e.ria_angle for e in self.failures]


class PositionSink(ABC):
    """
    Where the position map goes. Subclasses write single rows and commit;
    the row loop and its failure policy live here.
    """

    @abstractmethod
    def clear_existing(self) -> None:
        """Removes every previously stored position row."""

    def write_all(self, positions: Iterable[Tuple[int, PositionRecord]] | PositionMap) -> WriteReport:
        """
        Writes rows in key order. A row that fails is recorded and skipped;
        the remaining rows are still written.

        Raises:
            WriteError: If the batch as a whole cannot be committed.
        """
        items = positions.items() if isinstance(positions, PositionMap) else sorted(positions, key=lambda kv: kv[0])
        report = WriteReport()

        self._begin()
        for ria_angle, record in items:
            report.attempted += 1
            try:
                self._write_row(ria_angle, record)
                report.written += 1
            except WriteError as e:
                if e.ria_angle is None:
                    e.ria_angle = ria_angle
                logger.warning(f"Row at RIA angle {ria_angle} not written: {e}")
                report.failures.append(e)
        self._commit()

        logger.info(f"Wrote {report.written} of {report.attempted} position rows ({len(report.failures)} failed).")
        return report

    def _begin(self) -> None:
        pass

    @abstractmethod
    def _write_row(self, ria_angle: int, record: PositionRecord) -> None:
        pass

    def _commit(self) -> None:
        pass


class InMemoryPositionSink(PositionSink):
    def __init__(self):
        self.rows: Dict[int, PositionRecord] = {}

    def clear_existing(self) -> None:
        self.rows.clear()

    def _write_row(self, ria_angle: int, record: PositionRecord) -> None:
        self.rows[ria_angle] = record

    def sorted_rows(self) -> List[Tuple[int, PositionRecord]]:
        return sorted(self.rows.items(), key=lambda kv: kv[0])


def _validate_row(ria_angle: int, record: PositionRecord) -> None:
    values = list(record.move.foot_positions) + list(record.move.column_positions)
    if isinstance(record.move, SingleAxisMove):
        values.append(record.move.value)
    if not all(math.isfinite(v) for v in values):
        raise WriteError(f"Non-finite axis value in row at RIA angle {ria_angle}.", ria_angle)
    if record.hqp_adjust not in (-1, 0, 1) or record.layer_adjust not in (-1, 0, 1):
        raise WriteError(
            f"Adjustment out of range (hqp {record.hqp_adjust}, layer {record.layer_adjust}) "
            f"at RIA angle {ria_angle}.", ria_angle
        )


class Hdf5PositionSink(PositionSink):
    """
    Stores the position table in the '/positions' group of an HDF5 file,
    one column-oriented dataset per field. Other groups in the file are kept.
    """

    def __init__(self, filepath: str):
        self.filepath = filepath
        self._buffer: Dict[int, PositionRecord] = {}

    def clear_existing(self) -> None:
        if not os.path.exists(self.filepath):
            return
        logger.info(f"Clearing stored positions in: {self.filepath}")
        try:
            with h5py.File(self.filepath, "a") as f:
                if POSITIONS_GROUP in f:
                    del f[POSITIONS_GROUP]
        except OSError as e:
            logger.exception(f"Failed to clear positions: {e}")
            raise WriteError(f"Failed to clear positions in '{self.filepath}': {e}") from e

    def _begin(self) -> None:
        self._buffer = {}
        if not (os.path.exists(self.filepath) and h5py.is_hdf5(self.filepath)):
            return
        try:
            with h5py.File(self.filepath, "r") as f:
                if POSITIONS_GROUP in f:
                    self._buffer = dict(IOManager.read_positions_group(f[POSITIONS_GROUP]).items())
        except (OSError, KeyError, ValueError) as e:
            logger.exception(f"Failed to read stored positions: {e}")
            raise WriteError(f"Failed to merge with stored positions in '{self.filepath}': {e}") from e

    def _write_row(self, ria_angle: int, record: PositionRecord) -> None:
        _validate_row(ria_angle, record)
        self._buffer[ria_angle] = record

    def _commit(self) -> None:
        logger.info(f"Saving {len(self._buffer)} position rows to: {self.filepath}")
        try:
            with h5py.File(self.filepath, "a") as f:
                f.attrs["version"] = APP_VERSION
                if POSITIONS_GROUP in f:
                    del f[POSITIONS_GROUP]
                IOManager.write_positions_group(f.create_group(POSITIONS_GROUP), self._buffer)
        except OSError as e:
            logger.exception(f"Failed to save positions: {e}")
            raise WriteError(f"Failed to save positions to '{self.filepath}': {e}") from e
        finally:
            self._buffer = {}


class IOManager:
    """HDF5 layout of the position table and the event anchors."""

    @staticmethod
    def write_positions_group(grp: h5py.Group, rows: Dict[int, PositionRecord]) -> None:
        keys = sorted(rows)
        records = [rows[k] for k in keys]
        n = len(records)
        str_dt = h5py.string_dtype(encoding="utf-8")

        grp.attrs["count"] = n
        grp.create_dataset("ria_angle", data=np.array(keys, dtype=np.int64))
        grp.create_dataset("coil_angle", data=np.array([r.coil_angle for r in records], dtype=np.float64))
        grp.create_dataset("move_type", data=np.array([type(r.move).__name__ for r in records], dtype=object),
                           dtype=str_dt)
        grp.create_dataset("is_absolute", data=np.array([r.is_absolute for r in records], dtype=bool))

        selected_axis = np.zeros(n, dtype=np.int16)
        selected_value = np.zeros(n, dtype=np.float64)
        for i, r in enumerate(records):
            detail = r.move.selected_axis_detail
            if detail is not None:
                selected_value[i], axis, _ = detail
                selected_axis[i] = int(axis)
        grp.create_dataset("selected_axis", data=selected_axis)
        grp.create_dataset("selected_value", data=selected_value)

        feet = np.array([r.move.foot_positions for r in records], dtype=np.float64).reshape(n, AXIS_COUNT)
        columns = np.array([r.move.column_positions for r in records], dtype=np.float64).reshape(n, AXIS_COUNT)
        grp.create_dataset("foot_positions", data=feet)
        grp.create_dataset("column_positions", data=columns)

        for name in _FLAG_FIELDS:
            grp.create_dataset(name, data=np.array([getattr(r, name) for r in records], dtype=bool))
        grp.create_dataset("hqp_adjust", data=np.array([r.hqp_adjust for r in records], dtype=np.int8))
        grp.create_dataset("layer_adjust", data=np.array([r.layer_adjust for r in records], dtype=np.int8))

        grp.create_dataset("logic_trace", data=np.array([r.logic_trace for r in records], dtype=object), dtype=str_dt)
        grp.create_dataset("action_description",
                           data=np.array([r.action_description for r in records], dtype=object), dtype=str_dt)

    @staticmethod
    def read_positions_group(grp: h5py.Group) -> PositionMap:
        positions = PositionMap()
        keys = grp["ria_angle"][()]
        move_types = grp["move_type"].asstr()[()]
        traces = grp["logic_trace"].asstr()[()]
        coil_angles = grp["coil_angle"][()]
        selected_axis = grp["selected_axis"][()]
        selected_value = grp["selected_value"][()]
        feet = grp["foot_positions"][()]
        columns = grp["column_positions"][()]
        flags = {name: grp[name][()] for name in _FLAG_FIELDS}
        hqp_adjust = grp["hqp_adjust"][()]
        layer_adjust = grp["layer_adjust"][()]

        for i, key in enumerate(keys):
            move_cls: Any = MOVE_TYPES[str(move_types[i])]
            if issubclass(move_cls, SingleAxisMove):
                move = move_cls(axis=AxisIndex(int(selected_axis[i])), value=float(selected_value[i]))
            else:
                move = move_cls(foot_positions=tuple(float(v) for v in feet[i]),
                                column_positions=tuple(float(v) for v in columns[i]))
            record = PositionRecord(
                move=move,
                coil_angle=float(coil_angles[i]),
                logic_trace=str(traces[i]),
                hqp_adjust=int(hqp_adjust[i]),
                layer_adjust=int(layer_adjust[i]),
                **{name: bool(flags[name][i]) for name in _FLAG_FIELDS},
            )
            positions.insert(int(key), record)
        return positions

    @staticmethod
    def load_positions(filepath: str) -> PositionMap:
        logger.info(f"Loading positions from: {filepath}")
        if not os.path.exists(filepath) or not h5py.is_hdf5(filepath):
            msg = f"File '{filepath}' is not a valid HDF5 file."
            logger.error(msg)
            raise LoadError(msg)

        try:
            with h5py.File(filepath, "r") as f:
                if POSITIONS_GROUP not in f:
                    raise LoadError(f"No stored positions in '{filepath}'.")
                positions = IOManager.read_positions_group(f[POSITIONS_GROUP])
        except LoadError as e:
            logger.error(str(e))
            raise
        except (OSError, KeyError, ValueError) as e:
            logger.exception(f"Failed to load positions: {e}")
            raise LoadError(f"Failed to load positions from '{filepath}': {e}") from e

        logger.info(f"Loaded {len(positions)} position rows.")
        return positions

    @staticmethod
    def save_event_anchors(filepath: str, anchors: EventAnchors) -> None:
        logger.info(f"Saving event anchors to: {filepath}")
        try:
            with h5py.File(filepath, "a") as f:
                if EVENT_ANCHORS_GROUP in f:
                    del f[EVENT_ANCHORS_GROUP]
                grp = f.create_group(EVENT_ANCHORS_GROUP)
                grp.attrs["version"] = APP_VERSION
                grp.create_dataset("new_hqp_angles", data=np.array(anchors.new_hqp_angles, dtype=np.int64))
                grp.create_dataset("new_layer_angles", data=np.array(anchors.new_layer_angles, dtype=np.int64))
        except OSError as e:
            logger.exception(f"Failed to save event anchors: {e}")
            raise WriteError(f"Failed to save event anchors to '{filepath}': {e}") from e

    @staticmethod
    def load_event_anchors(filepath: str) -> EventAnchors:
        try:
            with h5py.File(filepath, "r") as f:
                grp = f[EVENT_ANCHORS_GROUP]
                return EventAnchors(
                    new_hqp_angles=tuple(int(a) for a in grp["new_hqp_angles"][()]),
                    new_layer_angles=tuple(int(a) for a in grp["new_layer_angles"][()]),
                )
        except (OSError, KeyError) as e:
            logger.exception(f"Failed to load event anchors: {e}")
            raise LoadError(f"Failed to load event anchors from '{filepath}': {e}") from e
