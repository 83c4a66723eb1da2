"""
Command-line entry point.

    axispositions -p        build the position table from the coil map
    axispositions -e        export event anchors from the stored positions
    axispositions -p -e     both, positions first

Input and output locations come from the AXISPOSITIONS_* environment
variables (see axispositions.config.RunSettings).
"""
import argparse
import logging
import sys
from typing import List, Optional

from axispositions.config import RunSettings
from axispositions.engine.builder import PositionBuilder
from axispositions.errors import AxisPositionsError
from axispositions.logging_config import setup_logging
from axispositions.model.coil import CoilIndex
from axispositions.model.io import CsvCoilSource, Hdf5PositionSink, IOManager

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_USAGE = 1
EXIT_FAILED = 2


class _ArgumentParser(argparse.ArgumentParser):
    def error(self, message: str):
        self.print_usage(sys.stderr)
        self.exit(EXIT_USAGE, f"{self.prog}: error: {message}\n")


def build_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(
        prog="axispositions",
        description="Generate winding machine axis positions from a coil map.",
    )
    parser.add_argument("-p", "--positions", action="store_true",
                        help="calculate the axis positions and replace the stored position table")
    parser.add_argument("-e", "--events", action="store_true",
                        help="export the new HQP/new layer event anchors from the stored positions")
    return parser


def run_positions(settings: RunSettings) -> bool:
    """Loads the coil map, builds the positions and stores them. Returns True if every row was written."""
    index = CoilIndex.load(CsvCoilSource(settings.coil_map_path))
    positions = PositionBuilder(index, coil_angle_max=settings.coil_angle_max).build()

    sink = Hdf5PositionSink(settings.output_path)
    sink.clear_existing()
    report = sink.write_all(positions)
    if not report.ok:
        logger.error(f"{len(report.failures)} position rows were rejected: {report.failed_angles}")
    return report.ok


def run_events(settings: RunSettings) -> bool:
    positions = IOManager.load_positions(settings.output_path)
    anchors = positions.event_anchors()
    IOManager.save_event_anchors(settings.output_path, anchors)
    logger.info(f"Event anchors: {len(anchors.new_hqp_angles)} new HQP, {len(anchors.new_layer_angles)} new layer.")
    return True


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args_list = sys.argv[1:] if argv is None else argv
    if not args_list:
        parser.print_help(sys.stderr)
        return EXIT_USAGE

    args = parser.parse_args(args_list)
    if not (args.positions or args.events):
        parser.print_usage(sys.stderr)
        return EXIT_USAGE

    try:
        settings = RunSettings.from_env()
    except ValueError as e:
        print(f"axispositions: error: {e}", file=sys.stderr)
        return EXIT_USAGE

    setup_logging(level=settings.log_level, log_file=settings.log_file)

    ok = True
    try:
        if args.positions:
            ok = run_positions(settings) and ok
        if args.events:
            ok = run_events(settings) and ok
    except AxisPositionsError as e:
        logger.error(f"Run failed: {e}")
        return EXIT_FAILED

    return EXIT_OK if ok else EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
