# backend/generate_timetable.py
"""
サンプル時刻表 CSV を生成するスクリプト

    python backend/generate_timetable.py                # 平日・土休日の両方
    python backend/generate_timetable.py --day-type weekday --seed 42
"""
import argparse
import logging
import random
import sys
from pathlib import Path

from config import LineConfig, get_line_config, get_settings
from data_cache import timetable_filename
from service_day import DAY_TYPES
from timetable_generator import generate_trains, report_missing_intervals, write_timetable

logger = logging.getLogger(__name__)


def line_for_day_type(line: LineConfig, day_type: str) -> LineConfig:
    """土休日はピーク時間帯なし（終日オフピークの間隔）で生成する"""
    if day_type == "holiday":
        return line.without_peaks()
    return line


def generate(line: LineConfig, output_dir: Path, day_type: str, rng: random.Random) -> Path:
    trains = generate_trains(line_for_day_type(line, day_type), rng)
    path = write_timetable(output_dir / timetable_filename(day_type), line, trains)
    logger.info("Generated timetable: %s", path)
    logger.info("Total trains: %d (header excluded)", len(trains))
    return path


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="generate-timetable",
        description="Generate a sample timetable CSV for the departure board.",
    )
    parser.add_argument("--line", default=None, help="Line id (default: DEFAULT_LINE_ID).")
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=None,
        help="Directory to write into (default: DATA_DIR).",
    )
    parser.add_argument("--day-type", choices=DAY_TYPES, help="Generate only this day type.")
    parser.add_argument("--seed", type=int, default=None, help="Random seed for a reproducible file.")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable DEBUG-level logging.")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    settings = get_settings()
    line_id = args.line or settings.default_line_id
    line = get_line_config(line_id)
    if line is None:
        logger.error("Unsupported line id: %s", line_id)
        return 1

    output_dir = args.output_dir or settings.data_dir
    rng = random.Random(args.seed)

    missing = report_missing_intervals(line)
    if missing:
        logger.warning("%d station intervals are missing for %s", missing, line.id)

    day_types = [args.day_type] if args.day_type else list(DAY_TYPES)
    for day_type in day_types:
        generate(line, output_dir, day_type, rng)
    return 0


if __name__ == "__main__":
    sys.exit(main())
