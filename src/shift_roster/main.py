"""
Main Entry Point for Shift Roster

Command-line front end over the data file: generate and export a
schedule, mark weekends as holidays, and check the rules configuration.
"""

import argparse
import sys
import logging
from pathlib import Path
from datetime import datetime, date
from typing import List, Optional

from .data_manager import DataManager, DataManagerError, DATE_FORMAT
from .scheduler_logic import ShiftScheduler
from .reporting import ExportManager


def setup_logging(log_dir: str = "logs", level: int = logging.INFO):
    """Setup application logging"""
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    log_file = log_path / f"shift_roster_{datetime.now().strftime('%Y%m%d')}.log"

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(log_file, encoding='utf-8'),
            logging.StreamHandler(sys.stdout)
        ]
    )

    return logging.getLogger(__name__)


def check_dependencies():
    """Check if all required dependencies are available"""
    required_modules = [
        'pandas',
        'openpyxl',
        'reportlab'
    ]

    missing_modules = []

    for module in required_modules:
        try:
            __import__(module)
        except ImportError:
            missing_modules.append(module)

    if missing_modules:
        error_msg = f"Missing required dependencies: {', '.join(missing_modules)}\n"
        error_msg += "Please install them using: pip install -e ."
        raise ImportError(error_msg)


def handle_exception(exc_type, exc_value, exc_traceback):
    """Global exception handler"""
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc_value, exc_traceback)
        return

    logger = logging.getLogger(__name__)
    logger.error(
        "Uncaught exception",
        exc_info=(exc_type, exc_value, exc_traceback)
    )


def parse_date(value: str) -> date:
    try:
        return datetime.strptime(value, DATE_FORMAT).date()
    except ValueError:
        raise argparse.ArgumentTypeError(f"'{value}' is not a YYYY-MM-DD date")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="shift-roster",
        description="Generate staff shift rosters from stored staff, shifts and scheduling rules."
    )
    parser.add_argument(
        "--data-file",
        type=Path,
        default=None,
        help="JSON data file (default: the package data/roster_data.json).",
    )
    parser.add_argument(
        "--log-dir",
        default="logs",
        help="Directory for log files (default: logs).",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log pass-level detail.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    generate = subparsers.add_parser("generate", help="Generate and store a schedule for a period.")
    generate.add_argument("--start", type=parse_date, required=True, help="First day (YYYY-MM-DD).")
    generate.add_argument("--end", type=parse_date, required=True, help="Last day (YYYY-MM-DD).")
    generate.add_argument(
        "--export",
        type=Path,
        default=None,
        help="Also export the schedule; the format follows the suffix (.xlsx, .csv, .pdf).",
    )
    generate.add_argument(
        "--no-save",
        action="store_true",
        help="Do not write the generated schedule back to the data file.",
    )

    weekends = subparsers.add_parser("mark-weekends", help="Add Saturdays and Sundays in a period to the holidays.")
    weekends.add_argument("--start", type=parse_date, required=True, help="First day (YYYY-MM-DD).")
    weekends.add_argument("--end", type=parse_date, required=True, help="Last day (YYYY-MM-DD).")

    subparsers.add_parser("validate", help="Report problems in the stored rules.")
    return parser


def _open_data_manager(data_file: Optional[Path]) -> DataManager:
    if data_file is None:
        return DataManager()
    return DataManager(str(data_file))


def run_generate(args, data_manager: DataManager) -> int:
    logger = logging.getLogger(__name__)
    scheduler = ShiftScheduler(data_manager)
    result = scheduler.generate_schedule(args.start, args.end, save=not args.no_save)

    if not result.success:
        print(f"ERROR: {result.message}", file=sys.stderr)
        return 1

    print(result.message)
    for violation in result.violations:
        logger.warning(f"Unmet requirement: {violation}")

    if args.export is not None:
        export_manager = ExportManager(data_manager)
        format_type = export_manager.format_for_path(str(args.export))
        if not export_manager.export(args.start, args.end, format_type, str(args.export), result):
            print(f"ERROR: export to {args.export} failed", file=sys.stderr)
            return 1
        print(f"Exported to {args.export}")

    return 0


def run_mark_weekends(args, data_manager: DataManager) -> int:
    rules = data_manager.load_rules()
    added = rules.mark_weekends_as_holidays(args.start, args.end)
    data_manager.save_rules(rules)
    data_manager.save_data()
    print(f"Marked {added} weekend days as holidays")
    return 0


def run_validate(args, data_manager: DataManager) -> int:
    shifts = data_manager.load_shift_definitions()
    problems = data_manager.load_rules().validate([shift.name for shift in shifts])
    for problem in problems:
        print(problem)
    if problems:
        return 1
    print("Rules are valid")
    return 0


COMMANDS = {
    "generate": run_generate,
    "mark-weekends": run_mark_weekends,
    "validate": run_validate,
}


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    parser = build_parser()
    args = parser.parse_args(argv)

    # Setup global exception handling
    sys.excepthook = handle_exception

    logger = setup_logging(args.log_dir, logging.DEBUG if args.verbose else logging.INFO)
    logger.info(f"Starting shift-roster {args.command}")

    try:
        check_dependencies()
        data_manager = _open_data_manager(args.data_file)
        return COMMANDS[args.command](args, data_manager)
    except (DataManagerError, ImportError, ValueError) as e:
        logger.error(f"{args.command} failed: {e}", exc_info=True)
        print(f"ERROR: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
