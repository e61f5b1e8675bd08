#!/usr/bin/env python3
"""
Run the recurring schedule sweep: one tick, or a polling loop until Ctrl-C.

Each tick executes every ACTIVE schedule whose next run date is on or
before today, creating its Job (and Invoice) exactly once.  Safe to run on
several hosts against the same database.

Usage:
  python3 scripts/run_sweep.py --once
  python3 scripts/run_sweep.py --config path/to/engine.yaml
  python3 scripts/run_sweep.py --database-url sqlite:///backoffice.db --create-tables --once
"""

import argparse
import signal
import sys
import threading
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Execute due recurring schedules")
    p.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Engine settings YAML (default: packaged backoffice_config/sets/engine.yaml)",
    )
    p.add_argument(
        "--database-url",
        default=None,
        help="Database URL (overrides database_url from the settings file)",
    )
    p.add_argument(
        "--once",
        action="store_true",
        help="Run a single sweep tick and exit",
    )
    p.add_argument(
        "--create-tables",
        action="store_true",
        help="Create missing tables before sweeping",
    )
    return p.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)

    from backoffice_config import load_engine_settings
    from backoffice_kernel.db.engine import (
        create_tables,
        get_session_factory,
        init_engine_from_url,
    )
    from backoffice_kernel.logging_config import configure_logging, get_logger
    from recurring_engine.bootstrap import build_sweep_scheduler

    try:
        settings = load_engine_settings(args.config, database_url=args.database_url)
    except (FileNotFoundError, ValueError) as exc:
        print(f"  ERROR: {exc}", file=sys.stderr)
        return 2

    configure_logging(level=settings.log_level)
    logger = get_logger("scripts.run_sweep")

    init_engine_from_url(settings.database_url)
    if args.create_tables:
        create_tables()

    scheduler = build_sweep_scheduler(get_session_factory(), settings)

    if args.once:
        report = scheduler.tick()
        print(
            f"  as_of={report.as_of} due={report.due} executed={report.executed} "
            f"already_executed={report.already_executed} denied={report.denied} "
            f"failed={report.failed} timed_out={report.timed_out}"
        )
        return 1 if report.failed or report.timed_out else 0

    stopped = threading.Event()

    def _handle_signal(signum, frame):
        logger.info("sweep_signal_received", extra={"signal": signum})
        stopped.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    scheduler.start()
    try:
        stopped.wait()
    finally:
        scheduler.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
