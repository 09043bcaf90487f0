"""
Speed Tracking CLI
Replays recorded detection sessions and manages learned calibration.

Commands:
  RECORDING             Replay a JSON-lines recording through a session
  --show-calibration    Print learned parameters
  --reset-calibration   Restore factory defaults
"""

import argparse
import logging
import signal
import sys
from pathlib import Path
from threading import Event

from .calibration import CalibrationEngine, CalibrationStore
from .config import Config, ConfigValidationError, load_config
from .replay import ReplaySource
from .session import FrameResult, SessionStats, TrackingSession

logger = logging.getLogger(__name__)

# Module-level shutdown signal for SIGTERM/SIGINT handling
_shutdown_signal = Event()


def _handle_shutdown_signal(signum, _frame):
    """Handle SIGTERM/SIGINT so the session can flush its calibration."""
    signal_name = "SIGTERM" if signum == signal.SIGTERM else "SIGINT"
    # Note: print is safer than logger in signal handlers
    print(f"\nReceived {signal_name}, stopping session...")
    _shutdown_signal.set()


def _setup_signal_handlers():
    signal.signal(signal.SIGTERM, _handle_shutdown_signal)
    signal.signal(signal.SIGINT, _handle_shutdown_signal)


def setup_logging(quiet: bool = False, level: str = "INFO") -> None:
    """
    Setup logging configuration.

    Args:
        quiet: If True, only show warnings and errors
        level: Level name used when not quiet
    """

    # Custom formatter with shorter module names
    class ShortNameFormatter(logging.Formatter):
        def format(self, record):
            record.name = record.name.replace("speed_tracking.", "st.")
            return super().format(record)

    handler = logging.StreamHandler()
    handler.setFormatter(
        ShortNameFormatter(
            fmt="%(asctime)s %(name)s %(levelname)s %(message)s", datefmt="%H:%M:%S"
        )
    )
    logging.root.addHandler(handler)
    logging.root.setLevel(logging.WARNING if quiet else getattr(logging, level))


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Speed Tracking - vision speed estimation with adaptive calibration",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m speed_tracking drive.jsonl                 # Replay a recording
  python -m speed_tracking drive.jsonl --lock-primary  # Measure the primary object
  python -m speed_tracking --show-calibration          # Print learned parameters
  python -m speed_tracking --reset-calibration         # Restore defaults

Environment Variables:
  SPEED_TRACKING_STATE_FILE - Override calibration state file from config
        """,
    )

    parser.add_argument("recording", nargs="?", help="JSON-lines recording to replay")
    parser.add_argument(
        "-q", "--quiet", action="store_true", help="Only show warnings and errors"
    )
    parser.add_argument(
        "-c", "--config", default=None, help="Path to config file (default: search)"
    )
    parser.add_argument(
        "--lock-primary",
        action="store_true",
        help="Lock the primary object as soon as it is tracked",
    )
    parser.add_argument(
        "--realtime",
        action="store_true",
        help="Pace replay by the learned frame delay",
    )
    parser.add_argument(
        "--show-calibration", action="store_true", help="Print learned parameters"
    )
    parser.add_argument(
        "--reset-calibration",
        action="store_true",
        help="Reset learned parameters to defaults",
    )

    return parser.parse_args(argv)


def build_engine(config: Config) -> CalibrationEngine:
    """Create the calibration engine described by config."""
    store = None
    if config.calibration.persist:
        store = CalibrationStore(config.calibration.state_file)
    return CalibrationEngine(store)


def print_calibration(engine: CalibrationEngine) -> None:
    """Print learned parameters."""
    print("\n" + "=" * 70)
    print("LEARNED CALIBRATION")
    print("=" * 70)
    for name, value in engine.learned_parameters().items():
        print(f"  {name:<22} {value}")
    print("=" * 70 + "\n")


def print_frame(result: FrameResult) -> None:
    """Print one line per frame for the reading subject."""
    speed = result.subject_speed
    if speed is None:
        print(f"frame {result.frame_number:>5}  no subject")
        return
    subject = result.subject
    lock = "*" if subject.is_locked else " "
    print(
        f"frame {result.frame_number:>5} {lock}{subject.tracking_id}  "
        f"{speed.target_speed_kmh:6.1f} km/h  rel {speed.relative_speed_kmh:+6.1f}  "
        f"{speed.direction.value:<11} conf {speed.confidence:.2f}"
    )


def print_summary(stats: SessionStats, engine: CalibrationEngine) -> None:
    """Print final session summary."""
    print(f"\n{'=' * 70}")
    print("SESSION COMPLETE")
    print("=" * 70)
    print(f"  Frames:    {stats.frames}")
    print(f"  Readings:  {stats.readings}")
    print(f"  Avg speed: {stats.avg_speed_kmh:.1f} km/h")
    print(f"  Max speed: {stats.max_speed_kmh:.1f} km/h")
    print(f"  Sessions learned from: {engine.total_sessions}")
    print(f"{'=' * 70}\n")


def run_replay(config: Config, recording: str, lock_primary: bool, realtime: bool) -> int:
    """Replay a recording through a tracking session."""
    if not Path(recording).is_file():
        logger.error(f"Recording not found: {recording}")
        return 1

    engine = build_engine(config)
    session = TrackingSession(
        calibration=engine, improve_interval=config.session.improve_interval_frames
    )
    source = ReplaySource(recording)

    lock_primary = lock_primary or config.tracking.lock_primary

    def on_frame(result: FrameResult) -> None:
        if lock_primary and not session.tracker.has_locked_target and result.tracks:
            session.lock_target()

        frame = source.current
        if frame is not None and frame.plate_text is not None:
            winner = session.submit_plate(frame.plate_text)
            if winner is not None and frame.plate_correct is not None:
                session.confirm_plate(frame.plate_correct)

        print_frame(result)

    _setup_signal_handlers()
    try:
        stats = session.run(
            source,
            source.ground_speed,
            shutdown_event=_shutdown_signal,
            detection_timeout=config.session.detection_timeout_seconds,
            pace=realtime or config.session.realtime,
            on_frame=on_frame,
        )
    finally:
        source.close()
    print_summary(stats, engine)
    return 0


def main(argv: list[str] | None = None) -> None:
    """Main orchestrator function."""
    args = parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigValidationError as e:
        setup_logging(quiet=args.quiet)
        logger.error(str(e))
        sys.exit(1)

    setup_logging(quiet=args.quiet, level=config.logging.level)

    if args.reset_calibration:
        engine = build_engine(config)
        engine.reset_to_defaults()
        print("Calibration reset to defaults")
        print_calibration(engine)
        return

    if args.show_calibration:
        print_calibration(build_engine(config))
        return

    if not args.recording:
        logger.error("No recording given (see --help)")
        sys.exit(1)

    sys.exit(run_replay(config, args.recording, args.lock_primary, args.realtime))


if __name__ == "__main__":
    main()
