"""
Calibration State Persistence

Reads the calibration record once at startup and writes it after each
improvement cycle and each plate correction.

Writes are atomic (temp file + rename). A corrupted record is backed up
next to the state file and the engine starts from defaults. I/O failures
are logged and never raised: in-memory state stays authoritative.
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path

from .state import CalibrationState

logger = logging.getLogger(__name__)


class CalibrationStore:
    """JSON file holding one flat calibration record."""

    def __init__(self, state_file: str | Path):
        self.state_file = Path(state_file)

    def load(self) -> CalibrationState:
        """Load state from disk, falling back to defaults."""
        if not self.state_file.exists():
            logger.info("No prior calibration state found, starting from defaults")
            return CalibrationState()

        try:
            with open(self.state_file, encoding="utf-8") as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise ValueError("calibration record is not an object")
            state = CalibrationState.from_dict(data)

        except (json.JSONDecodeError, ValueError, TypeError) as e:
            logger.error(f"Failed to load calibration state: {e}")
            self._backup_corrupted()
            return CalibrationState()

        except OSError as e:
            logger.error(f"Cannot read calibration state {self.state_file}: {e}")
            return CalibrationState()

        logger.info(
            f"Loaded calibration: sessions={state.total_sessions} "
            f"frames={state.total_frames} speedScale={state.speed_scale_factor:.4f} "
            f"ema={state.ema_alpha:.3f} detFloor={state.detection_confidence_floor:.2f} "
            f"frameDelay={state.frame_delay_ms}"
        )
        return state

    def save(self, state: CalibrationState) -> bool:
        """
        Atomically write state to disk.

        Returns:
            True if the record was written
        """
        data = state.to_dict()
        data["adaptive_last_saved"] = datetime.now(timezone.utc).isoformat()

        temp_file = self.state_file.with_suffix(self.state_file.suffix + ".tmp")
        try:
            self.state_file.parent.mkdir(parents=True, exist_ok=True)
            with open(temp_file, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            temp_file.replace(self.state_file)
        except OSError as e:
            logger.error(f"Failed to persist calibration state: {e}")
            return False

        logger.debug(f"Calibration state written to {self.state_file}")
        return True

    def _backup_corrupted(self) -> None:
        backup = self.state_file.with_suffix(self.state_file.suffix + ".corrupted")
        try:
            self.state_file.replace(backup)
            logger.warning(f"Backed up corrupted calibration state to {backup}")
        except OSError as e:
            logger.error(f"Could not back up corrupted state: {e}")
