"""
Tests for configuration loading and validation.
"""

import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from pydantic import ValidationError

from speed_tracking.config import (
    ConfigValidationError,
    apply_env_overrides,
    load_config,
    validate_config_pydantic,
)
from speed_tracking.utils.constants import DEFAULT_STATE_FILE, ENV_STATE_FILE


class TestConfigValidation(unittest.TestCase):
    """Test pydantic schema validation."""

    def test_empty_config_uses_defaults(self):
        config = validate_config_pydantic({})

        self.assertEqual(config.calibration.state_file, DEFAULT_STATE_FILE)
        self.assertTrue(config.calibration.persist)
        self.assertEqual(config.session.improve_interval_frames, 200)
        self.assertEqual(config.session.detection_timeout_seconds, 2.0)
        self.assertFalse(config.session.realtime)
        self.assertFalse(config.tracking.lock_primary)
        self.assertEqual(config.logging.level, "INFO")

    def test_unknown_section_rejected(self):
        with self.assertRaises(ValidationError):
            validate_config_pydantic({"camera": {"url": "http://test"}})

    def test_unknown_field_rejected(self):
        with self.assertRaises(ValidationError):
            validate_config_pydantic({"session": {"fps": 30}})

    def test_state_file_must_be_json(self):
        with self.assertRaises(ValidationError):
            validate_config_pydantic({"calibration": {"state_file": "state.yaml"}})

    def test_improve_interval_must_be_positive(self):
        with self.assertRaises(ValidationError):
            validate_config_pydantic({"session": {"improve_interval_frames": 0}})

    def test_invalid_log_level(self):
        with self.assertRaises(ValidationError):
            validate_config_pydantic({"logging": {"level": "CHATTY"}})


class TestEnvOverrides(unittest.TestCase):

    def test_state_file_override(self):
        with mock.patch.dict(os.environ, {ENV_STATE_FILE: "/tmp/other.json"}):
            config = apply_env_overrides({})
        self.assertEqual(config["calibration"]["state_file"], "/tmp/other.json")

    def test_no_override(self):
        with mock.patch.dict(os.environ, {}, clear=True):
            self.assertEqual(apply_env_overrides({"session": {}}), {"session": {}})


class TestLoadConfig(unittest.TestCase):
    """Test YAML config loading."""

    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.config_path = Path(self.temp_dir.name) / "speed_tracking.yaml"

    def tearDown(self):
        self.temp_dir.cleanup()

    def test_load_yaml(self):
        self.config_path.write_text(
            "calibration:\n"
            "  state_file: state/cal.json\n"
            "session:\n"
            "  improve_interval_frames: 50\n"
            "tracking:\n"
            "  lock_primary: true\n"
        )

        with mock.patch.dict(os.environ, {}, clear=True):
            config = load_config(str(self.config_path))

        self.assertEqual(config.calibration.state_file, "state/cal.json")
        self.assertEqual(config.session.improve_interval_frames, 50)
        self.assertTrue(config.tracking.lock_primary)

    def test_empty_file_gives_defaults(self):
        self.config_path.write_text("")
        with mock.patch.dict(os.environ, {}, clear=True):
            config = load_config(str(self.config_path))
        self.assertEqual(config.calibration.state_file, DEFAULT_STATE_FILE)

    def test_env_beats_file(self):
        self.config_path.write_text("calibration:\n  state_file: state/cal.json\n")
        with mock.patch.dict(os.environ, {ENV_STATE_FILE: "env.json"}):
            config = load_config(str(self.config_path))
        self.assertEqual(config.calibration.state_file, "env.json")

    def test_missing_explicit_file(self):
        with self.assertRaises(ConfigValidationError):
            load_config(str(self.config_path))

    def test_invalid_yaml(self):
        self.config_path.write_text("session: [unclosed\n")
        with self.assertRaises(ConfigValidationError):
            load_config(str(self.config_path))

    def test_non_mapping(self):
        self.config_path.write_text("- just\n- a list\n")
        with self.assertRaises(ConfigValidationError):
            load_config(str(self.config_path))

    def test_schema_error_wrapped(self):
        self.config_path.write_text("session:\n  detection_timeout_seconds: -1\n")
        with mock.patch.dict(os.environ, {}, clear=True):
            with self.assertRaises(ConfigValidationError):
                load_config(str(self.config_path))


if __name__ == "__main__":
    unittest.main()
