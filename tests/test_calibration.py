"""
Tests for adaptive calibration and state persistence.
"""

import json
import tempfile
import unittest
from pathlib import Path

from speed_tracking.calibration import CalibrationEngine, CalibrationState, CalibrationStore


class TestCalibrationState(unittest.TestCase):
    """Test CalibrationState serialization."""

    def test_to_dict_uses_prefixed_keys(self):
        data = CalibrationState().to_dict()

        self.assertEqual(data["adaptive_speed_scale_factor"], 0.035)
        self.assertEqual(data["adaptive_frame_delay_ms"], 300)
        self.assertTrue(all(key.startswith("adaptive_") for key in data))

    def test_from_dict_defaults_missing_keys(self):
        state = CalibrationState.from_dict({"adaptive_total_sessions": 4})

        self.assertEqual(state.total_sessions, 4)
        self.assertEqual(state.ema_alpha, 0.15)
        self.assertEqual(state.plate_vote_threshold, 2)

    def test_from_dict_clamps_tunables(self):
        state = CalibrationState.from_dict(
            {
                "adaptive_ema_alpha": 5,
                "adaptive_frame_delay_ms": 50,
                "adaptive_plate_vote_threshold": 9.0,
            }
        )

        self.assertEqual(state.ema_alpha, 0.30)
        self.assertEqual(state.frame_delay_ms, 200)
        self.assertIsInstance(state.frame_delay_ms, int)
        self.assertEqual(state.plate_vote_threshold, 4)

    def test_from_dict_rejects_garbage(self):
        with self.assertRaises(ValueError):
            CalibrationState.from_dict({"adaptive_ema_alpha": "fast"})


class TestCalibrationStore(unittest.TestCase):
    """Test CalibrationStore load/save."""

    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.state_file = Path(self.temp_dir.name) / "calibration.json"
        self.store = CalibrationStore(self.state_file)

    def tearDown(self):
        self.temp_dir.cleanup()

    def test_missing_file_gives_defaults(self):
        self.assertEqual(self.store.load(), CalibrationState())

    def test_save_and_load(self):
        state = CalibrationState(speed_scale_factor=0.041, total_sessions=3)

        self.assertTrue(self.store.save(state))
        self.assertFalse(self.state_file.with_suffix(".json.tmp").exists())

        with open(self.state_file) as f:
            self.assertIn("adaptive_last_saved", json.load(f))

        loaded = self.store.load()
        self.assertEqual(loaded.speed_scale_factor, 0.041)
        self.assertEqual(loaded.total_sessions, 3)

    def test_corrupted_file_backed_up(self):
        """Test corrupted state is moved aside and defaults are used."""
        self.state_file.write_text("{not json")

        state = self.store.load()

        self.assertEqual(state, CalibrationState())
        self.assertTrue(self.state_file.with_suffix(".json.corrupted").exists())
        self.assertFalse(self.state_file.exists())

    def test_save_failure_returns_false(self):
        blocker = Path(self.temp_dir.name) / "blocker"
        blocker.write_text("")
        store = CalibrationStore(blocker / "calibration.json")

        self.assertFalse(store.save(CalibrationState()))


class TestCalibrationEngine(unittest.TestCase):
    """Test CalibrationEngine learning rules."""

    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.state_file = Path(self.temp_dir.name) / "calibration.json"
        self.engine = CalibrationEngine(CalibrationStore(self.state_file))

    def tearDown(self):
        self.temp_dir.cleanup()

    def test_defaults(self):
        self.assertEqual(self.engine.speed_scale_factor, 0.035)
        self.assertEqual(self.engine.area_scale_factor, 0.8)
        self.assertEqual(self.engine.ema_alpha, 0.15)
        self.assertEqual(self.engine.detection_confidence_floor, 0.30)
        self.assertEqual(self.engine.frame_delay_ms, 300)
        self.assertEqual(self.engine.plate_vote_threshold, 2)
        self.assertEqual(self.engine.ocr_crop_pad_x, 0.05)
        self.assertEqual(self.engine.ocr_crop_pad_bot, 0.10)

    def test_speed_observation_filter(self):
        self.assertFalse(self.engine.feed_speed_observation(40.0, 5.0, 40.0))
        self.assertFalse(self.engine.feed_speed_observation(0.5, 50.0, 50.0))
        self.assertTrue(self.engine.feed_speed_observation(55.0, 50.0, 105.0))

    def test_overestimate_lowers_speed_scale(self):
        for _ in range(10):
            self.engine.feed_speed_observation(80.0, 50.0, 130.0)

        self.assertTrue(self.engine.improve_and_persist())

        self.assertAlmostEqual(self.engine.speed_scale_factor, 0.025)
        self.assertAlmostEqual(self.engine.area_scale_factor, 0.7)
        self.assertAlmostEqual(self.engine.lifetime_speed_error, 30.0)
        self.assertEqual(self.engine.total_sessions, 1)

    def test_underestimate_raises_speed_scale(self):
        for _ in range(10):
            self.engine.feed_speed_observation(20.0, 50.0, 70.0)

        self.engine.improve_and_persist()

        self.assertAlmostEqual(self.engine.speed_scale_factor, 0.045)

    def test_too_few_speed_samples(self):
        for _ in range(9):
            self.engine.feed_speed_observation(80.0, 50.0, 130.0)

        self.engine.improve_and_persist()

        self.assertEqual(self.engine.speed_scale_factor, 0.035)
        self.assertEqual(self.engine.total_sessions, 1)

    def test_stable_errors_raise_ema_alpha(self):
        for _ in range(10):
            self.engine.feed_speed_observation(80.0, 50.0, 130.0)

        self.engine.improve_and_persist()

        self.assertAlmostEqual(self.engine.ema_alpha, 0.155)

    def test_frame_delay_learns_from_timing(self):
        for _ in range(20):
            self.engine.feed_frame_timing(50.0)
        self.assertEqual(self.engine.total_frames, 20)

        self.engine.improve_and_persist()

        # p90 + 100 clamps to 200, blended 70/30 with 300
        self.assertEqual(self.engine.frame_delay_ms, 270)
        self.assertEqual(self.engine.total_frames, 20)

    def test_stable_detections_lower_floor(self):
        for _ in range(50):
            self.engine.feed_detection_stability(2)

        self.engine.improve_and_persist()

        self.assertAlmostEqual(self.engine.detection_confidence_floor, 0.29)

    def test_flicker_raises_floor(self):
        for i in range(50):
            self.engine.feed_detection_stability(i % 2)

        self.engine.improve_and_persist()

        self.assertAlmostEqual(self.engine.detection_confidence_floor, 0.32)

    def test_poor_ocr_widens_crop(self):
        for _ in range(5):
            self.engine.feed_ocr_result(success=False)
        self.assertEqual(self.engine.session_ocr_hit_rate, 0.0)

        self.engine.improve_and_persist()

        self.assertAlmostEqual(self.engine.ocr_crop_pad_x, 0.06)
        self.assertAlmostEqual(self.engine.ocr_crop_pad_bot, 0.11)
        self.assertEqual(self.engine.plate_vote_threshold, 1)

    def test_good_ocr_tightens_crop(self):
        """Test a hit rate between 40% and 50% tightens pads only."""
        for i in range(20):
            self.engine.feed_ocr_result(success=i < 9)

        self.engine.improve_and_persist()

        self.assertAlmostEqual(self.engine.ocr_crop_pad_x, 0.045)
        self.assertAlmostEqual(self.engine.ocr_crop_pad_bot, 0.095)
        self.assertEqual(self.engine.plate_vote_threshold, 2)

    def test_excellent_ocr_demands_more_votes(self):
        for _ in range(5):
            self.engine.feed_ocr_result(success=True)

        self.engine.improve_and_persist()

        self.assertAlmostEqual(self.engine.ocr_crop_pad_x, 0.045)
        self.assertEqual(self.engine.plate_vote_threshold, 3)

    def test_noisy_errors_lower_ema_alpha(self):
        """Test error variance above 100 asks for more smoothing."""
        for i in range(10):
            # Errors alternate 0 and 30 km/h: variance 225
            self.engine.feed_speed_observation(50.0 if i % 2 else 80.0, 50.0, 50.0)

        self.engine.improve_and_persist()

        self.assertAlmostEqual(self.engine.ema_alpha, 0.145)

    def test_learning_rate_decays_with_sessions(self):
        CalibrationStore(self.state_file).save(CalibrationState(total_sessions=4))
        engine = CalibrationEngine(CalibrationStore(self.state_file))
        for _ in range(10):
            engine.feed_speed_observation(80.0, 50.0, 130.0)

        engine.improve_and_persist()

        # 0.01 / sqrt(4)
        self.assertAlmostEqual(engine.speed_scale_factor, 0.030)
        self.assertAlmostEqual(engine.area_scale_factor, 0.75)
        self.assertEqual(engine.total_sessions, 5)

    def test_plate_corrections_stay_in_bounds(self):
        """Test repeated corrections saturate at the parameter bounds."""
        for _ in range(20):
            self.engine.feed_plate_correction(was_correct=True)

        self.assertAlmostEqual(self.engine.ocr_crop_pad_x, 0.02)
        self.assertAlmostEqual(self.engine.ocr_crop_pad_bot, 0.05)
        self.assertEqual(self.engine.plate_vote_threshold, 4)

        for _ in range(20):
            self.engine.feed_plate_correction(was_correct=False)

        self.assertAlmostEqual(self.engine.ocr_crop_pad_x, 0.12)
        self.assertAlmostEqual(self.engine.ocr_crop_pad_bot, 0.18)
        self.assertEqual(self.engine.plate_vote_threshold, 1)

    def test_plate_correction_persists_immediately(self):
        self.engine.feed_plate_correction(was_correct=False)

        reloaded = CalibrationEngine(CalibrationStore(self.state_file))
        self.assertAlmostEqual(reloaded.ocr_crop_pad_x, 0.058)
        self.assertEqual(reloaded.plate_vote_threshold, 1)

    def test_state_survives_restart(self):
        for _ in range(10):
            self.engine.feed_speed_observation(80.0, 50.0, 130.0)
        self.engine.improve_and_persist()

        reloaded = CalibrationEngine(CalibrationStore(self.state_file))

        self.assertEqual(reloaded.state_snapshot(), self.engine.state_snapshot())
        self.assertEqual(reloaded.total_sessions, 1)

    def test_session_counters_reset_after_cycle(self):
        for _ in range(10):
            self.engine.feed_speed_observation(80.0, 50.0, 130.0)
        self.engine.improve_and_persist()
        scale = self.engine.speed_scale_factor

        self.engine.improve_and_persist()

        self.assertEqual(self.engine.speed_scale_factor, scale)
        self.assertEqual(self.engine.total_sessions, 2)

    def test_reset_to_defaults(self):
        for _ in range(20):
            self.engine.feed_plate_correction(was_correct=False)
        self.engine.improve_and_persist()

        self.engine.reset_to_defaults()

        self.assertEqual(self.engine.state_snapshot(), CalibrationState())
        reloaded = CalibrationEngine(CalibrationStore(self.state_file))
        self.assertEqual(reloaded.state_snapshot(), CalibrationState())

    def test_cycles_never_overlap(self):
        """Test a cycle requested while one runs is skipped."""
        self.engine._cycle_lock.acquire()
        try:
            self.assertFalse(self.engine.improve_and_persist())
        finally:
            self.engine._cycle_lock.release()

        self.assertEqual(self.engine.total_sessions, 0)
        self.assertTrue(self.engine.improve_and_persist())

    def test_in_memory_engine(self):
        engine = CalibrationEngine()
        self.assertTrue(engine.improve_and_persist())
        self.assertEqual(engine.total_sessions, 1)
        self.assertIn("speed_scale", engine.learned_parameters())


if __name__ == "__main__":
    unittest.main()
