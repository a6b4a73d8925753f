"""
Unit tests for run configuration and the utility modules.

Tests the following modules:
- stainthresh/utils/config.py - ThresholdParams validation, legacy keys, load/save
- stainthresh/utils/json_utils.py - NumPy-aware JSON serialization
- stainthresh/utils/logging.py - Logging helpers

Run with: pytest tests/test_config.py -v
"""

import json
import logging
import sys
import tempfile
from pathlib import Path
from unittest import TestCase

import numpy as np
from pydantic import ValidationError

# Add repo root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))


# =============================================================================
# CONFIG MODULE TESTS
# =============================================================================

class TestThresholdParams(TestCase):
    """Tests for the ThresholdParams model."""

    def test_defaults(self):
        """Test that defaults match the documented values."""
        from stainthresh.utils.config import ChannelMethod, ThresholdParams

        params = ThresholdParams()

        self.assertEqual(params.roi_class, "Region*")
        self.assertIs(params.channel_method, ChannelMethod.OPTICAL_DENSITY_SUM)
        self.assertEqual(params.stain_name, "OpticalDensitySum")
        self.assertEqual(params.target_class, "Vessels")
        self.assertEqual(params.min_fragment_um2, 1000.0)
        self.assertEqual(params.max_hole_um2, 1000.0)
        self.assertEqual(params.downsample, 3.0)
        self.assertEqual(params.gaussian_sigma_um, 15.0)
        self.assertEqual(params.n_workers, 1)

    def test_channel_method_parsing(self):
        """Test that method names and values parse case-insensitively."""
        from stainthresh.utils.config import ChannelMethod, ThresholdParams

        for value in ("Deconvolution", "deconvolution", "DECONVOLUTION"):
            self.assertIs(ThresholdParams(channel_method=value).channel_method,
                          ChannelMethod.DECONVOLUTION)
        for value in ("OpticalDensitySum", "optical_density_sum"):
            self.assertIs(ThresholdParams(channel_method=value).channel_method,
                          ChannelMethod.OPTICAL_DENSITY_SUM)

    def test_unknown_channel_method_rejected(self):
        from stainthresh.utils.config import ThresholdParams

        with self.assertRaises(ValidationError):
            ThresholdParams(channel_method="Brightness")

    def test_invalid_values_rejected(self):
        """Test that out-of-range values fail before a run starts."""
        from stainthresh.utils.config import ThresholdParams

        invalid = [
            {"downsample": 0.5},
            {"min_fragment_um2": -1.0},
            {"max_hole_um2": -1.0},
            {"gaussian_sigma_um": -0.1},
            {"n_workers": 0},
            {"target_class": ""},
            {"unknown_option": 1},
        ]
        for kwargs in invalid:
            with self.subTest(kwargs=kwargs):
                with self.assertRaises(ValidationError):
                    ThresholdParams(**kwargs)

    def test_blank_roi_means_whole_image(self):
        from stainthresh.utils.config import ThresholdParams

        self.assertIsNone(ThresholdParams(roi_class="  ").roi_class)
        self.assertIsNone(ThresholdParams(roi_class=None).roi_class)

    def test_frozen(self):
        from stainthresh.utils.config import ThresholdParams

        params = ThresholdParams()
        with self.assertRaises(ValidationError):
            params.downsample = 2.0

    def test_refine_plugin_params(self):
        from stainthresh.utils.config import ThresholdParams

        params = ThresholdParams(min_fragment_um2=12.5, max_hole_um2=7.0)
        self.assertEqual(params.refine_plugin_params(),
                         {"minFragmentSizeMicrons": 12.5, "maxHoleSizeMicrons": 7.0})


class TestLegacyParams(TestCase):
    """Tests for from_legacy_params()."""

    def test_full_mapping(self):
        from stainthresh.utils.config import ChannelMethod, from_legacy_params

        params = from_legacy_params({
            "Roi": "Tumor",
            "ChannelExtrMethod": "Deconvolution",
            "stainName": "DAB",
            "setPathClass": "Positive",
            "MinFragment": 50,
            "MaxHole": 20,
            "Downsample": 2,
            "gaussianSigma": 3,
        })

        self.assertEqual(params.roi_class, "Tumor")
        self.assertIs(params.channel_method, ChannelMethod.DECONVOLUTION)
        self.assertEqual(params.stain_name, "DAB")
        self.assertEqual(params.target_class, "Positive")
        self.assertEqual(params.min_fragment_um2, 50.0)
        self.assertEqual(params.downsample, 2.0)

    def test_missing_roi_means_whole_image(self):
        from stainthresh.utils.config import from_legacy_params

        self.assertIsNone(from_legacy_params({"Downsample": 2}).roi_class)

    def test_unknown_key_rejected(self):
        from stainthresh.utils.config import from_legacy_params

        with self.assertRaises(ValueError):
            from_legacy_params({"Roi": "Tumor", "Threshold": 0.5})


class TestLoadSaveConfig(TestCase):
    """Tests for load_config() and save_config()."""

    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.path = Path(self.temp_dir.name) / "threshold_config.json"

    def tearDown(self):
        self.temp_dir.cleanup()

    def test_missing_file_gives_defaults(self):
        from stainthresh.utils.config import ThresholdParams, load_config

        self.assertEqual(load_config(self.path), ThresholdParams())

    def test_corrupt_file_gives_defaults(self):
        from stainthresh.utils.config import ThresholdParams, load_config

        self.path.write_text("{not json")
        self.assertEqual(load_config(self.path), ThresholdParams())

    def test_save_then_load(self):
        from stainthresh.utils.config import ThresholdParams, load_config, save_config

        params = ThresholdParams(roi_class="Tumor", channel_method="Deconvolution",
                                 stain_name="DAB", downsample=4.0)
        saved = save_config(params, self.path)

        self.assertEqual(Path(saved), self.path)
        with open(self.path) as f:
            self.assertEqual(json.load(f)["channel_method"], "Deconvolution")
        self.assertEqual(load_config(self.path), params)

    def test_overrides_applied(self):
        from stainthresh.utils.config import load_config

        self.path.write_text(json.dumps({"downsample": 4.0}))
        params = load_config(self.path, n_workers=3)
        self.assertEqual(params.downsample, 4.0)
        self.assertEqual(params.n_workers, 3)

    def test_legacy_file(self):
        from stainthresh.utils.config import load_config

        self.path.write_text(json.dumps({"Roi": "Tumor", "MinFragment": 10}))
        params = load_config(self.path)
        self.assertEqual(params.roi_class, "Tumor")
        self.assertEqual(params.min_fragment_um2, 10.0)

    def test_invalid_values_in_file_raise(self):
        from stainthresh.utils.config import load_config

        self.path.write_text(json.dumps({"downsample": 0.1}))
        with self.assertRaises(ValidationError):
            load_config(self.path)


# =============================================================================
# JSON UTILS TESTS
# =============================================================================

class TestJsonUtils(TestCase):
    """Tests for NumpyEncoder, sanitize_for_json and atomic_json_dump."""

    def test_numpy_types_serialize(self):
        from stainthresh.utils.json_utils import NumpyEncoder

        data = {"a": np.float32(1.5), "b": np.int64(3), "c": np.arange(3), "d": np.bool_(True)}
        decoded = json.loads(json.dumps(data, cls=NumpyEncoder))
        self.assertEqual(decoded, {"a": 1.5, "b": 3, "c": [0, 1, 2], "d": True})

    def test_sanitize_replaces_nan(self):
        from stainthresh.utils.json_utils import sanitize_for_json

        result = sanitize_for_json({"x": float("nan"), "y": [1.0, float("inf")]})
        self.assertIsNone(result["x"])
        self.assertIsNone(result["y"][1])

    def test_atomic_dump_writes_file(self):
        from stainthresh.utils.json_utils import atomic_json_dump

        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "sub" / "out.json"
            atomic_json_dump({"value": np.float64(2.0)}, path)
            with open(path) as f:
                self.assertEqual(json.load(f), {"value": 2.0})


# =============================================================================
# LOGGING TESTS
# =============================================================================

class TestLoggingUtils(TestCase):
    """Tests for the logging helpers."""

    def test_format_duration(self):
        from stainthresh.utils.logging import format_duration

        self.assertEqual(format_duration(12.34), "12.3 seconds")
        self.assertEqual(format_duration(150), "2.5 minutes")
        self.assertEqual(format_duration(7200), "2.0 hours")

    def test_processing_timer_records_duration(self):
        from stainthresh.utils.logging import ProcessingTimer, get_logger

        logger = get_logger("stainthresh.test")
        with ProcessingTimer(logger, "noop") as timer:
            pass
        self.assertGreaterEqual(timer.duration, 0.0)

    def test_setup_logging_file(self):
        from stainthresh.utils.logging import setup_logging

        with tempfile.TemporaryDirectory() as tmp:
            root = setup_logging(level="DEBUG", log_dir=tmp, console=False)
            try:
                files = list(Path(tmp).glob("stainthresh_*.log"))
                self.assertEqual(len(files), 1)
                self.assertEqual(root.level, logging.DEBUG)
            finally:
                for handler in list(root.handlers):
                    if isinstance(handler, logging.FileHandler):
                        handler.close()
                        root.removeHandler(handler)
