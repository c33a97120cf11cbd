"""Tests for configuration loading."""

import pytest


class TestLoadConfig:
    """Test cases for load_config()."""

    def test_missing_file_gives_empty_config(self, tmp_path):
        """Test a missing file falls back to defaults."""
        from vote_guard.constants import load_config

        assert load_config(tmp_path / "absent.yaml") == {}

    def test_invalid_yaml_gives_empty_config(self, tmp_path):
        """Test a broken file is logged and ignored."""
        from vote_guard.constants import load_config

        path = tmp_path / "broken.yaml"
        path.write_text("quality: [unclosed")

        assert load_config(path) == {}

    def test_shipped_config_matches_defaults(self):
        """Test config/config.yaml agrees with the dataclass defaults."""
        from vote_guard.constants import (
            DEFAULT_CONFIG_PATH,
            MatchingConfig,
            QualityConfig,
            load_config,
        )

        config = load_config(DEFAULT_CONFIG_PATH)

        assert QualityConfig.from_config(config) == QualityConfig()
        assert MatchingConfig.from_config(config) == MatchingConfig()


class TestSectionConfigs:
    """Test cases for the per-section dataclasses."""

    def test_overrides(self):
        """Test values from the dictionary win over defaults."""
        from vote_guard.constants import ApiConfig, QualityConfig, RetryConfig

        config = {
            "quality": {"min_confidence": 0.8, "max_face_ratio": 0.9},
            "api": {"base_url": "https://votes.example.org/api", "retry": {"max_retries": 5}},
        }

        quality = QualityConfig.from_config(config)
        assert quality.min_confidence == 0.8
        assert quality.max_face_ratio == 0.9
        assert quality.min_face_ratio == 0.05

        assert ApiConfig.from_config(config).base_url == "https://votes.example.org/api"
        assert RetryConfig.from_config(config).max_retries == 5
        assert RetryConfig.from_config(config).retry_delay == 1.0

    def test_poll_interval_never_below_one_second(self):
        """Test faster polling is clamped to 1s."""
        from vote_guard.constants import SessionConfig

        assert SessionConfig(poll_interval=0.2).poll_interval == 1.0
        assert SessionConfig.from_config({"session": {"poll_interval": 3}}).poll_interval == 3

    def test_camera_resolution(self):
        """Test resolution is read as [width, height]."""
        from vote_guard.constants import CameraConfig

        camera = CameraConfig.from_config({"camera": {"resolution": [1280, 720], "device": 2}})

        assert (camera.width, camera.height, camera.device) == (1280, 720, 2)

    def test_model_dir_expands_user(self):
        """Test ~ in model_dir is expanded."""
        from vote_guard.constants import ModelConfig

        models = ModelConfig.from_config({"models": {"model_dir": "~/faces"}})

        assert "~" not in str(models.model_dir)

    @pytest.mark.parametrize("raw,expected", [
        ({}, "facial"),
        ({"verification": {"strategy": "webauthn"}}, "webauthn"),
        ({"verification": {"strategy": "none"}}, "none"),
        ({"verification": {"strategy": "retina"}}, "facial"),
    ])
    def test_verification_strategy(self, raw, expected):
        """Test strategy names and the unknown-name fallback."""
        from vote_guard.constants import get_verification_strategy

        assert get_verification_strategy(raw) == expected


class TestGlobalConfig:
    """Test cases for the Config singleton."""

    def test_reload_from_file(self, tmp_path):
        """Test reload() replaces cached section configs."""
        from vote_guard.constants import get_config, get_quality_config

        path = tmp_path / "config.yaml"
        path.write_text("quality:\n  min_confidence: 0.9\n")
        config = get_config()

        try:
            config.reload(path)
            assert get_quality_config().min_confidence == 0.9
            assert config.get("quality", "min_confidence") == 0.9
            assert config.get("missing", "key", default="x") == "x"
        finally:
            config.reload()

        assert get_quality_config().min_confidence == 0.7
