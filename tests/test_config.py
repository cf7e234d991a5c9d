"""Tests for configuration loading and validation."""

from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from gradesheet_ocr.exceptions import ConfigurationError
from gradesheet_ocr.utils.config import (
    AppConfig,
    CorrectionConfig,
    OCRConfig,
    PreprocessingConfig,
    RetryConfig,
    StrategyConfig,
    load_config,
)


class TestPreprocessingConfig:
    """Tests for PreprocessingConfig defaults, overrides and presets."""

    def test_defaults(self) -> None:
        cfg = PreprocessingConfig()
        assert cfg.noise_reduction_enabled is True
        assert cfg.deskew_enabled is True
        assert cfg.binarize_enabled is False
        assert cfg.denoise_method == "bilateral"
        assert cfg.target_dpi == 300

    def test_override(self) -> None:
        cfg = PreprocessingConfig(deskew_enabled=False, clahe_clip_limit=3.5)
        assert cfg.deskew_enabled is False
        assert cfg.clahe_clip_limit == 3.5

    def test_presets(self) -> None:
        aggressive = PreprocessingConfig.preset("aggressive")
        assert aggressive.binarize_enabled is True
        assert aggressive.target_dpi == 400

        minimal = PreprocessingConfig.preset("minimal")
        assert minimal.noise_reduction_enabled is False
        assert minimal.sharpen_enabled is False

    def test_unknown_preset(self) -> None:
        with pytest.raises(KeyError):
            PreprocessingConfig.preset("blurry")


class TestOCRConfig:
    """Tests for OCRConfig defaults and validation."""

    def test_defaults(self) -> None:
        cfg = OCRConfig()
        assert cfg.provider == "vision"
        assert cfg.default_lang == "ara+eng"
        assert cfg.api_key_env == "GRADESHEET_OCR_API_KEY"
        assert cfg.tesseract_cmd is None

    def test_unknown_provider_rejected(self) -> None:
        with pytest.raises(ValidationError):
            OCRConfig(provider="carrier-pigeon")


class TestRetryAndCorrectionConfig:
    """Tests for the retry policy and correction thresholds."""

    def test_retry_defaults(self) -> None:
        cfg = RetryConfig()
        assert cfg.max_retries == 3
        assert 429 in cfg.retryable_statuses
        assert cfg.fallback_statuses == [403, 404]

    def test_correction_defaults(self) -> None:
        cfg = CorrectionConfig()
        assert cfg.outlier_z_threshold == 2.5
        assert cfg.reference_match_threshold == 0.8
        assert cfg.digit_deltas == [3, -3, 5, -5, 1, -1]


class TestAppConfig:
    """Tests for the top-level AppConfig."""

    def test_default_strategies_ordered_by_priority(self) -> None:
        cfg = AppConfig()
        priorities = [s.priority for s in cfg.strategies]
        assert priorities == sorted(priorities)
        assert cfg.strategies[0].name == "document_text_high_accuracy"
        assert cfg.strategies[0].min_confidence == 0.8

    def test_default_passes(self) -> None:
        cfg = AppConfig()
        assert [p.name for p in cfg.passes] == [
            "standard",
            "aggressive",
            "handwritten",
            "minimal",
        ]
        assert cfg.passes[-1].min_confidence == 0.4
        assert [p.document_type for p in cfg.passes] == [
            "printed",
            "marks_sheet",
            "handwritten",
            "marks_sheet",
        ]
        assert cfg.pipeline.adaptive_thresholds is True

    def test_strategy_mode_validated(self) -> None:
        with pytest.raises(ValidationError):
            StrategyConfig(name="x", mode="poetry")


class TestLoadConfig:
    """Tests for YAML configuration loading."""

    def test_load_missing_file_uses_defaults(self, tmp_path: Path) -> None:
        cfg = load_config(tmp_path / "nope.yaml")
        assert cfg == AppConfig()

    def test_load_from_yaml(self, tmp_path: Path) -> None:
        config_data = {
            "log_level": "DEBUG",
            "ocr": {"provider": "tesseract", "psm": 4},
            "pipeline": {"execution_mode": "parallel"},
        }
        config_file = tmp_path / "config.yaml"
        with open(config_file, "w") as f:
            yaml.dump(config_data, f)

        cfg = load_config(config_file)
        assert cfg.log_level == "DEBUG"
        assert cfg.ocr.provider == "tesseract"
        assert cfg.ocr.psm == 4
        assert cfg.pipeline.execution_mode == "parallel"
        assert cfg.retry.max_retries == 3

    def test_empty_yaml_uses_defaults(self, tmp_path: Path) -> None:
        config_file = tmp_path / "config.yaml"
        config_file.write_text("")
        assert load_config(config_file) == AppConfig()

    def test_shipped_config_loads(self, config_dir: Path) -> None:
        cfg = load_config(config_dir / "config.yaml")
        assert len(cfg.strategies) == 4
        assert cfg.passes[1].preprocessing.binarize_enabled is True
        assert cfg.correction.rules_path == "configs/correction_rules.yaml"

    @pytest.mark.parametrize(
        "content", ["ocr: [unclosed", "pipeline:\n  execution_mode: sideways\n"]
    )
    def test_invalid_file_raises_configuration_error(
        self, tmp_path: Path, content: str
    ) -> None:
        config_file = tmp_path / "config.yaml"
        config_file.write_text(content)
        with pytest.raises(ConfigurationError, match="Invalid configuration"):
            load_config(config_file)
