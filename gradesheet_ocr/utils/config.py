"""Configuration management for the gradesheet OCR pipeline.

Loads and validates YAML configuration with defaults for preprocessing,
OCR providers, retry policy, strategies, passes, fusion, correction,
and the image cache.
"""

import logging
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, ValidationError

from gradesheet_ocr.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class PreprocessingConfig(BaseModel):
    """Toggle set and parameters for image enhancement."""

    noise_reduction_enabled: bool = True
    contrast_enabled: bool = True
    deskew_enabled: bool = True
    sharpen_enabled: bool = True
    binarize_enabled: bool = False
    target_dpi: int = 300
    denoise_method: str = "bilateral"
    binarize_method: str = "adaptive"
    clahe_clip_limit: float = 2.0
    clahe_tile_size: int = 8

    @classmethod
    def preset(cls, name: str) -> "PreprocessingConfig":
        """Build one of the named option presets.

        Args:
            name: ``"default"``, ``"printed"``, ``"handwritten"``,
                ``"aggressive"`` or ``"minimal"``.

        Returns:
            Preprocessing configuration for the preset.

        Raises:
            KeyError: If the preset name is unknown.
        """
        return cls(**_PRESETS[name])


_PRESETS: dict[str, dict[str, object]] = {
    "default": {},
    "printed": {},
    "handwritten": {
        "sharpen_enabled": False,
        "binarize_enabled": True,
        "target_dpi": 400,
    },
    "aggressive": {"binarize_enabled": True, "target_dpi": 400},
    "minimal": {
        "noise_reduction_enabled": False,
        "contrast_enabled": True,
        "deskew_enabled": False,
        "sharpen_enabled": False,
    },
}


class OCRConfig(BaseModel):
    """Configuration for the OCR provider adapter."""

    provider: Literal["vision", "generative", "tesseract"] = "vision"
    # empty selects the default host of the chosen provider
    endpoints: list[str] = Field(default_factory=list)
    models: list[str] = Field(default_factory=list)
    api_key_env: str = "GRADESHEET_OCR_API_KEY"
    timeout_seconds: float = 60.0
    tesseract_cmd: str | None = None
    default_lang: str = "ara+eng"
    psm: int = 6


class RetryConfig(BaseModel):
    """Exponential backoff policy for provider calls."""

    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0
    multiplier: float = 2.0
    jitter_ratio: float = 0.3
    retryable_statuses: list[int] = Field(
        default_factory=lambda: [429, 500, 502, 503, 504]
    )
    fallback_statuses: list[int] = Field(default_factory=lambda: [403, 404])


class StrategyConfig(BaseModel):
    """A named recognition configuration attempted during extraction."""

    name: str
    priority: int = 1
    min_confidence: float = 0.7
    features: list[str] = Field(default_factory=lambda: ["DOCUMENT_TEXT_DETECTION"])
    language_hints: list[str] = Field(default_factory=lambda: ["ar", "en"])
    confidence_scoring: bool = True
    mode: Literal["text", "structured"] = "text"


class PassConfig(BaseModel):
    """A preprocessing pass; every strategy runs once per pass."""

    name: str
    preprocessing: PreprocessingConfig = Field(default_factory=PreprocessingConfig)
    min_confidence: float = 0.6
    document_type: Literal["printed", "marks_sheet", "handwritten"] = "marks_sheet"


class PipelineConfig(BaseModel):
    """Orchestration settings."""

    execution_mode: Literal["sequential", "parallel"] = "sequential"
    early_exit_confidence: float = 0.9
    fuzzy_match_threshold: float = 0.85
    default_image_quality: float = 0.7
    adaptive_thresholds: bool = True


class CorrectionConfig(BaseModel):
    """Settings for name and mark correction."""

    rules_path: str = "configs/correction_rules.yaml"
    reference_match_threshold: float = 0.8
    outlier_z_threshold: float = 2.5
    min_column_values: int = 3
    expected_count_tolerance: int = 5
    redetect_ratio: float = 0.3
    digit_deltas: list[float] = Field(default_factory=lambda: [3, -3, 5, -5, 1, -1])


class CacheConfig(BaseModel):
    """Bounded LRU image cache settings."""

    capacity: int = 10
    ttl_seconds: float = 300.0


def _default_strategies() -> list[StrategyConfig]:
    return [
        StrategyConfig(
            name="document_text_high_accuracy",
            priority=1,
            min_confidence=0.8,
            features=["DOCUMENT_TEXT_DETECTION"],
            language_hints=["ar", "fr", "en"],
        ),
        StrategyConfig(
            name="text_detection_standard",
            priority=2,
            min_confidence=0.7,
            features=["TEXT_DETECTION"],
            language_hints=["ar", "en"],
        ),
        StrategyConfig(
            name="arabic_focused",
            priority=3,
            min_confidence=0.75,
            features=["DOCUMENT_TEXT_DETECTION"],
            language_hints=["ar"],
        ),
        StrategyConfig(
            name="handwriting",
            priority=4,
            min_confidence=0.6,
            features=["DOCUMENT_TEXT_DETECTION"],
            language_hints=["ar-t-i0-handwrit"],
        ),
    ]


def _default_passes() -> list[PassConfig]:
    return [
        PassConfig(
            name="standard",
            preprocessing=PreprocessingConfig.preset("printed"),
            min_confidence=0.8,
            document_type="printed",
        ),
        PassConfig(
            name="aggressive",
            preprocessing=PreprocessingConfig.preset("aggressive"),
            min_confidence=0.7,
        ),
        PassConfig(
            name="handwritten",
            preprocessing=PreprocessingConfig.preset("handwritten"),
            min_confidence=0.6,
            document_type="handwritten",
        ),
        PassConfig(
            name="minimal",
            preprocessing=PreprocessingConfig.preset("minimal"),
            min_confidence=0.4,
        ),
    ]


class AppConfig(BaseModel):
    """Top-level application configuration."""

    preprocessing: PreprocessingConfig = Field(default_factory=PreprocessingConfig)
    ocr: OCRConfig = Field(default_factory=OCRConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    strategies: list[StrategyConfig] = Field(default_factory=_default_strategies)
    passes: list[PassConfig] = Field(default_factory=_default_passes)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    correction: CorrectionConfig = Field(default_factory=CorrectionConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    log_level: str = "INFO"


def load_config(path: Path | None = None) -> AppConfig:
    """Load configuration from a YAML file.

    Args:
        path: Path to the YAML configuration file.
            Defaults to configs/config.yaml.

    Returns:
        Validated application configuration.

    Raises:
        ConfigurationError: If the file is not valid YAML or fails validation.
    """
    if path is None:
        path = Path("configs/config.yaml")

    if path.exists():
        logger.info("Loading configuration from %s", path)
        try:
            with open(path) as f:
                raw = yaml.safe_load(f) or {}
            return AppConfig(**raw)
        except (yaml.YAMLError, ValidationError) as exc:
            raise ConfigurationError(f"Invalid configuration in {path}: {exc}") from exc

    logger.info("No config file found at %s, using defaults", path)
    return AppConfig()
