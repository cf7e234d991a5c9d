"""Quality-driven image preprocessing for gradesheet OCR.

Measures the input image, then applies noise reduction, contrast
enhancement, sharpening, deskew, binarization and upscaling as the
options and the measured quality call for. Enhancement failures fall
back to the original image; only undecodable input is fatal.
"""

from dataclasses import dataclass, field

import cv2
import numpy as np

from gradesheet_ocr.exceptions import ConfigurationError, DecodeError
from gradesheet_ocr.utils.config import PreprocessingConfig
from gradesheet_ocr.utils.logger import get_logger

from .cache import ImageCache
from .deskew import deskew
from .enhance import binarize, enhance_contrast, reduce_noise, sharpen, upscale_to
from .quality import QualityMetrics, assess_quality

logger = get_logger(__name__)

NOISE_THRESHOLD = 0.3
CONTRAST_THRESHOLD = 0.6
SHARPNESS_THRESHOLD = 0.7
SKEW_THRESHOLD = 0.5


@dataclass
class PreprocessedImage:
    """Output of the preprocessor."""

    image_bytes: bytes
    quality: QualityMetrics
    applied_enhancements: list[str] = field(default_factory=list)
    quality_after: QualityMetrics | None = None


def decode_image(image_bytes: bytes) -> np.ndarray:
    """Decode encoded image bytes into a BGR array.

    Args:
        image_bytes: PNG, JPEG, TIFF, BMP or WebP data.

    Returns:
        Decoded BGR image.

    Raises:
        DecodeError: If the bytes are empty or not a readable image.
    """
    if not image_bytes:
        raise DecodeError("Empty image data")
    buffer = np.frombuffer(image_bytes, dtype=np.uint8)
    image = cv2.imdecode(buffer, cv2.IMREAD_COLOR)
    if image is None:
        raise DecodeError("Unable to decode image data")
    return image


def encode_image(image: np.ndarray) -> bytes:
    """Encode an image array as PNG bytes."""
    ok, buffer = cv2.imencode(".png", image)
    if not ok:
        raise ValueError("PNG encoding failed")
    return buffer.tobytes()


class ImagePreprocessor:
    """Assess and enhance gradesheet photographs before recognition.

    Args:
        cache: Optional shared LRU cache of preprocessed results.
    """

    def __init__(self, cache: ImageCache | None = None) -> None:
        self.cache = cache

    def preprocess(
        self, image_bytes: bytes, options: PreprocessingConfig | None = None
    ) -> PreprocessedImage:
        """Run quality assessment and the enabled enhancements.

        Args:
            image_bytes: Encoded input image.
            options: Enhancement toggles; defaults to the default preset.

        Returns:
            Enhanced PNG bytes, the input quality metrics, and the names
            of the enhancements that were applied.

        Raises:
            DecodeError: If the input cannot be decoded.
        """
        options = options or PreprocessingConfig()
        key = None
        if self.cache is not None:
            key = ImageCache.make_key(image_bytes, options)
            cached = self.cache.get(key)
            if cached is not None:
                logger.debug("Preprocessing cache hit")
                return cached

        image = decode_image(image_bytes)
        try:
            result = self._enhance(image, options)
        except ConfigurationError:
            raise
        except Exception as exc:
            logger.warning("Enhancement failed, using original image: %s", exc)
            result = PreprocessedImage(
                image_bytes=image_bytes, quality=self._safe_quality(image)
            )

        if self.cache is not None and key is not None:
            self.cache.put(key, result)
        return result

    def _enhance(
        self, image: np.ndarray, options: PreprocessingConfig
    ) -> PreprocessedImage:
        metrics = assess_quality(image)
        applied: list[str] = []
        result = image.copy()

        if options.noise_reduction_enabled and metrics.noise > NOISE_THRESHOLD:
            result = reduce_noise(result, options.denoise_method)
            applied.append("noise_reduction")

        if options.contrast_enabled and metrics.contrast < CONTRAST_THRESHOLD:
            result = enhance_contrast(
                result, options.clahe_clip_limit, options.clahe_tile_size
            )
            applied.append("contrast_enhancement")

        if options.sharpen_enabled and metrics.sharpness < SHARPNESS_THRESHOLD:
            result = sharpen(result)
            applied.append("sharpening")

        if options.deskew_enabled and abs(metrics.skew) > SKEW_THRESHOLD:
            result = deskew(result, angle=metrics.skew, angle_threshold=SKEW_THRESHOLD)
            applied.append("deskew")

        if options.binarize_enabled:
            result = binarize(result, options.binarize_method)
            applied.append("binarization")

        if metrics.resolution < options.target_dpi:
            result = upscale_to(result, options.target_dpi)
            applied.append("resolution_enhancement")

        after = assess_quality(result) if applied else metrics
        logger.info(
            "Preprocessing complete: quality %.2f->%.2f, applied %s",
            metrics.overall_score,
            after.overall_score,
            ", ".join(applied) or "nothing",
        )
        return PreprocessedImage(
            image_bytes=encode_image(result),
            quality=metrics,
            applied_enhancements=applied,
            quality_after=after,
        )

    @staticmethod
    def _safe_quality(image: np.ndarray) -> QualityMetrics:
        try:
            return assess_quality(image)
        except Exception as exc:
            logger.warning("Quality assessment failed: %s", exc)
            return QualityMetrics.neutral()
