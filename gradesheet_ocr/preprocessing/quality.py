"""Image quality assessment used to pick enhancement steps and score results."""

from dataclasses import asdict, dataclass

import cv2
import numpy as np

from .deskew import detect_skew_angle
from .enhance import to_gray


@dataclass
class QualityMetrics:
    """Normalized quality measurements of a gradesheet image.

    All fields except ``skew`` (degrees) and ``resolution`` (pixels of
    the shorter side) lie in [0, 1].
    """

    brightness: float
    contrast: float
    sharpness: float
    noise: float
    skew: float
    resolution: int
    overall_score: float

    @classmethod
    def neutral(cls) -> "QualityMetrics":
        """Metrics used when an image could not be measured."""
        return cls(0.5, 0.5, 0.5, 0.5, 0.0, 0, 0.5)

    def to_dict(self) -> dict[str, float]:
        return asdict(self)


def calculate_sharpness(gray: np.ndarray) -> float:
    """RMS of the Laplacian response scaled to [0, 1]."""
    laplacian = cv2.Laplacian(gray.astype(np.float32), cv2.CV_32F, ksize=1)
    return min(1.0, float(np.sqrt(np.mean(laplacian**2))) / 255.0)


def estimate_noise(gray: np.ndarray) -> float:
    """Mean absolute difference to the 3x3 neighbourhood, scaled to [0, 1]."""
    h, w = gray.shape[:2]
    if h < 3 or w < 3:
        return 0.0

    g = gray.astype(np.float32)
    center = g[1:-1, 1:-1]
    total = np.zeros_like(center)
    for dy in (-1, 0, 1):
        for dx in (-1, 0, 1):
            total += np.abs(center - g[1 + dy : h - 1 + dy, 1 + dx : w - 1 + dx])
    return min(1.0, float(np.mean(total / 9.0)) / 50.0)


def overall_score(
    brightness: float,
    contrast: float,
    sharpness: float,
    noise: float,
    skew: float,
    resolution: int,
) -> float:
    """Combine individual measurements into a single score in [0, 1]."""
    score = (
        brightness * 0.15
        + contrast * 0.25
        + sharpness * 0.25
        + (1 - noise) * 0.2
        + (1 - min(abs(skew), 45.0) / 45.0) * 0.1
        + min(resolution / 300, 1.0) * 0.05
    )
    return max(0.0, min(1.0, score))


def assess_quality(image: np.ndarray) -> QualityMetrics:
    """Measure brightness, contrast, sharpness, noise, skew and resolution.

    Args:
        image: Decoded image (BGR or grayscale).

    Returns:
        Quality metrics including the weighted overall score.
    """
    gray = to_gray(image)
    brightness = float(gray.mean()) / 255.0
    contrast = float(gray.std()) / 255.0
    sharpness = calculate_sharpness(gray)
    noise = estimate_noise(gray)
    skew = detect_skew_angle(gray)
    resolution = int(min(gray.shape[:2]))

    return QualityMetrics(
        brightness=brightness,
        contrast=contrast,
        sharpness=sharpness,
        noise=noise,
        skew=skew,
        resolution=resolution,
        overall_score=overall_score(
            brightness, contrast, sharpness, noise, skew, resolution
        ),
    )
