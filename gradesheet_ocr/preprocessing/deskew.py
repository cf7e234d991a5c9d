"""Skew detection and correction for photographed gradesheets.

Table rulings and text baselines give strong near-horizontal lines;
their median Hough angle estimates the rotation of the sheet.
"""

import cv2
import numpy as np

from gradesheet_ocr.utils.logger import get_logger

from .enhance import to_gray

logger = get_logger(__name__)

_MAX_SKEW = 45.0


def detect_skew_angle(image: np.ndarray) -> float:
    """Estimate the skew angle of a document image in degrees.

    Only near-horizontal line segments (within 45 degrees) are
    considered, so vertical table rulings do not dominate.

    Args:
        image: Input image (BGR or grayscale).

    Returns:
        Median angle of the detected lines, or 0.0 when none are found.
    """
    gray = to_gray(image)
    edges = cv2.Canny(gray, 50, 150, apertureSize=3)
    min_length = max(20, min(gray.shape[:2]) // 4)
    lines = cv2.HoughLinesP(
        edges, 1, np.pi / 180, 80, minLineLength=min_length, maxLineGap=10
    )
    if lines is None:
        return 0.0

    angles = [
        float(np.degrees(np.arctan2(y2 - y1, x2 - x1)))
        for x1, y1, x2, y2 in lines.reshape(-1, 4)
    ]
    horizontal = [a for a in angles if abs(a) <= _MAX_SKEW]
    if not horizontal:
        return 0.0
    return float(np.median(horizontal))


def rotate(image: np.ndarray, angle: float) -> np.ndarray:
    """Rotate an image around its center, replicating the border.

    Args:
        image: Input image.
        angle: Rotation in degrees (OpenCV convention).

    Returns:
        Rotated image with the same shape as the input.
    """
    h, w = image.shape[:2]
    matrix = cv2.getRotationMatrix2D((w // 2, h // 2), angle, 1.0)
    return cv2.warpAffine(
        image, matrix, (w, h), flags=cv2.INTER_CUBIC, borderMode=cv2.BORDER_REPLICATE
    )


def deskew(
    image: np.ndarray, angle: float | None = None, angle_threshold: float = 0.5
) -> np.ndarray:
    """Correct rotational skew.

    Args:
        image: Input image.
        angle: Known skew angle; detected when omitted.
        angle_threshold: Minimum absolute angle that triggers a rotation.

    Returns:
        Deskewed image, or the input when the skew is below the threshold.
    """
    if angle is None:
        angle = detect_skew_angle(image)
    if abs(angle) <= angle_threshold:
        return image

    logger.info("Applying deskew correction: %.2f degrees", angle)
    return rotate(image, angle)
