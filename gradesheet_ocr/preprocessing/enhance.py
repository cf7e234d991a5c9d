"""Image enhancement operations for gradesheet photographs.

Noise reduction, CLAHE contrast enhancement, unsharp-mask sharpening,
binarization, and upscaling to a target resolution. Every function
takes and returns a numpy image (BGR or grayscale).
"""

import cv2
import numpy as np

from gradesheet_ocr.exceptions import ConfigurationError
from gradesheet_ocr.utils.logger import get_logger

logger = get_logger(__name__)

_MAX_UPSCALE = 4.0


def to_gray(image: np.ndarray) -> np.ndarray:
    """Convert an image to grayscale if it has color channels."""
    if len(image.shape) == 3:
        return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
    return image


def reduce_noise(image: np.ndarray, method: str = "bilateral") -> np.ndarray:
    """Apply edge-preserving noise reduction.

    Args:
        image: Input image.
        method: ``"bilateral"`` or ``"gaussian"``.

    Returns:
        Denoised image with the same shape as the input.

    Raises:
        ConfigurationError: If the method is not supported.
    """
    if method == "bilateral":
        result = cv2.bilateralFilter(image, 9, 75, 75)
    elif method == "gaussian":
        result = cv2.GaussianBlur(image, (5, 5), 0)
    else:
        raise ConfigurationError(f"Unsupported denoise method: {method}")
    logger.debug("Applied %s noise reduction", method)
    return result


def enhance_contrast(
    image: np.ndarray, clip_limit: float = 2.0, tile_size: int = 8
) -> np.ndarray:
    """Enhance local contrast with CLAHE.

    Color images are equalized on the lightness channel only so ink
    colors survive for the recognizer.

    Args:
        image: Input image.
        clip_limit: CLAHE contrast limit.
        tile_size: CLAHE grid size.

    Returns:
        Contrast-enhanced image with the same channel count as the input.
    """
    clahe = cv2.createCLAHE(clipLimit=clip_limit, tileGridSize=(tile_size, tile_size))
    if len(image.shape) == 2:
        return clahe.apply(image)

    lab = cv2.cvtColor(image, cv2.COLOR_BGR2LAB)
    lightness, a, b = cv2.split(lab)
    merged = cv2.merge((clahe.apply(lightness), a, b))
    return cv2.cvtColor(merged, cv2.COLOR_LAB2BGR)


def sharpen(image: np.ndarray, amount: float = 1.0, sigma: float = 1.0) -> np.ndarray:
    """Sharpen strokes with an unsharp mask.

    Args:
        image: Input image.
        amount: Weight of the high-frequency detail added back.
        sigma: Gaussian sigma of the blur used as the mask.

    Returns:
        Sharpened image.
    """
    blurred = cv2.GaussianBlur(image, (0, 0), sigma)
    return cv2.addWeighted(image, 1.0 + amount, blurred, -amount, 0)


def binarize(image: np.ndarray, method: str = "adaptive") -> np.ndarray:
    """Threshold an image to black and white.

    Args:
        image: Input image.
        method: ``"adaptive"`` (Gaussian, block 11) or ``"otsu"``.

    Returns:
        Binary grayscale image with values 0 or 255.

    Raises:
        ConfigurationError: If the method is not supported.
    """
    gray = to_gray(image)
    if method == "otsu":
        _, binary = cv2.threshold(gray, 0, 255, cv2.THRESH_BINARY + cv2.THRESH_OTSU)
        return binary
    if method == "adaptive":
        return cv2.adaptiveThreshold(
            gray, 255, cv2.ADAPTIVE_THRESH_GAUSSIAN_C, cv2.THRESH_BINARY, 11, 2
        )
    raise ConfigurationError(f"Unsupported binarize method: {method}")


def upscale_to(image: np.ndarray, target: int) -> np.ndarray:
    """Upscale so the shorter side reaches ``target`` pixels.

    Images already at or above the target are returned unchanged; the
    scale factor is capped at 4x.

    Args:
        image: Input image.
        target: Desired length of the shorter side in pixels.

    Returns:
        Resized image.
    """
    h, w = image.shape[:2]
    shorter = min(h, w)
    if shorter == 0 or shorter >= target:
        return image

    scale = min(target / shorter, _MAX_UPSCALE)
    size = (int(round(w * scale)), int(round(h * scale)))
    logger.debug("Upscaling %dx%d by %.2f", w, h, scale)
    return cv2.resize(image, size, interpolation=cv2.INTER_CUBIC)
