"""Pixel transforms that make printed dates legible to the OCR engine."""

from __future__ import annotations

import cv2
import numpy as np

from ..domain.errors import ImageDecodeError
from ..domain.models import CapturedFrame, PreprocessedImage
from ..logging import get_logger

LOG = get_logger("orchestrator-preprocess")

CONTRAST = 1.5
THRESHOLD = 128


def decode_image(data: bytes) -> np.ndarray:
    """Decode an encoded image buffer into a BGR array."""
    buf = np.frombuffer(data or b"", dtype=np.uint8)
    if buf.size == 0:
        raise ImageDecodeError("Empty image buffer")
    img = cv2.imdecode(buf, cv2.IMREAD_COLOR)
    if img is None:
        raise ImageDecodeError(f"Could not decode image buffer ({buf.size} bytes)")
    return img


def encode_png(img: np.ndarray) -> bytes:
    ok, buf = cv2.imencode(".png", img)
    if not ok:
        raise RuntimeError("cv2.imencode failed for PNG")
    return buf.tobytes()


def contrast_factor(contrast: float = CONTRAST) -> float:
    return (259.0 * (contrast + 255.0)) / (255.0 * (259.0 - contrast))


def binarize(bgr: np.ndarray, contrast: float = CONTRAST, threshold: int = THRESHOLD) -> np.ndarray:
    """Grayscale, contrast-stretch and threshold a BGR array.

    Returns a 3-channel array where every pixel is exactly (0,0,0) or
    (255,255,255).
    """
    b = bgr[:, :, 0].astype(np.float64)
    g = bgr[:, :, 1].astype(np.float64)
    r = bgr[:, :, 2].astype(np.float64)
    gray = 0.299 * r + 0.587 * g + 0.114 * b
    adjusted = contrast_factor(contrast) * (gray - 128.0) + 128.0
    mono = np.where(adjusted > threshold, 255, 0).astype(np.uint8)
    return cv2.merge([mono, mono, mono])


def preprocess(image: CapturedFrame | PreprocessedImage) -> PreprocessedImage:
    """Return a binarized copy of ``image`` with identical dimensions.

    Deterministic: identical input bytes give identical output bytes, and a
    second pass over the output changes nothing.
    """
    bgr = decode_image(image.data)
    out = binarize(bgr)
    h, w = out.shape[:2]
    LOG.debug(f"Preprocessed {w}x{h} image")
    return PreprocessedImage(width=w, height=h, data=encode_png(out))


class ImagePreprocessor:
    """Injectable wrapper around :func:`preprocess`."""

    def preprocess(self, image: CapturedFrame | PreprocessedImage) -> PreprocessedImage:
        return preprocess(image)
