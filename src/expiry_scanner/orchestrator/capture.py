"""Camera session ownership and scan-band still capture."""

from __future__ import annotations

from typing import Any, Callable, Optional, Tuple

import cv2
import numpy as np

from ..domain.errors import CameraUnavailable, VideoNotReady
from ..domain.models import CapturedFrame
from ..logging import get_logger
from .preprocess import encode_png

LOG = get_logger("orchestrator-capture")

BAND_WIDTH_RATIO = 0.8
BAND_HEIGHT_RATIO = 0.2  # of the band width
BOOST_CONTRAST = 1.2
BOOST_BRIGHTNESS = 1.1


def scan_band(width: int, height: int) -> Tuple[int, int, int, int]:
    """Return (x, y, w, h) of the centered horizontal scan band."""
    band_w = max(1, int(round(width * BAND_WIDTH_RATIO)))
    band_h = max(1, min(height, int(round(band_w * BAND_HEIGHT_RATIO))))
    x = (width - band_w) // 2
    y = (height - band_h) // 2
    return x, y, band_w, band_h


def boost(crop: np.ndarray) -> np.ndarray:
    """Mild contrast (about mid-grey) then brightness lift, clipped to 8 bits."""
    out = crop.astype(np.float32)
    out = np.clip((out - 128.0) * BOOST_CONTRAST + 128.0, 0, 255)
    out = np.clip(out * BOOST_BRIGHTNESS, 0, 255)
    return out.astype(np.uint8)


class FrameCapture:
    """Owns at most one camera session and cuts scan-band stills from it.

    ``video_factory`` receives the device index and must return an object
    with the ``cv2.VideoCapture`` surface used here (``isOpened``, ``set``,
    ``read``, ``release``).
    """

    def __init__(
        self,
        device: int = 0,
        *,
        width: int = 1280,
        height: int = 720,
        video_factory: Callable[[int], Any] = cv2.VideoCapture,
    ) -> None:
        self.device = device
        self.width = width
        self.height = height
        self._video_factory = video_factory
        self._video: Optional[Any] = None
        self._ready = False
        self._flash_on = False

    @property
    def is_active(self) -> bool:
        return self._video is not None

    @property
    def is_ready(self) -> bool:
        return self._video is not None and self._ready

    @property
    def is_flash_on(self) -> bool:
        return self._flash_on

    def start(self) -> None:
        if self._video is not None:
            LOG.debug("Camera session already active")
            return
        LOG.info(f"Opening camera device {self.device} at {self.width}x{self.height}")
        try:
            video = self._video_factory(self.device)
        except Exception as exc:
            raise CameraUnavailable(f"Camera {self.device} could not be opened: {exc}") from exc
        if video is None or not video.isOpened():
            if video is not None:
                video.release()
            raise CameraUnavailable(f"Camera {self.device} is not available (missing device or permission denied)")
        video.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
        video.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
        self._video = video
        self._ready = False
        LOG.info("Camera session started")

    def stop(self) -> None:
        video, self._video = self._video, None
        self._ready = False
        self._flash_on = False
        if video is None:
            return
        try:
            video.release()
        finally:
            LOG.info("Camera session released")

    def _read(self) -> np.ndarray:
        if self._video is None:
            raise VideoNotReady("Camera is not started")
        ok, frame = self._video.read()
        if not ok or frame is None or getattr(frame, "size", 0) == 0:
            self._ready = False
            raise VideoNotReady("No decoded video frame available yet")
        self._ready = True
        return frame

    def capture_frame(self) -> CapturedFrame:
        """Grab the current frame and return the boosted scan band as PNG."""
        frame = self._read()
        if frame.ndim == 2:
            frame = cv2.cvtColor(frame, cv2.COLOR_GRAY2BGR)
        fh, fw = frame.shape[:2]
        x, y, w, h = scan_band(fw, fh)
        crop = boost(frame[y:y + h, x:x + w])
        LOG.debug(f"Cropped scan band {w}x{h} at ({x},{y}) from {fw}x{fh}")
        return CapturedFrame(width=w, height=h, data=encode_png(crop))

    def toggle_flash(self) -> bool:
        """Flip the torch where the video source supports it; returns the new state."""
        if self._video is None:
            return self._flash_on
        set_torch = getattr(self._video, "set_torch", None)
        if not callable(set_torch):
            LOG.debug("Torch control not supported by this video source")
            return self._flash_on
        wanted = not self._flash_on
        try:
            set_torch(wanted)
        except Exception as exc:
            LOG.debug(f"Torch toggle ignored: {exc}")
            return self._flash_on
        self._flash_on = wanted
        return self._flash_on
