import os
import sys

import cv2
import numpy as np
import pytest

# Ensure src/ is importable when tests run from repo root
sys.path.insert(0, os.path.abspath("src"))

from expiry_scanner.domain.errors import CameraUnavailable, VideoNotReady
from expiry_scanner.orchestrator.capture import FrameCapture, boost, scan_band
from expiry_scanner.orchestrator.preprocess import decode_image


class FakeVideo:
    def __init__(self, frames=None, opened=True):
        self.frames = list(frames or [])
        self.opened = opened
        self.props = {}
        self.released = 0

    def isOpened(self):
        return self.opened

    def set(self, prop, value):
        self.props[prop] = value
        return True

    def read(self):
        if not self.frames:
            return False, None
        return True, self.frames.pop(0)

    def release(self):
        self.released += 1


class TorchVideo(FakeVideo):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.torch = []

    def set_torch(self, on):
        self.torch.append(on)


def _capture_with(video):
    opened = []

    def factory(index):
        opened.append(index)
        return video

    cap = FrameCapture(3, width=1280, height=720, video_factory=factory)
    return cap, opened


def test_scan_band_geometry():
    assert scan_band(1280, 720) == (128, 257, 1024, 205)
    assert scan_band(640, 480) == (64, 189, 512, 102)
    # band height is capped by the frame height
    assert scan_band(100, 10) == (10, 0, 80, 10)


def test_boost_clips_to_eight_bits():
    px = np.array([[[0, 128, 255]]], dtype=np.uint8)
    out = boost(px)
    assert out.dtype == np.uint8
    assert out.tolist() == [[[0, 140, 255]]]


def test_start_opens_device_and_requests_resolution():
    video = FakeVideo()
    cap, opened = _capture_with(video)
    cap.start()
    cap.start()  # already active
    assert opened == [3]
    assert cap.is_active
    assert video.props[cv2.CAP_PROP_FRAME_WIDTH] == 1280
    assert video.props[cv2.CAP_PROP_FRAME_HEIGHT] == 720


def test_start_raises_when_device_cannot_open():
    video = FakeVideo(opened=False)
    cap, _ = _capture_with(video)
    with pytest.raises(CameraUnavailable):
        cap.start()
    assert not cap.is_active
    assert video.released == 1


def test_start_wraps_factory_errors():
    def boom(index):
        raise PermissionError("denied")

    cap = FrameCapture(video_factory=boom)
    with pytest.raises(CameraUnavailable) as excinfo:
        cap.start()
    assert "denied" in str(excinfo.value)


def test_capture_before_start_is_not_ready():
    cap, _ = _capture_with(FakeVideo())
    with pytest.raises(VideoNotReady):
        cap.capture_frame()


def test_capture_without_decoded_frame_is_not_ready():
    cap, _ = _capture_with(FakeVideo(frames=[]))
    cap.start()
    with pytest.raises(VideoNotReady):
        cap.capture_frame()
    assert not cap.is_ready


def test_capture_crops_scan_band_as_png():
    frame = np.full((720, 1280, 3), 200, dtype=np.uint8)
    cap, _ = _capture_with(FakeVideo(frames=[frame]))
    cap.start()
    still = cap.capture_frame()
    assert (still.width, still.height) == (1024, 205)
    assert cap.is_ready
    assert decode_image(still.data).shape == (205, 1024, 3)


def test_capture_accepts_grayscale_frames():
    frame = np.zeros((480, 640), dtype=np.uint8)
    cap, _ = _capture_with(FakeVideo(frames=[frame]))
    cap.start()
    still = cap.capture_frame()
    assert (still.width, still.height) == (512, 102)


def test_stop_is_idempotent():
    video = FakeVideo()
    cap, _ = _capture_with(video)
    cap.stop()
    cap.start()
    cap.stop()
    cap.stop()
    assert video.released == 1
    assert not cap.is_active
    with pytest.raises(VideoNotReady):
        cap.capture_frame()


def test_toggle_flash_without_torch_support_is_a_no_op():
    cap, _ = _capture_with(FakeVideo())
    assert cap.toggle_flash() is False
    cap.start()
    assert cap.toggle_flash() is False
    assert not cap.is_flash_on


def test_toggle_flash_flips_torch():
    video = TorchVideo()
    cap, _ = _capture_with(video)
    cap.start()
    assert cap.toggle_flash() is True
    assert cap.toggle_flash() is False
    assert video.torch == [True, False]
    cap.toggle_flash()
    cap.stop()
    assert not cap.is_flash_on
