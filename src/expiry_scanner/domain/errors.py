"""Failures raised by the scanning pipeline components.

The orchestrator catches all of these at its boundary and turns them into
status strings; none of them reach the caller of a public orchestrator
operation.
"""


class ScanError(Exception):
    """Base class for pipeline failures."""


class CameraUnavailable(ScanError):
    """Camera permission denied or no device present."""


class VideoNotReady(ScanError):
    """Capture attempted before the stream delivered a decodable frame."""


class ImageDecodeError(ScanError):
    """An image buffer could not be decoded."""


class OCRInitError(ScanError):
    """The recognition engine or its language model failed to load."""


class OCREmptyResult(ScanError):
    """Recognition ran but produced no text."""
