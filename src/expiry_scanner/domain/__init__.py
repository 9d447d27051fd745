"""Date logic and value types shared by the scanning pipeline."""

from .dates import DateParser, clean_date_string, format_date
from .errors import (
    CameraUnavailable,
    ImageDecodeError,
    OCREmptyResult,
    OCRInitError,
    ScanError,
    VideoNotReady,
)
from .models import CapturedFrame, ParsedDate, PreprocessedImage, RawDetection, ScanItem, ScanState

__all__ = [
    "DateParser",
    "clean_date_string",
    "format_date",
    "ScanError",
    "CameraUnavailable",
    "VideoNotReady",
    "ImageDecodeError",
    "OCRInitError",
    "OCREmptyResult",
    "CapturedFrame",
    "PreprocessedImage",
    "RawDetection",
    "ParsedDate",
    "ScanItem",
    "ScanState",
]
