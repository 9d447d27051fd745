"""Camera-to-date scanning pipeline."""

from .capture import FrameCapture, scan_band
from .preprocess import ImagePreprocessor, preprocess
from .ocr import TextRecognizer, find_date_strings
from .events import EventChannel
from .timer import RepeatingTimer
from .flow import (
    ScanConfig,
    ScanOrchestrator,
    build_scan_config,
    create_orchestrator,
    log_environment_banner,
)
from .batch import BatchDateScanner

__all__ = [
    "FrameCapture",
    "scan_band",
    "ImagePreprocessor",
    "preprocess",
    "TextRecognizer",
    "find_date_strings",
    "EventChannel",
    "RepeatingTimer",
    "ScanConfig",
    "ScanOrchestrator",
    "build_scan_config",
    "create_orchestrator",
    "log_environment_banner",
    "BatchDateScanner",
]
