from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import List


class ScanState(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    SCANNING = "scanning"
    DETECTED = "detected"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass(frozen=True)
class CapturedFrame:
    """One PNG-encoded crop of the scan band."""

    width: int
    height: int
    data: bytes = field(repr=False)


@dataclass(frozen=True)
class PreprocessedImage:
    """Binarized (pure black/white) PNG ready for recognition."""

    width: int
    height: int
    data: bytes = field(repr=False)


@dataclass
class RawDetection:
    text: str
    matches: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class ParsedDate:
    day: int
    month: int
    year: int

    def to_date(self) -> date:
        return date(self.year, self.month, self.day)


@dataclass(frozen=True)
class ScanItem:
    item_id: str
    name: str
