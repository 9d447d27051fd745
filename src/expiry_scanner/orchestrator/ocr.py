"""Tesseract adapter constrained to digits and slashes."""

from __future__ import annotations

import re
import threading
from dataclasses import dataclass
from typing import Any, List, Optional

import pytesseract

from ..domain.errors import OCREmptyResult, OCRInitError
from ..domain.models import PreprocessedImage, RawDetection
from ..logging import get_logger
from .events import EventChannel
from .preprocess import decode_image

LOG = get_logger("orchestrator-ocr")

CHAR_WHITELIST = "0123456789/"
PAGE_SEGMENTATION_MODE = 7  # single text line

# Separated dates (DD/MM/YY, DD/MM/YYYY, YYYY/MM/DD) anywhere in the text, or a
# bare 6-digit DDMMYY run that is not part of a longer number.
_DATE_RE = re.compile(
    r"(\d{4}[/.\-]\d{1,2}[/.\-]\d{1,2}|\d{1,2}[/.\-]\d{1,2}[/.\-]\d{2,4})"
    r"|(?<!\d)(\d{6})(?!\d)"
)


def find_date_strings(text: str) -> List[str]:
    """Return date-shaped substrings of ``text`` in order of appearance.

    Six-digit runs are rewritten as ``DD/MM/YY``.
    """
    found: List[str] = []
    for m in _DATE_RE.finditer(text or ""):
        separated, compact = m.group(1), m.group(2)
        if separated:
            found.append(separated)
        else:
            found.append(f"{compact[:2]}/{compact[2:4]}/{compact[4:]}")
    return found


@dataclass(frozen=True)
class _Worker:
    lang: str
    config: str
    version: str


class TextRecognizer:
    """Process-wide OCR service with an explicit lifecycle.

    The worker is created on first use and reused until :meth:`terminate`.
    ``engine`` defaults to the ``pytesseract`` module; anything exposing
    ``get_tesseract_version``, ``get_languages`` and ``image_to_string``
    works.
    """

    def __init__(
        self,
        *,
        lang: str = "eng",
        tesseract_cmd: Optional[str] = None,
        engine: Any = pytesseract,
    ) -> None:
        self.lang = lang
        self.tesseract_cmd = tesseract_cmd
        self._engine = engine
        self._worker: Optional[_Worker] = None
        self._lock = threading.Lock()
        self.progress: EventChannel[str] = EventChannel("ocr-progress")

    def subscribe(self, listener):
        return self.progress.subscribe(listener)

    def _emit(self, status: str) -> None:
        LOG.debug(status)
        self.progress.emit(status)

    @property
    def is_initialized(self) -> bool:
        return self._worker is not None

    def initialize(self) -> None:
        with self._lock:
            if self._worker is not None:
                return
            self._emit("Starting OCR engine...")
            if self.tesseract_cmd:
                inner = getattr(self._engine, "pytesseract", None)
                if inner is not None:
                    inner.tesseract_cmd = self.tesseract_cmd
            try:
                version = str(self._engine.get_tesseract_version())
            except Exception as exc:
                raise OCRInitError(f"OCR engine could not start: {exc}") from exc
            self._emit(f"Loading language '{self.lang}'...")
            try:
                languages = self._engine.get_languages(config="")
            except Exception as exc:
                raise OCRInitError(f"Could not list OCR languages: {exc}") from exc
            if self.lang not in languages:
                raise OCRInitError(f"OCR language '{self.lang}' is not installed")
            self._emit("Setting recognition parameters...")
            config = f"--psm {PAGE_SEGMENTATION_MODE} -c tessedit_char_whitelist={CHAR_WHITELIST}"
            self._worker = _Worker(lang=self.lang, config=config, version=version)
            LOG.info(f"OCR worker ready (tesseract {version}, lang={self.lang})")
            self._emit("OCR engine ready")

    def detect_text(self, image: PreprocessedImage) -> str:
        self.initialize()
        worker = self._worker
        if worker is None:
            raise OCRInitError("OCR worker was terminated during recognition")
        self._emit("Recognizing text...")
        img = decode_image(image.data)
        text = self._engine.image_to_string(img, lang=worker.lang, config=worker.config)
        text = (text or "").strip()
        if not text:
            self._emit("No text recognized")
            raise OCREmptyResult("No text recognized in the scan band")
        self._emit(f"Text detected: {text}")
        return text

    def detect(self, image: PreprocessedImage) -> RawDetection:
        text = self.detect_text(image)
        matches = find_date_strings(text)
        for m in matches:
            self._emit(f"Date candidate: {m}")
        if not matches:
            self._emit("No dates found in the text")
        return RawDetection(text=text, matches=matches)

    def detect_dates(self, image: PreprocessedImage) -> List[str]:
        return self.detect(image).matches

    def terminate(self) -> None:
        with self._lock:
            if self._worker is None:
                return
            self._emit("Terminating OCR...")
            self._worker = None
            LOG.info("OCR worker released")
