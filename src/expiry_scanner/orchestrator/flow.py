"""Timer-driven scan loop: capture, preprocess, recognize, parse."""

from __future__ import annotations

import asyncio
import os
import sys
import threading
from collections import deque
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Deque, List, Optional

from ..config import DEFAULT_SCAN_INTERVAL, load_scanner_settings
from ..domain.dates import DateParser, format_date
from ..domain.errors import ImageDecodeError, OCRInitError
from ..domain.models import PreprocessedImage, ScanState
from ..logging import get_logger
from .capture import FrameCapture
from .events import EventChannel
from .ocr import TextRecognizer
from .preprocess import ImagePreprocessor
from .timer import RepeatingTimer

LOG = get_logger("orchestrator-flow")

DEBUG_LOG_SIZE = 10

# Per-tick failures that end the scan; anything else only means "no date this time".
_FATAL_ERRORS = (OCRInitError, ImageDecodeError)


@dataclass
class ScanConfig:
    camera_index: int
    frame_width: int
    frame_height: int
    interval: float
    max_scan_seconds: Optional[float]
    ocr_lang: str
    tesseract_cmd: Optional[str]


def build_scan_config(args: Any, *, script_dir: str) -> ScanConfig:
    """Merge CLI overrides on top of env/.env settings and log the result."""
    settings = load_scanner_settings(script_dir)

    def _pick(name: str, default):
        value = getattr(args, name, None)
        return default if value is None else value

    interval = float(_pick("interval", settings.scan_interval))
    if interval <= 0:
        LOG.warning(f"Tick interval must be positive (got {interval}); using {DEFAULT_SCAN_INTERVAL}")
        interval = DEFAULT_SCAN_INTERVAL
    max_seconds = _pick("max_seconds", settings.max_scan_seconds)
    if max_seconds is not None and max_seconds <= 0:
        LOG.warning(f"Max scan duration must be positive (got {max_seconds}); scanning unbounded")
        max_seconds = None

    config = ScanConfig(
        camera_index=int(_pick("device", settings.camera_index)),
        frame_width=int(_pick("width", settings.frame_width)),
        frame_height=int(_pick("height", settings.frame_height)),
        interval=interval,
        max_scan_seconds=max_seconds,
        ocr_lang=str(_pick("lang", settings.ocr_lang)),
        tesseract_cmd=_pick("tesseract_cmd", settings.tesseract_cmd),
    )

    LOG.info("Scan configuration prepared")
    LOG.info(f"Camera device      : {config.camera_index}")
    LOG.info(f"Target resolution  : {config.frame_width}x{config.frame_height}")
    LOG.info(f"Tick interval      : {config.interval}s")
    LOG.info(f"Max scan duration  : {config.max_scan_seconds or 'unbounded'}")
    LOG.info(f"OCR language       : {config.ocr_lang}")
    return config


class ScanOrchestrator:
    """Drive the scan pipeline on a fixed-interval tick until a date is found.

    State machine: ``Idle -> Starting -> Scanning -> (Detected | Cancelled |
    Failed) -> Idle``. Public operations never raise pipeline errors; they
    surface on :attr:`errors` and in the debug log instead.

    The camera is only touched by one thing at a time: acquisition runs
    inside :meth:`start`, captures run inside a tick, and a release
    requested while either is in flight is deferred until it completes.
    """

    def __init__(
        self,
        *,
        capture: FrameCapture,
        recognizer: TextRecognizer,
        preprocessor: Optional[ImagePreprocessor] = None,
        parser: Optional[DateParser] = None,
        interval: float = 2.0,
        max_scan_seconds: Optional[float] = None,
        on_date_detected: Optional[Callable[[date], None]] = None,
    ) -> None:
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        self._capture = capture
        self._recognizer = recognizer
        self._preprocessor = preprocessor or ImagePreprocessor()
        self._parser = parser or DateParser()
        self.interval = float(interval)
        self.max_scan_seconds = max_scan_seconds
        self.on_date_detected = on_date_detected

        self.debug: EventChannel[str] = EventChannel("scan-debug")
        self.errors: EventChannel[str] = EventChannel("scan-errors")
        self.states: EventChannel[ScanState] = EventChannel("scan-state")
        self.detections: EventChannel[date] = EventChannel("scan-detections")

        self._state = ScanState.IDLE
        self._debug_log: Deque[str] = deque(maxlen=DEBUG_LOG_SIZE)
        self._error: Optional[str] = None
        self._detected_date: Optional[date] = None

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._timer: Optional[RepeatingTimer] = None
        self._deadline: Optional[asyncio.TimerHandle] = None
        self._tick_task: Optional[asyncio.Task] = None
        self._tick_in_flight = False
        self._acquiring = False
        self._stop_requested = False
        self._release_pending = False
        self._session = 0
        self._ocr_thread: Optional[int] = None
        self._done: Optional[asyncio.Future] = None
        self.skipped_ticks = 0

        subscribe = getattr(recognizer, "subscribe", None)
        self._unsubscribe_progress = subscribe(self._on_progress) if callable(subscribe) else None

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------
    @property
    def state(self) -> ScanState:
        return self._state

    @property
    def is_processing(self) -> bool:
        return self._state in (ScanState.STARTING, ScanState.SCANNING)

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def detected_date(self) -> Optional[date]:
        return self._detected_date

    @property
    def debug_log(self) -> List[str]:
        """Recent status lines, newest first."""
        return list(self._debug_log)

    @property
    def timer_active(self) -> bool:
        return self._timer is not None and self._timer.active

    def _set_state(self, state: ScanState) -> None:
        if state is self._state:
            return
        LOG.debug(f"State {self._state.value} -> {state.value}")
        self._state = state
        self.states.emit(state)

    def _log(self, message: str) -> None:
        self._debug_log.appendleft(message)
        LOG.info(message)
        self.debug.emit(message)

    def _on_progress(self, status: str) -> None:
        # Recognizer progress arrives on executor threads; a shared recognizer
        # also reports other orchestrators' calls, which run on other threads.
        if threading.get_ident() != self._ocr_thread:
            return
        loop = self._loop
        if loop is None or loop.is_closed():
            LOG.debug(status)
            return
        try:
            loop.call_soon_threadsafe(self._log, status)
        except RuntimeError as exc:
            LOG.debug(f"Dropped OCR progress '{status}': {exc}")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def start(self) -> bool:
        """Acquire the camera and begin ticking. Returns False if not started."""
        if self._state is not ScanState.IDLE or self._acquiring:
            self._log(f"Scan already {self._state.value}; start ignored")
            return False

        self._acquiring = True
        self._loop = asyncio.get_running_loop()
        self._session += 1
        session = self._session
        self._stop_requested = False
        self._error = None
        self._detected_date = None
        self._debug_log.clear()
        self._set_state(ScanState.STARTING)
        self._log("Starting camera...")

        try:
            if self._tick_task is not None:
                # A tick left over from a cancelled scan releases the camera when it ends.
                await self._tick_task
            self._release_pending = False
            await self._loop.run_in_executor(None, self._capture.start)
        except Exception as exc:
            self._acquiring = False
            self._release_pending = False
            if self._stop_requested or session != self._session:
                return False
            self._fail(f"Camera error: {exc}")
            return False
        self._acquiring = False

        if self._stop_requested or session != self._session:
            self._release_camera()
            self._log("Start cancelled before the camera was ready")
            return False

        self._log("Camera started")
        self._set_state(ScanState.SCANNING)
        try:
            self._timer = RepeatingTimer(self.interval, self._on_timer, name="scan-tick")
            self._timer.start()
            if self.max_scan_seconds:
                self._deadline = self._loop.call_later(self.max_scan_seconds, self._on_deadline)
        except Exception as exc:
            self._fail(f"Scan timer error: {exc}")
            return False
        return True

    def stop(self) -> None:
        """Cancel scanning from any state. Safe to call repeatedly."""
        was_active = self._state is not ScanState.IDLE
        self._teardown()
        if was_active:
            self._set_state(ScanState.CANCELLED)
            self._set_state(ScanState.IDLE)
            self._log("Scanner stopped")
        self._resolve_done(None)

    async def aclose(self) -> None:
        """Stop, wait for any in-flight tick, and detach from the recognizer."""
        self.stop()
        task = self._tick_task
        if task is not None:
            await task
        if self._unsubscribe_progress is not None:
            self._unsubscribe_progress()
            self._unsubscribe_progress = None

    async def __aenter__(self) -> "ScanOrchestrator":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def scan_once(self) -> Optional[date]:
        """Start and wait for the terminal outcome; the date or None."""
        loop = asyncio.get_running_loop()
        done = loop.create_future()
        self._done = done
        if not await self.start():
            self._resolve_done(None)
            return self._detected_date
        return await done

    # ------------------------------------------------------------------
    # Teardown helpers
    # ------------------------------------------------------------------
    def _cancel_timers(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._deadline is not None:
            self._deadline.cancel()
            self._deadline = None

    def _release_camera(self) -> None:
        self._release_pending = False
        try:
            self._capture.stop()
        except Exception as exc:
            LOG.warning(f"Camera release failed: {exc}")

    def _teardown(self) -> None:
        self._stop_requested = True
        self._cancel_timers()
        if self._tick_in_flight or self._acquiring:
            self._release_pending = True
        else:
            self._release_camera()

    def _resolve_done(self, value: Optional[date]) -> None:
        done, self._done = self._done, None
        if done is not None and not done.done():
            done.set_result(value)

    def _fail(self, message: str) -> None:
        self._teardown()
        self._error = message
        LOG.error(message)
        self._log(f"Error: {message}")
        self.errors.emit(message)
        self._set_state(ScanState.FAILED)
        self._set_state(ScanState.IDLE)
        self._resolve_done(None)

    def _finish_detected(self, found: date) -> None:
        self._teardown()
        self._detected_date = found
        self._set_state(ScanState.DETECTED)
        self.detections.emit(found)
        if self.on_date_detected is not None:
            try:
                self.on_date_detected(found)
            except Exception as exc:
                LOG.warning(f"on_date_detected callback failed: {exc}")
        self._set_state(ScanState.IDLE)
        self._resolve_done(found)

    def _on_deadline(self) -> None:
        self._deadline = None
        if self._state is ScanState.SCANNING:
            self._fail(f"No date detected within {self.max_scan_seconds:g}s")

    # ------------------------------------------------------------------
    # Ticks
    # ------------------------------------------------------------------
    def _on_timer(self) -> None:
        if self._stop_requested or self._state is not ScanState.SCANNING:
            return
        if self._tick_in_flight:
            self.skipped_ticks += 1
            LOG.debug("Previous tick still running; skipping this one")
            return
        self._tick_in_flight = True
        self._tick_task = asyncio.get_running_loop().create_task(self._run_tick(self._session))

    async def _run_tick(self, session: int) -> None:
        found: Optional[date] = None
        failure: Optional[str] = None
        try:
            found = await self._process_frame()
        except _FATAL_ERRORS as exc:
            failure = str(exc)
        except Exception as exc:
            LOG.debug(f"Tick failed with {type(exc).__name__}; scanning continues")
            self._log(f"Error: {exc}")
        finally:
            self._tick_in_flight = False
            self._tick_task = None

        if self._stop_requested or session != self._session:
            if self._release_pending:
                self._release_camera()
            return
        if failure is not None:
            self._fail(failure)
        elif found is not None:
            self._finish_detected(found)

    def _detect_dates(self, image: PreprocessedImage) -> List[str]:
        # Runs on an executor thread; marks it as ours for progress forwarding.
        self._ocr_thread = threading.get_ident()
        try:
            return self._recognizer.detect_dates(image)
        finally:
            self._ocr_thread = None

    async def _process_frame(self) -> Optional[date]:
        loop = asyncio.get_running_loop()

        frame = await loop.run_in_executor(None, self._capture.capture_frame)
        self._log(f"Frame captured: {frame.width}x{frame.height}")

        self._log("Preprocessing image...")
        processed = await loop.run_in_executor(None, self._preprocessor.preprocess, frame)

        matches = await loop.run_in_executor(None, self._detect_dates, processed)
        if self._stop_requested:
            return None
        if not matches:
            self._log("No dates found this tick")
            return None
        self._log(f"Dates found: {', '.join(matches)}")

        dates = self._parser.parse_dates(matches)
        best = self._parser.get_most_likely_expiration_date(dates)
        if best is None:
            self._log(f"Parsed {len(dates)} date(s); none plausible")
            return None
        self._log(f"Date selected: {format_date(best)}")
        return best


def create_orchestrator(
    config: ScanConfig,
    *,
    recognizer: Optional[TextRecognizer] = None,
    on_date_detected: Optional[Callable[[date], None]] = None,
) -> ScanOrchestrator:
    """Wire the real camera, preprocessor, OCR and parser from a ScanConfig."""
    capture = FrameCapture(
        config.camera_index,
        width=config.frame_width,
        height=config.frame_height,
    )
    recognizer = recognizer or TextRecognizer(lang=config.ocr_lang, tesseract_cmd=config.tesseract_cmd)
    return ScanOrchestrator(
        capture=capture,
        recognizer=recognizer,
        interval=config.interval,
        max_scan_seconds=config.max_scan_seconds,
        on_date_detected=on_date_detected,
    )


def log_environment_banner() -> None:
    """Print environment information relevant for debugging runs."""

    LOG.info("Starting expiry scanner")
    LOG.info(f"Working directory: {os.getcwd()}")
    LOG.info(f"Python executable: {sys.executable}")
