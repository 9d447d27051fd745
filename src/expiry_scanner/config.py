import os
from dataclasses import dataclass
from typing import Dict, Optional

from dotenv import dotenv_values

from .logging import get_logger

log = get_logger("config")


DEFAULT_CAMERA_INDEX = 0
DEFAULT_FRAME_WIDTH = 1280
DEFAULT_FRAME_HEIGHT = 720
DEFAULT_SCAN_INTERVAL = 2.0
DEFAULT_OCR_LANG = "eng"


@dataclass
class ScannerSettings:
    camera_index: int = DEFAULT_CAMERA_INDEX
    frame_width: int = DEFAULT_FRAME_WIDTH
    frame_height: int = DEFAULT_FRAME_HEIGHT
    scan_interval: float = DEFAULT_SCAN_INTERVAL
    max_scan_seconds: Optional[float] = None
    ocr_lang: str = DEFAULT_OCR_LANG
    tesseract_cmd: Optional[str] = None


def _find_upwards(start_dir: str, filename: str) -> Optional[str]:
    """Return first matching file found when walking up from start_dir.

    This makes running tools from subdirectories (e.g., `src/`) still find
    a repository-level `.env`.
    """
    d = os.path.abspath(start_dir or ".")
    while True:
        candidate = os.path.join(d, filename)
        if os.path.isfile(candidate):
            return candidate
        parent = os.path.dirname(d)
        if parent == d:
            return None
        d = parent


def _read_dotenv(dotenv_dir: str) -> Dict[str, str]:
    """Return key/value pairs of the nearest .env without mutating os.environ."""
    path = _find_upwards(dotenv_dir, ".env")
    if not path:
        log.debug(f"No .env found starting from: {os.path.abspath(dotenv_dir)}")
        return {}
    env = {k: v.strip() for k, v in dotenv_values(path).items() if v is not None}
    log.debug(f"Loaded {len(env)} key(s) from .env at {path}")
    return env


def _lookup(key: str, env: Dict[str, str]) -> Optional[str]:
    v = os.environ.get(key)
    if v is not None and v.strip():
        return v.strip()
    v = env.get(key)
    return v if v else None


def _as_int(key: str, raw: Optional[str], default: int) -> int:
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        log.warning(f"{key}={raw!r} is not an integer; using {default}")
        return default


def _as_float(key: str, raw: Optional[str], default: Optional[float]) -> Optional[float]:
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        log.warning(f"{key}={raw!r} is not a number; using {default}")
        return default
    if value <= 0:
        log.warning(f"{key} must be positive; using {default}")
        return default
    return value


def load_scanner_settings(dotenv_dir: str) -> ScannerSettings:
    """Return scanner settings from env, then .env, then defaults."""
    env = _read_dotenv(dotenv_dir)
    settings = ScannerSettings(
        camera_index=_as_int("EXPIRY_CAMERA_INDEX", _lookup("EXPIRY_CAMERA_INDEX", env), DEFAULT_CAMERA_INDEX),
        frame_width=_as_int("EXPIRY_FRAME_WIDTH", _lookup("EXPIRY_FRAME_WIDTH", env), DEFAULT_FRAME_WIDTH),
        frame_height=_as_int("EXPIRY_FRAME_HEIGHT", _lookup("EXPIRY_FRAME_HEIGHT", env), DEFAULT_FRAME_HEIGHT),
        scan_interval=_as_float(
            "EXPIRY_SCAN_INTERVAL", _lookup("EXPIRY_SCAN_INTERVAL", env), DEFAULT_SCAN_INTERVAL
        ) or DEFAULT_SCAN_INTERVAL,
        max_scan_seconds=_as_float("EXPIRY_MAX_SCAN_SECONDS", _lookup("EXPIRY_MAX_SCAN_SECONDS", env), None),
        ocr_lang=_lookup("EXPIRY_OCR_LANG", env) or DEFAULT_OCR_LANG,
        tesseract_cmd=_lookup("TESSERACT_CMD", env),
    )
    log.debug(f"Scanner settings: {settings}")
    return settings
