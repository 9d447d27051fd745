import argparse
import os
import sys

import pytest

# Ensure src/ is importable when tests run from repo root
sys.path.insert(0, os.path.abspath("src"))

from expiry_scanner.config import ScannerSettings, load_scanner_settings
from expiry_scanner.orchestrator.flow import build_scan_config
from expiry_scanner.paths import expand_abs, fix_windows_path_input


KEYS = [
    "EXPIRY_CAMERA_INDEX",
    "EXPIRY_FRAME_WIDTH",
    "EXPIRY_FRAME_HEIGHT",
    "EXPIRY_SCAN_INTERVAL",
    "EXPIRY_MAX_SCAN_SECONDS",
    "EXPIRY_OCR_LANG",
    "TESSERACT_CMD",
]


@pytest.fixture
def clean_env(monkeypatch):
    for key in KEYS:
        monkeypatch.delenv(key, raising=False)
    return monkeypatch


def test_defaults_without_env(tmp_path, clean_env):
    assert load_scanner_settings(str(tmp_path)) == ScannerSettings()


def test_dotenv_is_found_from_subdirectory(tmp_path, clean_env):
    (tmp_path / ".env").write_text("EXPIRY_CAMERA_INDEX=2\nEXPIRY_OCR_LANG=deu\n", encoding="utf-8")
    sub = tmp_path / "src" / "pkg"
    sub.mkdir(parents=True)
    settings = load_scanner_settings(str(sub))
    assert settings.camera_index == 2
    assert settings.ocr_lang == "deu"


def test_environment_wins_over_dotenv(tmp_path, clean_env):
    (tmp_path / ".env").write_text("EXPIRY_SCAN_INTERVAL=3\n", encoding="utf-8")
    clean_env.setenv("EXPIRY_SCAN_INTERVAL", "0.5")
    clean_env.setenv("EXPIRY_MAX_SCAN_SECONDS", "30")
    clean_env.setenv("TESSERACT_CMD", "/usr/local/bin/tesseract")
    settings = load_scanner_settings(str(tmp_path))
    assert settings.scan_interval == 0.5
    assert settings.max_scan_seconds == 30.0
    assert settings.tesseract_cmd == "/usr/local/bin/tesseract"


def test_bad_values_fall_back_to_defaults(tmp_path, clean_env):
    clean_env.setenv("EXPIRY_CAMERA_INDEX", "front")
    clean_env.setenv("EXPIRY_SCAN_INTERVAL", "-1")
    clean_env.setenv("EXPIRY_MAX_SCAN_SECONDS", "soon")
    settings = load_scanner_settings(str(tmp_path))
    assert settings.camera_index == 0
    assert settings.scan_interval == 2.0
    assert settings.max_scan_seconds is None


def test_cli_arguments_override_settings(tmp_path, clean_env):
    clean_env.setenv("EXPIRY_FRAME_WIDTH", "640")
    args = argparse.Namespace(device=1, width=None, height=None, interval=0.25, max_seconds=None, lang=None)
    config = build_scan_config(args, script_dir=str(tmp_path))
    assert config.camera_index == 1
    assert config.frame_width == 640
    assert config.frame_height == 720
    assert config.interval == 0.25
    assert config.max_scan_seconds is None
    assert config.ocr_lang == "eng"
    assert config.tesseract_cmd is None


def test_fix_windows_path_input_strips_quotes():
    assert fix_windows_path_input(' "/tmp/photo.jpg" ') == "/tmp/photo.jpg"
    assert fix_windows_path_input("'/tmp/photo.jpg'") == "/tmp/photo.jpg"


@pytest.mark.skipif(os.name != "nt", reason="drive-letter repair only applies on Windows")
def test_fix_windows_path_input_repairs_drive_letter():
    assert fix_windows_path_input("C:Users\\me\\photo.jpg") == "C:\\Users\\me\\photo.jpg"


@pytest.mark.skipif(os.name == "nt", reason="POSIX home layout")
def test_expand_abs_expands_user_and_vars(monkeypatch):
    monkeypatch.setenv("HOME", "/home/tester")
    monkeypatch.setenv("PHOTO_DIR", "/data/photos")
    assert expand_abs("~/photo.jpg") == "/home/tester/photo.jpg"
    assert expand_abs("$PHOTO_DIR/a.jpg") == "/data/photos/a.jpg"


def test_non_positive_cli_interval_falls_back_to_default(tmp_path, clean_env):
    args = argparse.Namespace(interval=0.0, max_seconds=-5.0)
    config = build_scan_config(args, script_dir=str(tmp_path))
    assert config.interval == 2.0
    assert config.max_scan_seconds is None
