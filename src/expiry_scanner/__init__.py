"""
Expiry scanner – camera-to-date pipeline for perishable products.

Shared utilities (config, logging, paths) live at the package root; the
date logic is under ``domain`` and the camera/OCR pipeline under
``orchestrator``.
"""

__version__ = "0.1.0"

__all__ = [
    "config",
    "logging",
    "paths",
]
