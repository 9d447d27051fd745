from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from datetime import date
from typing import List, Optional, Sequence

import cv2
import numpy as np
from PIL import Image, ImageOps

from ..domain.dates import DateParser, format_date
from ..domain.errors import ScanError
from ..domain.models import CapturedFrame, ScanItem
from ..logging import get_logger
from ..orchestrator import (
    BatchDateScanner,
    TextRecognizer,
    build_scan_config,
    create_orchestrator,
    log_environment_banner,
    preprocess,
    scan_band,
)
from ..orchestrator.preprocess import encode_png
from ..paths import expand_abs

LOG = get_logger("cli-main")


def read_image_with_exif(path: str) -> np.ndarray:
    """Load a photo as BGR, honoring EXIF orientation."""
    with Image.open(path) as im:
        im = ImageOps.exif_transpose(im)
        return cv2.cvtColor(np.array(im.convert("RGB")), cv2.COLOR_RGB2BGR)


def _add_camera_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--device", type=int, help="Camera device index (default: EXPIRY_CAMERA_INDEX or 0)")
    p.add_argument("--width", type=int, help="Requested frame width")
    p.add_argument("--height", type=int, help="Requested frame height")
    p.add_argument("--interval", type=float, help="Seconds between scan ticks")
    p.add_argument("--max-seconds", type=float, help="Give up after this many seconds")
    p.add_argument("--lang", help="Tesseract language (default: eng)")
    p.add_argument("--tesseract-cmd", help="Path to the tesseract executable")


def _print_debug(line: str) -> None:
    print(f"  . {line}", file=sys.stderr, flush=True)


def _handle_scan(args: argparse.Namespace) -> int:
    log_environment_banner()
    config = build_scan_config(args, script_dir=os.getcwd())

    async def _run() -> Optional[date]:
        orchestrator = create_orchestrator(config)
        if args.verbose:
            orchestrator.debug.subscribe(_print_debug)
        async with orchestrator:
            found = await orchestrator.scan_once()
            if found is None and orchestrator.error:
                LOG.error(orchestrator.error)
            return found

    try:
        found = asyncio.run(_run())
    except KeyboardInterrupt:
        LOG.info("Scan interrupted by user")
        return 130
    if found is None:
        return 1
    print(found.isoformat())
    return 0


def _parse_item(raw: str) -> ScanItem:
    item_id, sep, name = raw.partition(":")
    if not item_id:
        raise argparse.ArgumentTypeError(f"Invalid item {raw!r}; expected ID[:NAME]")
    return ScanItem(item_id=item_id, name=name if sep else item_id)


def _handle_batch(args: argparse.Namespace) -> int:
    log_environment_banner()
    config = build_scan_config(args, script_dir=os.getcwd())
    items: List[ScanItem] = list(args.item)

    def _on_date(item_id: str, found: date) -> None:
        print(f"{item_id}\t{found.isoformat()}", flush=True)

    async def _run() -> int:
        orchestrator = create_orchestrator(config)
        if args.verbose:
            orchestrator.debug.subscribe(_print_debug)
        scanner = BatchDateScanner(
            orchestrator,
            items,
            on_date_detected=_on_date,
            restart_delay=args.restart_delay,
        )
        async with orchestrator:
            results = await scanner.run()
        return len(results)

    try:
        dated = asyncio.run(_run())
    except KeyboardInterrupt:
        LOG.info("Batch scan interrupted by user")
        return 130
    return 0 if dated == len(items) else 1


def _handle_image(args: argparse.Namespace) -> int:
    source = expand_abs(args.source)
    if not os.path.isfile(source):
        LOG.error(f"Source path not found: {source}")
        return 2
    try:
        bgr = read_image_with_exif(source)
    except OSError as exc:
        LOG.error(f"Could not read image {source}: {exc}")
        return 2
    if args.band:
        h, w = bgr.shape[:2]
        x, y, bw, bh = scan_band(w, h)
        bgr = bgr[y:y + bh, x:x + bw]
    h, w = bgr.shape[:2]
    frame = CapturedFrame(width=w, height=h, data=encode_png(bgr))

    recognizer = TextRecognizer(lang=args.lang or "eng", tesseract_cmd=args.tesseract_cmd)
    parser = DateParser()
    try:
        detection = recognizer.detect(preprocess(frame))
    except ScanError as exc:
        LOG.error(f"Recognition failed: {exc}")
        return 1
    finally:
        recognizer.terminate()

    dates = parser.parse_dates(detection.matches)
    best = parser.get_most_likely_expiration_date(dates)
    out = {
        "text": detection.text,
        "matches": detection.matches,
        "dates": [d.isoformat() for d in dates],
        "expiration_date": best.isoformat() if best else None,
    }
    print(json.dumps(out, ensure_ascii=False))
    return 0 if best else 1


def _handle_parse(args: argparse.Namespace) -> int:
    parser = DateParser()
    for raw in args.text:
        parsed = parser.parse_date(raw)
        shown = format_date(parsed.to_date()) if parsed else "-"
        print(f"{raw!r:>16} -> {shown}")
    best = parser.get_most_likely_expiration_date(parser.parse_dates(args.text))
    if best is None:
        LOG.info("No plausible expiration date among the inputs")
        return 1
    print(f"most likely: {best.isoformat()}")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    provided = list(argv) if argv is not None else sys.argv[1:]
    LOG.debug(f"CLI invoked with arguments: {provided}")

    parser = argparse.ArgumentParser(
        prog="expiry-scan",
        description="Read printed expiry dates from a camera or a photo.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    scan = subparsers.add_parser("scan", help="Scan the live camera until a date is detected.")
    _add_camera_args(scan)
    scan.add_argument("-v", "--verbose", action="store_true", help="Print pipeline status lines to stderr")
    scan.set_defaults(handler=_handle_scan)

    batch = subparsers.add_parser("batch", help="Scan one date per item, advancing automatically.")
    _add_camera_args(batch)
    batch.add_argument(
        "--item",
        action="append",
        required=True,
        type=_parse_item,
        help="Item to date as ID[:NAME]; repeat for each item",
    )
    batch.add_argument("--restart-delay", type=float, default=1.0, help="Pause between items in seconds")
    batch.add_argument("-v", "--verbose", action="store_true", help="Print pipeline status lines to stderr")
    batch.set_defaults(handler=_handle_batch)

    image = subparsers.add_parser("image", help="Detect the expiry date in a still photo.")
    image.add_argument("--source", required=True, help="Path to a JPG/PNG photo")
    image.add_argument("--band", action="store_true", help="Crop the central scan band before OCR")
    image.add_argument("--lang", help="Tesseract language (default: eng)")
    image.add_argument("--tesseract-cmd", help="Path to the tesseract executable")
    image.set_defaults(handler=_handle_image)

    parse = subparsers.add_parser("parse", help="Parse date strings and pick the most likely expiry.")
    parse.add_argument("text", nargs="+")
    parse.set_defaults(handler=_handle_parse)

    args = parser.parse_args(provided)
    code = args.handler(args)
    LOG.debug(f"Subcommand '{args.command}' finished with exit code {code}.")
    return code


if __name__ == "__main__":
    sys.exit(main())
