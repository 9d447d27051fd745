"""Scan expiry dates for a list of items, one after another."""

from __future__ import annotations

import asyncio
from datetime import date
from typing import Callable, Dict, List, Optional, Sequence

from ..domain.models import ScanItem
from ..logging import get_logger
from .flow import ScanOrchestrator

LOG = get_logger("orchestrator-batch")

RESTART_DELAY = 1.0


class BatchDateScanner:
    """Tag each detected date with the current item id and move on.

    After a detection the scanner pauses ``restart_delay`` seconds (time to
    swap the product in front of the camera) and restarts the orchestrator
    for the next item. ``on_complete`` runs once after the last item.
    """

    def __init__(
        self,
        orchestrator: ScanOrchestrator,
        items: Sequence[ScanItem],
        *,
        on_date_detected: Callable[[str, date], None],
        on_complete: Optional[Callable[[], None]] = None,
        restart_delay: float = RESTART_DELAY,
    ) -> None:
        self.orchestrator = orchestrator
        self.items: List[ScanItem] = list(items)
        self.on_date_detected = on_date_detected
        self.on_complete = on_complete
        self.restart_delay = restart_delay
        self.results: Dict[str, date] = {}
        self._index = 0
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._restart_handle: Optional[asyncio.TimerHandle] = None
        self._restart_task: Optional[asyncio.Task] = None
        self._finished: Optional[asyncio.Event] = None
        self._closed = False

    @property
    def current_item(self) -> Optional[ScanItem]:
        if 0 <= self._index < len(self.items):
            return self.items[self._index]
        return None

    @property
    def position(self) -> int:
        """1-based index of the item being scanned."""
        return min(self._index + 1, len(self.items))

    @property
    def total(self) -> int:
        return len(self.items)

    @property
    def finished(self) -> bool:
        return self._finished is not None and self._finished.is_set()

    async def open(self) -> None:
        self._index = 0
        self._closed = False
        self.results.clear()
        self._finished = asyncio.Event()
        if not self.items:
            LOG.info("No items to scan")
            self._complete()
            return
        if self._unsubscribe is None:
            stop_detections = self.orchestrator.detections.subscribe(self._on_detected)
            stop_errors = self.orchestrator.errors.subscribe(self._on_error)

            def _unsubscribe() -> None:
                stop_detections()
                stop_errors()

            self._unsubscribe = _unsubscribe
        self._log_current()
        await self.orchestrator.start()

    async def run(self) -> Dict[str, date]:
        """Scan every item and return ``{item_id: date}`` for those detected."""
        await self.open()
        assert self._finished is not None
        try:
            await self._finished.wait()
        finally:
            await self.close()
        return dict(self.results)

    async def close(self) -> None:
        self._closed = True
        if self._restart_handle is not None:
            self._restart_handle.cancel()
            self._restart_handle = None
        self.orchestrator.stop()
        task, self._restart_task = self._restart_task, None
        if task is not None:
            await task
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._finished is not None:
            self._finished.set()

    def _log_current(self) -> None:
        item = self.current_item
        if item is not None:
            LOG.info(f"Scanning item {self.position}/{self.total}: {item.name}")

    def _on_detected(self, found: date) -> None:
        item = self.current_item
        if item is None or self._closed:
            return
        self.results[item.item_id] = found
        LOG.info(f"Date for '{item.name}' ({item.item_id}): {found.isoformat()}")
        try:
            self.on_date_detected(item.item_id, found)
        except Exception as exc:
            LOG.warning(f"on_date_detected failed for {item.item_id}: {exc}")

        if self._index >= len(self.items) - 1:
            self._complete()
            return
        self._index += 1
        loop = asyncio.get_running_loop()
        self._restart_handle = loop.call_later(self.restart_delay, self._restart)

    def _on_error(self, message: str) -> None:
        item = self.current_item
        LOG.warning(f"Batch scan aborted at item {self.position}/{self.total} ({item.name if item else '-'}): {message}")
        if self._finished is not None:
            self._finished.set()

    def _restart(self) -> None:
        self._restart_handle = None
        if self._closed:
            return
        self._log_current()
        self._restart_task = asyncio.get_running_loop().create_task(self.orchestrator.start())

    def _complete(self) -> None:
        LOG.info(f"Batch scan complete: {len(self.results)}/{self.total} item(s) dated")
        if self._finished is not None:
            self._finished.set()
        if self.on_complete is not None:
            try:
                self.on_complete()
            except Exception as exc:
                LOG.warning(f"on_complete callback failed: {exc}")
