from __future__ import annotations

import logging
import threading
from typing import Optional

from mirrorcal.config_manager import ConfigManager
from mirrorcal.sync_engine import SyncEngine


logger = logging.getLogger(__name__)


class SyncScheduler:
    def __init__(self, sync_engine: SyncEngine, config_manager: ConfigManager) -> None:
        self.sync_engine = sync_engine
        self.config_manager = config_manager
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._manual_trigger_event = threading.Event()

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="mirrorcal-sync-scheduler", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        self._manual_trigger_event.set()
        if self._thread:
            self._thread.join(timeout=5)

    def trigger_manual(self) -> None:
        self._manual_trigger_event.set()

    def _interval_seconds(self) -> int:
        try:
            return max(30, int(self.config_manager.load().sync.interval_seconds))
        except Exception:
            logger.exception("Unable to read sync interval, using 300 seconds")
            return 300

    def _loop(self) -> None:
        self._run("startup")

        while not self._stop_event.is_set():
            manual = self._manual_trigger_event.wait(timeout=self._interval_seconds())
            self._manual_trigger_event.clear()
            if self._stop_event.is_set():
                break
            self._run("manual" if manual else "scheduled")

    def _run(self, trigger: str) -> None:
        result = self.sync_engine.run_once(trigger=trigger)
        logger.info("Sync run (%s) finished with status %s: %s", trigger, result.status, result.message)
