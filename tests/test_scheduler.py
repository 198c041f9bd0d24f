import tempfile
import threading
import unittest
from pathlib import Path
from unittest import mock

from mirrorcal.config_manager import ConfigManager
from mirrorcal.models import SyncResult
from mirrorcal.scheduler import SyncScheduler


class _RecordingEngine:
    def __init__(self) -> None:
        self.triggers: list[str] = []
        self.called = threading.Event()

    def run_once(self, trigger: str = "manual") -> SyncResult:
        self.triggers.append(trigger)
        self.called.set()
        return SyncResult(status="skipped", message="no pairs", duration_ms=0, changes_applied=0, failures=0, trigger=trigger)


class SyncSchedulerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.config_manager = ConfigManager(Path(self.temp_dir.name) / "config.yaml")
        self.engine = _RecordingEngine()
        self.scheduler = SyncScheduler(self.engine, self.config_manager)

    def tearDown(self) -> None:
        self.scheduler.stop()
        self.temp_dir.cleanup()

    def test_startup_then_manual_trigger(self) -> None:
        self.scheduler.start()
        self.assertTrue(self.engine.called.wait(timeout=5))
        self.engine.called.clear()

        self.scheduler.trigger_manual()
        self.assertTrue(self.engine.called.wait(timeout=5))
        self.assertEqual(self.engine.triggers, ["startup", "manual"])

    def test_interval_falls_back_when_config_unreadable(self) -> None:
        with mock.patch.object(self.config_manager, "load", side_effect=OSError("gone")):
            self.assertEqual(self.scheduler._interval_seconds(), 300)

    def test_interval_from_config(self) -> None:
        self.config_manager.update({"sync": {"interval_seconds": 45}})
        self.assertEqual(self.scheduler._interval_seconds(), 45)


if __name__ == "__main__":
    unittest.main()
