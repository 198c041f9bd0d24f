import tempfile
import threading
import unittest
from pathlib import Path
from unittest import mock

from fakes import FakeDestination, FakeSource, make_event

from mirrorcal.accessors import ChangePage
from mirrorcal.config_manager import ConfigManager
from mirrorcal.models import AppConfig
from mirrorcal.state_store import StateStore
from mirrorcal.sync_engine import SyncEngine


class _BlockingSource(FakeSource):
    def __init__(self, responses: list) -> None:
        super().__init__(responses)
        self.entered = threading.Event()
        self.release = threading.Event()

    def list_changes(self, **kwargs):
        self.entered.set()
        self.release.wait(timeout=5)
        return super().list_changes(**kwargs)


def _config(*pair_names: str) -> AppConfig:
    return AppConfig.from_dict(
        {
            "accounts": {"work": {}, "home": {}},
            "pairs": [
                {
                    "name": name,
                    "source_account": "work",
                    "source_calendar": f"{name}-source",
                    "destination_account": "home",
                    "destination_calendar": f"{name}-destination",
                }
                for name in pair_names
            ],
            "sync": {"sleep_seconds": 0},
        }
    )


class SyncEngineRunOnceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.config_manager = ConfigManager(Path(self.temp_dir.name) / "config.yaml")
        self.state_store = StateStore(str(Path(self.temp_dir.name) / "state.db"))
        self.sources: dict[str, FakeSource] = {}
        self.destinations: dict[str, FakeDestination] = {}

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def _factory(self, _config: AppConfig, account_name: str, calendar_id: str):
        if account_name == "work":
            source = self.sources[calendar_id]
            if isinstance(source, Exception):
                raise source
            return source
        return self.destinations.setdefault(calendar_id, FakeDestination())

    def _engine(self) -> SyncEngine:
        return SyncEngine(self.config_manager, self.state_store, accessor_factory=self._factory, sleep=lambda _s: None)

    def test_pairs_run_sequentially_and_persist_cursors(self) -> None:
        self.config_manager.save(_config("first", "second"))
        self.sources["first-source"] = FakeSource([ChangePage(items=[make_event("a1")], next_sync_token="tok-a")])
        self.sources["second-source"] = FakeSource(
            [ChangePage(items=[make_event("b1"), make_event("b2")], next_sync_token="tok-b")]
        )

        engine = self._engine()
        result = engine.run_once(trigger="cli")

        self.assertEqual(result.status, "success")
        self.assertEqual(result.changes_applied, 3)
        self.assertEqual([item.pair for item in result.pairs], ["first", "second"])
        self.assertEqual(engine.cursor_store("first").load(), "tok-a")
        self.assertEqual(engine.cursor_store("second").load(), "tok-b")
        self.assertEqual(sorted(self.destinations["second-destination"].events), ["b1", "b2"])

        runs = self.state_store.recent_sync_runs(limit=10)
        self.assertEqual([run["pair"] for run in runs], ["second", "first"])
        self.assertTrue(all(run["status"] == "success" for run in runs))
        actions = [event["action"] for event in self.state_store.recent_audit_events(limit=10)]
        self.assertEqual(actions.count("insert"), 3)

    def test_fatal_pair_does_not_stop_next_pair(self) -> None:
        self.config_manager.save(_config("broken", "healthy"))
        self.sources["broken-source"] = RuntimeError("auth failed")
        self.sources["healthy-source"] = FakeSource([ChangePage(items=[make_event("c1")], next_sync_token="tok-c")])

        engine = self._engine()
        result = engine.run_once(trigger="scheduled")

        self.assertEqual(result.status, "partial")
        self.assertEqual(result.pairs[0].status, "error")
        self.assertIn("auth failed", result.pairs[0].message)
        self.assertEqual(result.pairs[1].status, "success")
        self.assertEqual(engine.cursor_store("broken").load(), "")
        self.assertEqual(engine.cursor_store("healthy").load(), "tok-c")
        errors = [event for event in self.state_store.recent_audit_events(limit=10) if event["action"] == "run_error"]
        self.assertEqual(len(errors), 1)
        self.assertEqual(errors[0]["pair"], "broken")

    def test_cursor_reset_waits_for_running_pair(self) -> None:
        self.config_manager.save(_config("first"))
        source = _BlockingSource([ChangePage(items=[make_event("a1")], next_sync_token="tok-a")])
        self.sources["first-source"] = source
        engine = self._engine()

        runner = threading.Thread(target=engine.run_once)
        runner.start()
        self.assertTrue(source.entered.wait(timeout=5))
        resetter = threading.Thread(target=engine.reset_cursor, args=("first",))
        resetter.start()
        resetter.join(timeout=0.2)
        self.assertTrue(resetter.is_alive())

        source.release.set()
        runner.join(timeout=5)
        resetter.join(timeout=5)
        self.assertEqual(engine.cursor_store("first").load(), "")

    def test_pair_filter(self) -> None:
        self.config_manager.save(_config("first", "second"))
        self.sources["second-source"] = FakeSource([ChangePage(next_sync_token="tok-b")])
        result = self._engine().run_once(pair_names=["second"])
        self.assertEqual([item.pair for item in result.pairs], ["second"])

    def test_no_pairs_is_skipped(self) -> None:
        result = self._engine().run_once()
        self.assertEqual(result.status, "skipped")
        self.assertEqual(self.state_store.recent_sync_runs(), [])

    def test_invalid_config_is_recorded_as_error(self) -> None:
        config = _config("first")
        config.pairs[0].destination_account = "nobody"
        with mock.patch.object(self.config_manager, "load", return_value=config):
            result = self._engine().run_once()
        self.assertEqual(result.status, "error")
        self.assertIn("unknown account", result.message)
        runs = self.state_store.recent_sync_runs()
        self.assertEqual(runs[0]["pair"], "*")
        self.assertEqual(runs[0]["status"], "error")


if __name__ == "__main__":
    unittest.main()
