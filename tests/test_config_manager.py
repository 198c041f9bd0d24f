import errno
import tempfile
import unittest
from pathlib import Path
from unittest import mock

import yaml

from mirrorcal.config_manager import ConfigManager
from mirrorcal.errors import ConfigurationError
from mirrorcal.models import AppConfig


def _pair_payload(**overrides: object) -> dict:
    payload = {
        "name": "work-to-home",
        "source_account": "work",
        "source_calendar": "primary",
        "destination_account": "home",
        "destination_calendar": "mirror@group.calendar.google.com",
        "description_appendix": "\\n-- mirrored",
    }
    payload.update(overrides)
    return payload


class ConfigManagerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.config_path = Path(self.temp_dir.name) / "conf" / "config.yaml"
        self.manager = ConfigManager(str(self.config_path))

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def test_default_config_written_on_first_use(self) -> None:
        self.assertTrue(self.config_path.exists())
        config = self.manager.load_validated()
        self.assertEqual(config.pairs, [])
        self.assertEqual(config.sync.interval_seconds, 300)

    def test_save_fallback_when_replace_ebusy(self) -> None:
        config = AppConfig.from_dict({"accounts": {"work": {}, "home": {}}, "pairs": [_pair_payload()]})

        original_replace = Path.replace

        def replace_side_effect(self: Path, target: Path) -> Path:
            if str(self).endswith(".tmp"):
                raise OSError(errno.EBUSY, "Device or resource busy")
            return original_replace(self, target)

        with mock.patch("pathlib.Path.replace", new=replace_side_effect):
            self.manager.save(config)

        data = yaml.safe_load(self.config_path.read_text(encoding="utf-8"))
        self.assertEqual(data["pairs"][0]["destination_calendar"], "mirror@group.calendar.google.com")
        self.assertEqual(data["pairs"][0]["description_appendix"], "\\n-- mirrored")
        self.assertFalse(self.config_path.with_suffix(".yaml.tmp").exists())

    def test_update_merges_nested_sections(self) -> None:
        self.manager.update({"accounts": {"work": {}, "home": {}}, "pairs": [_pair_payload()]})
        config = self.manager.update({"sync": {"interval_seconds": 900}})
        self.assertEqual(config.sync.interval_seconds, 900)
        self.assertEqual(config.sync.max_token_resets, 1)
        self.assertEqual(config.pairs[0].description_appendix, "\n-- mirrored")
        self.assertEqual(self.manager.load().pairs[0].name, "work-to-home")

    def test_update_rejects_invalid_config_without_saving(self) -> None:
        before = self.config_path.read_text(encoding="utf-8")
        with self.assertRaises(ConfigurationError):
            self.manager.update({"accounts": {"work": {}}, "pairs": [_pair_payload()]})
        self.assertEqual(self.config_path.read_text(encoding="utf-8"), before)

    def test_duplicate_pair_names_rejected(self) -> None:
        with self.assertRaises(ConfigurationError):
            self.manager.update({"accounts": {"work": {}, "home": {}}, "pairs": [_pair_payload(), _pair_payload()]})


if __name__ == "__main__":
    unittest.main()
