import os
import sys
import logging
import unittest
import yaml

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from config import YamlConfig, configure_logging
from db import SettingsRepository
from settings_schema import validate_settings


class SettingsTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.db_path = "test_settings.db"
        self.yaml_path = "test_settings.yaml"
        self._cleanup()

    def tearDown(self) -> None:
        self._cleanup()
        logging.getLogger().setLevel(logging.WARNING)

    def _cleanup(self) -> None:
        for path in (self.db_path, self.yaml_path):
            if os.path.exists(path):
                os.remove(path)

    def test_defaults_written_to_yaml(self) -> None:
        SettingsRepository(self.db_path, self.yaml_path)
        with open(self.yaml_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
        self.assertEqual(data["recap_cache_seconds"], 120.0)
        self.assertEqual(data["default_split"], "full_body")
        self.assertEqual(data["log_level"], "INFO")

    def test_yaml_overrides_database(self) -> None:
        with open(self.yaml_path, "w", encoding="utf-8") as f:
            yaml.safe_dump({"bodyweight_fallback": 180, "default_split": "ppl"}, f)
        settings = SettingsRepository(self.db_path, self.yaml_path)
        self.assertEqual(settings.get_float("bodyweight_fallback", 100), 180.0)
        self.assertEqual(settings.get_text("default_split", "full_body"), "ppl")
        self.assertEqual(settings.get_int("recap_lookback_weeks", 4), 8)
        self.assertEqual(settings.get_float("missing", 1.5), 1.5)

    def test_invalid_yaml_rejected(self) -> None:
        with open(self.yaml_path, "w", encoding="utf-8") as f:
            yaml.safe_dump({"recap_lookback_weeks": 0}, f)
        with self.assertRaises(ValueError):
            SettingsRepository(self.db_path, self.yaml_path)

    def test_set_text_validates_and_syncs(self) -> None:
        settings = SettingsRepository(self.db_path, self.yaml_path)
        settings.set_text("log_level", "DEBUG")
        self.assertEqual(YamlConfig(self.yaml_path).load()["log_level"], "DEBUG")
        with self.assertRaises(ValueError):
            settings.set_text("log_level", "LOUD")
        self.assertEqual(settings.get_text("log_level", "INFO"), "DEBUG")

    def test_yaml_must_be_mapping(self) -> None:
        with open(self.yaml_path, "w", encoding="utf-8") as f:
            f.write("- just\n- a list\n")
        with self.assertRaises(ValueError):
            YamlConfig(self.yaml_path).load()
        self.assertEqual(YamlConfig("does_not_exist.yaml").load(), {})

    def test_validate_settings(self) -> None:
        validate_settings({"rate_limit": 10, "rate_window": 30})
        with self.assertRaises(ValueError):
            validate_settings({"rate_window": 0})
        with self.assertRaises(ValueError):
            validate_settings({"bodyweight_fallback": -1})

    def test_configure_logging(self) -> None:
        configure_logging("debug")
        self.assertEqual(logging.getLogger().level, logging.DEBUG)
        with self.assertRaises(ValueError):
            configure_logging("chatty")


if __name__ == "__main__":
    unittest.main()
