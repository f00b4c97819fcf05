import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from plansmith.config import Config, _deep_merge, load_config


class ConfigTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.user_config = Path(self._tmp.name) / "config.yaml"
        patcher = patch("plansmith.config.USER_CONFIG_PATH", self.user_config)
        patcher.start()
        self.addCleanup(patcher.stop)
        self.addCleanup(self._tmp.cleanup)

    def test_defaults_ship_with_the_repo(self):
        config = Config(load_config())
        self.assertEqual(config.regimes["stabilization"]["threshold"], 9.0)
        self.assertEqual(config.selection["max_results"], 4)
        self.assertAlmostEqual(config.call_timeout_seconds, 2.0)
        self.assertAlmostEqual(config.strategy_timeout_seconds, 0.5)

    def test_user_file_overrides_defaults(self):
        self.user_config.write_text("regimes:\n  exploration:\n    threshold: 6.5\n")
        config = Config(load_config())
        self.assertEqual(config.regimes["exploration"]["threshold"], 6.5)
        self.assertEqual(config.regimes["optimization"]["threshold"], 8.5)

    def test_environment_overrides(self):
        env = {
            "PLANSMITH_DATA_DIR": self._tmp.name,
            "PLANSMITH_PORT": "9001",
            "PLANSMITH_HARD_FAIL_ON_ZERO": "true",
            "PLANSMITH_CALL_TIMEOUT": "0.75",
            "PLANSMITH_STRATEGY_TIMEOUT": "bogus",
        }
        with patch.dict(os.environ, env):
            config = Config(load_config())
        self.assertEqual(config.data_dir, Path(self._tmp.name))
        self.assertEqual(config.server["port"], 9001)
        self.assertTrue(config.scoring["hard_fail_on_zero"])
        self.assertAlmostEqual(config.call_timeout_seconds, 0.75)
        self.assertAlmostEqual(config.strategy_timeout_seconds, 0.5)

    def test_data_dir_expands_home(self):
        config = Config({"data_dir": "~/plansmith-data"})
        self.assertEqual(config.data_dir, Path.home() / "plansmith-data")

    def test_deep_merge(self):
        merged = _deep_merge({"a": {"b": 1, "c": 2}, "d": 1}, {"a": {"c": 3}})
        self.assertEqual(merged, {"a": {"b": 1, "c": 3}, "d": 1})


if __name__ == "__main__":
    unittest.main()
