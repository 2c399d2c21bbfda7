"""
Unit tests for settings: defaults < environment < CLI flags.
"""

import unittest
from pathlib import Path

from paulscrape.config import DEFAULT_BASE_URL, DEFAULT_SEMESTER, Settings, settings_from_env
from paulscrape.errors import ConfigError


class TestSettings(unittest.TestCase):
    def test_defaults(self) -> None:
        settings = settings_from_env({})
        self.assertEqual(settings.base_url, DEFAULT_BASE_URL)
        self.assertEqual(settings.semester, DEFAULT_SEMESTER)
        self.assertEqual(settings.requests_per_second, 20.0)
        self.assertAlmostEqual(settings.tick_interval, 0.05)
        self.assertIsNone(settings.max_attempts)
        self.assertEqual(settings.backoff_seconds, 0.0)

    def test_environment_overrides_defaults(self) -> None:
        settings = settings_from_env(
            {
                "BASE_URL": "https://paul.test",
                "SEMESTER": "Sommersemester 2024",
                "REQUESTS_PER_SECOND": "5",
                "MAX_ATTEMPTS": "3",
                "SNAPSHOT_PATH": "out/state.json",
            }
        )
        self.assertEqual(settings.base_url, "https://paul.test")
        self.assertEqual(settings.semester, "Sommersemester 2024")
        self.assertAlmostEqual(settings.tick_interval, 0.2)
        self.assertEqual(settings.max_attempts, 3)
        self.assertEqual(settings.snapshot_path, Path("out/state.json"))

    def test_flags_override_environment(self) -> None:
        settings = settings_from_env({"SEMESTER": "Sommersemester 2024"})
        settings = settings.with_overrides(semester="Wintersemester 2024/25", base_url=None)
        self.assertEqual(settings.semester, "Wintersemester 2024/25")
        self.assertEqual(settings.base_url, DEFAULT_BASE_URL)

    def test_invalid_values(self) -> None:
        with self.assertRaises(ConfigError):
            settings_from_env({"REQUESTS_PER_SECOND": "fast"})
        with self.assertRaises(ConfigError):
            settings_from_env({"REQUESTS_PER_SECOND": "0"})
        with self.assertRaises(ConfigError):
            Settings().with_overrides(max_attempts=0)


if __name__ == "__main__":
    unittest.main()
