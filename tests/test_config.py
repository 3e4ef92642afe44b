from __future__ import annotations

import os
from unittest import TestCase
from unittest.mock import patch

from pydantic import ValidationError

from margin_manager.config import Settings, get_settings
from margin_manager.models import MarginStrategy


class TestSettings(TestCase):
    def test_aliases_and_normalization(self) -> None:
        settings = Settings(
            MARGIN_ENABLED="false",
            MARGIN_DEFAULT_STRATEGY="adaptive",
            MARGIN_RETENTION_DAYS=7,
            LOG_LEVEL="DEBUG",
        )

        self.assertFalse(settings.margin_enabled)
        self.assertEqual(settings.margin_default_strategy, MarginStrategy.ADAPTIVE)
        self.assertEqual(settings.log_level, "debug")

        config = settings.margin_configuration()
        self.assertFalse(config.enabled)
        self.assertEqual(config.default_strategy, MarginStrategy.ADAPTIVE)
        self.assertEqual(config.retention_period, 7)
        self.assertEqual(config.update_interval, 60_000)

    def test_reads_environment(self) -> None:
        with patch.dict(
            os.environ,
            {"MARGIN_STATUS_EVENT_LIMIT": "5", "MARGIN_TREND_POINTS_LIMIT": "12"},
        ):
            settings = Settings()

        config = settings.margin_configuration()
        self.assertEqual(config.status_event_limit, 5)
        self.assertEqual(config.trend_points_limit, 12)

    def test_rejects_invalid_values(self) -> None:
        with self.assertRaises(ValidationError):
            Settings(MARGIN_RETENTION_DAYS=0)
        with self.assertRaises(ValidationError):
            Settings(LOG_LEVEL="verbose")
        with self.assertRaises(ValidationError):
            Settings(MARGIN_DEFAULT_STRATEGY="reckless")

    def test_get_settings_is_cached(self) -> None:
        get_settings.cache_clear()
        self.addCleanup(get_settings.cache_clear)
        self.assertIs(get_settings(), get_settings())
