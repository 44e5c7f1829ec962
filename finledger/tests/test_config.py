import logging
import os
import unittest
from unittest import mock

from finledger.config import _currency_from_env, _int_from_env, configure_logging


class SettingsTests(unittest.TestCase):
    def test_currency_is_normalized_or_falls_back(self) -> None:
        with mock.patch.dict(os.environ, {"DEFAULT_CURRENCY": " eur "}):
            self.assertEqual(_currency_from_env("DEFAULT_CURRENCY", "USD"), "EUR")
        with mock.patch.dict(os.environ, {"DEFAULT_CURRENCY": "euro"}):
            self.assertEqual(_currency_from_env("DEFAULT_CURRENCY", "USD"), "USD")

    def test_invalid_integer_falls_back(self) -> None:
        with mock.patch.dict(os.environ, {"BUDGET_ALERT_THRESHOLD": "high"}):
            self.assertEqual(_int_from_env("BUDGET_ALERT_THRESHOLD", 80), 80)
        with mock.patch.dict(os.environ, {"BUDGET_ALERT_THRESHOLD": "75"}):
            self.assertEqual(_int_from_env("BUDGET_ALERT_THRESHOLD", 80), 75)

    def test_configure_logging_uses_requested_level(self) -> None:
        with mock.patch("finledger.config.logging.basicConfig") as basic_config:
            configure_logging("DEBUG")

        self.assertEqual(basic_config.call_args.kwargs["level"], logging.DEBUG)


if __name__ == "__main__":
    unittest.main()
