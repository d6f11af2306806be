"""Unit tests for the structlog configuration and secret masking."""

import json
import logging
import unittest

import structlog

from src.scomb.logging import REDACTED, redact_secrets, setup_logging


def _render(event_dict: dict) -> str:
    """Run an event through the configured processor chain."""
    for processor in structlog.get_config()["processors"]:
        event_dict = processor(None, "info", event_dict)
    return event_dict


class TestRedactSecrets(unittest.TestCase):
    def test_secret_keys_are_masked(self) -> None:
        event = redact_secrets(
            None,
            "info",
            {"event": "login", "password": "hunter2", "Token": "abc", "username": "s1"},
        )
        self.assertEqual(event["password"], REDACTED)
        self.assertEqual(event["Token"], REDACTED)
        self.assertEqual(event["username"], "s1")
        self.assertEqual(event["event"], "login")

    def test_nested_headers_are_masked(self) -> None:
        headers = {"Cookie": "SESSION=abc", "Accept": "*/*"}
        event = redact_secrets(None, "debug", {"event": "request", "headers": headers})
        self.assertEqual(event["headers"], {"Cookie": REDACTED, "Accept": "*/*"})

    def test_token_prefix_and_missing_values_pass(self) -> None:
        event = redact_secrets(None, "info", {"token_prefix": "abc123", "session": None})
        self.assertEqual(event, {"token_prefix": "abc123", "session": None})


class TestSetupLogging(unittest.TestCase):
    def setUp(self) -> None:
        self.root_handlers = logging.getLogger().handlers
        self.root_level = logging.getLogger().level

    def tearDown(self) -> None:
        structlog.reset_defaults()
        logging.getLogger().handlers = self.root_handlers
        logging.getLogger().setLevel(self.root_level)

    def test_json_lines_never_carry_the_session_token(self) -> None:
        setup_logging(json_output=True, log_level="DEBUG")

        line = _render({"event": "session_saved", "token": "session-token-abc", "user": "s1"})

        self.assertNotIn("session-token-abc", line)
        record = json.loads(line)
        self.assertEqual(record["token"], REDACTED)
        self.assertEqual(record["level"], "info")
        self.assertIn("timestamp", record)

    def test_console_output_masks_passwords(self) -> None:
        setup_logging(json_output=False)
        line = _render({"event": "login_started", "password": "hunter2"})
        self.assertNotIn("hunter2", line)

    def test_log_level_is_applied_to_stdlib(self) -> None:
        setup_logging(log_level="warning")
        root = logging.getLogger()
        self.assertEqual(root.level, logging.WARNING)
        self.assertEqual(len(root.handlers), 1)


if __name__ == "__main__":
    unittest.main()
