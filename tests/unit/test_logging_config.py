"""Tests for pushdispatch/logging_config.py"""

import logging

from pushdispatch.logging_config import endpoint_prefix, redact_push_secrets, setup_logging

LONG_ENDPOINT = "https://fcm.googleapis.com/fcm/send/" + "x" * 150


class TestRedaction:
    def test_endpoint_trimmed(self):
        event = redact_push_secrets(None, "info", {"event": "e", "endpoint": LONG_ENDPOINT})
        assert event["endpoint"] == LONG_ENDPOINT[:60]

    def test_key_material_dropped(self):
        event = redact_push_secrets(None, "info", {"event": "e", "authorization": "vapid t=abc,k=def"})
        assert event["authorization"] == "[redacted]"

    def test_other_fields_untouched(self):
        event = redact_push_secrets(None, "info", {"event": "e", "message_id": "msg_1"})
        assert event == {"event": "e", "message_id": "msg_1"}

    def test_endpoint_prefix_length(self):
        assert endpoint_prefix(LONG_ENDPOINT, length=10) == LONG_ENDPOINT[:10]


class TestSetupLogging:
    def test_level_from_env(self, monkeypatch):
        monkeypatch.setenv("PUSHDISPATCH_LOG_LEVEL", "DEBUG")
        setup_logging()
        assert logging.getLogger().level == logging.DEBUG

    def test_httpx_request_logs_quietened(self):
        setup_logging(level="DEBUG")
        assert logging.getLogger("httpx").level == logging.WARNING
