"""
Tests for the JSON log formatter.
"""

import json
import logging

from municipal_ticketing.shared.infrastructure.logging import CustomJsonFormatter, correlation_id_var


def render(**extra) -> dict:
    formatter = CustomJsonFormatter("%(name)s %(levelname)s %(message)s", environment="test")
    record = logging.LogRecord("municipal_ticketing.tests", logging.INFO, __file__, 1, "Ticket resolved", None, None)
    record.__dict__.update(extra)
    return json.loads(formatter.format(record))


class TestCustomJsonFormatter:
    def test_free_text_is_masked(self):
        line = render(ticket_id="t-1", resolution_note="Fixed outside 14 Elm St, call 555-0101")
        assert line["ticket_id"] == "t-1"
        assert line["resolution_note"] == "<38 chars>"
        assert line["environment"] == "test"
        assert "timestamp" in line

    def test_correlation_id_from_context(self):
        token = correlation_id_var.set("req-42")
        try:
            line = render()
        finally:
            correlation_id_var.reset(token)
        assert line["correlation_id"] == "req-42"

    def test_explicit_correlation_id_wins(self):
        token = correlation_id_var.set("req-42")
        try:
            line = render(correlation_id="req-7")
        finally:
            correlation_id_var.reset(token)
        assert line["correlation_id"] == "req-7"

    def test_no_correlation_id_outside_requests(self):
        assert "correlation_id" not in render()
