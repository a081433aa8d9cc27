"""Log formatting: JSON lines, readable lines and request stamping."""

import json
import logging
import sys

from flask import g

from buildtrack.middleware.logging_config import (
    JSONFormatter,
    ReadableFormatter,
    RequestContextFilter,
)


def _record(msg="Stage changed", **extra):
    record = logging.LogRecord("buildtrack.services.stage_pipeline", logging.INFO, __file__, 10,
                               msg, None, None, func="advance_stage")
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:
    def test_domain_keys_carried(self):
        line = JSONFormatter().format(_record(guitar_id="g1", run_id="r1", request_id="abc"))
        entry = json.loads(line)
        assert entry["msg"] == "Stage changed"
        assert entry["level"] == "INFO"
        assert entry["guitar_id"] == "g1"
        assert entry["run_id"] == "r1"
        assert entry["request_id"] == "abc"
        assert "recipient" not in entry

    def test_exception_included(self):
        try:
            raise RuntimeError("mailgun down")
        except RuntimeError:
            record = _record()
            record.exc_info = sys.exc_info()
        assert "mailgun down" in json.loads(JSONFormatter().format(record))["exception"]


class TestReadableFormatter:
    def test_context_suffix(self):
        line = ReadableFormatter(colour=False).format(
            _record(guitar_id="g1", event_type="guitar.stage_changed", duration_ms=12.4,
                    request_id="abc"))
        assert "buildtrack.services.stage_pipeline: Stage changed" in line
        assert "[guitar=g1 event=guitar.stage_changed]" in line
        assert line.endswith("12ms #abc")
        assert "\033[" not in line

    def test_plain_line(self):
        line = ReadableFormatter(colour=False).format(_record())
        assert line.endswith("buildtrack.services.stage_pipeline: Stage changed")


class TestRequestContextFilter:
    def test_stamps_request(self, app):
        with app.test_request_context("/api/v1/guitars"):
            g.request_id = "req-1"
            g.jwt_user_id = "uid-1"
            record = _record()
            assert RequestContextFilter().filter(record)
        assert record.request_id == "req-1"
        assert record.user_uid == "uid-1"

    def test_explicit_extra_wins(self, app):
        with app.test_request_context("/api/v1/guitars"):
            g.request_id = "req-1"
            record = _record(user_uid="actor")
            RequestContextFilter().filter(record)
        assert record.user_uid == "actor"

    def test_outside_request(self):
        record = _record()
        assert RequestContextFilter().filter(record)
        assert not hasattr(record, "request_id")
