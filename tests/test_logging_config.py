"""Log formatters carry workflow context from service ``extra=`` fields."""

import json
import logging
import sys

import pytest
from flask import Flask

from conftest import REVIEWER_KEY
from pkm_portal.middleware.logging_config import JSONFormatter, ReadableFormatter, configure_logging


def _records(caplog, logger_name):
    return [r for r in caplog.records if r.name == logger_name]


class TestWorkflowContext:
    def test_assignment_log_carries_submission_and_reviewer(self, caplog, assignments, submission, admin):
        with caplog.at_level(logging.INFO, logger="pkm_portal.services.reviewer_assignment"):
            assignments.assign_reviewer(submission["id"], "title", REVIEWER_KEY, admin)

        record = _records(caplog, "pkm_portal.services.reviewer_assignment")[-1]
        entry = json.loads(JSONFormatter().format(record))
        assert entry["submission_id"] == submission["id"]
        assert entry["artifact"] == "title"
        assert entry["reviewer_key"] == REVIEWER_KEY
        assert "override" not in entry

    def test_admin_override_is_marked(self, caplog, assignments, submission, admin):
        assignments.assign_reviewer(submission["id"], "title", REVIEWER_KEY, admin)
        with caplog.at_level(logging.INFO, logger="pkm_portal.services.reviewer_assignment"):
            assignments.submit_review(
                submission["id"], "title", "accepted", "Recorded for the reviewer.", admin,
                on_behalf=True,
            )

        warnings = [r for r in _records(caplog, "pkm_portal.services.reviewer_assignment")
                    if r.levelno == logging.WARNING]
        assert len(warnings) == 1
        entry = json.loads(JSONFormatter().format(warnings[0]))
        assert entry["override"] is True
        assert entry["reviewer_key"] == REVIEWER_KEY
        assert entry["level"] == "WARNING"

    def test_create_log_carries_code(self, caplog, lifecycle, lead, category, open_window):
        with caplog.at_level(logging.INFO, logger="pkm_portal.services.submission_service"):
            detail = lifecycle.create_submission(lead, category_id=category.id,
                                                 title="Smart irrigation for small farms")

        record = _records(caplog, "pkm_portal.services.submission_service")[-1]
        line = ReadableFormatter(color=False).format(record)
        assert f"submission_id={detail['id']}" in line
        assert f"submission_code={detail['code']}" in line


class TestFormatters:
    def _record(self, **extra):
        record = logging.LogRecord("pkm", logging.INFO, __file__, 1, "hello %s", ("world",), None)
        record.__dict__.update(extra)
        return record

    def test_json_skips_absent_context(self):
        entry = json.loads(JSONFormatter().format(self._record(method="GET", caller=None)))
        assert entry["message"] == "hello world"
        assert entry["method"] == "GET"
        assert "caller" not in entry
        assert "submission_id" not in entry

    def test_json_includes_exception(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = logging.LogRecord("pkm", logging.ERROR, __file__, 1, "failed", (), sys.exc_info())
        entry = json.loads(JSONFormatter().format(record))
        assert "RuntimeError: boom" in entry["exception"]

    def test_readable_plain_line(self):
        line = ReadableFormatter(color=False).format(self._record(duration_ms=12.4, artifact="proposal"))
        assert line.endswith("pkm: hello world [artifact=proposal] (12ms)")
        assert "\033[" not in line


@pytest.mark.parametrize("cfg, formatter", [
    ({"DEBUG": False, "TESTING": False}, JSONFormatter),
    ({"DEBUG": True, "TESTING": False}, ReadableFormatter),
    ({"DEBUG": False, "TESTING": True}, ReadableFormatter),
])
def test_configure_picks_formatter(monkeypatch, cfg, formatter):
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    app = Flask("logging-test")
    app.config.update(cfg)
    try:
        configure_logging(app)
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, formatter)
    finally:
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)
