"""Tests for logging setup."""
import json
import logging
import sys

from gqlexporter.main import build_formatter


def make_record(msg, args=(), exc_info=None):
    return logging.LogRecord("gqlexporter.engine", logging.WARNING, __file__, 1, msg, args, exc_info)


def test_json_lines_survive_quotes_and_backslashes():
    record = make_record('query %s failed: "bad" \\ input', ("{ a }",))

    line = build_formatter("json").format(record)
    entry = json.loads(line)

    assert entry["message"] == 'query { a } failed: "bad" \\ input'
    assert entry["level"] == "warning"
    assert entry["logger"] == "gqlexporter.engine"
    assert "timestamp" in entry
    assert "\n" not in line


def test_json_includes_exception():
    try:
        raise ValueError("boom")
    except ValueError:
        record = make_record("scrape failed", exc_info=sys.exc_info())

    entry = json.loads(build_formatter("json").format(record))

    assert entry["message"] == "scrape failed"
    assert "ValueError: boom" in entry["exception"]


def test_text_format():
    line = build_formatter("text").format(make_record("cache miss"))
    assert line.endswith("| WARNING  | gqlexporter.engine | cache miss")
