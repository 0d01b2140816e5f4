"""Tests for the structured log formatter."""

import logging

from persona.utils.log import StructuredFormatter


def _record(message: str, *args, **extra) -> logging.LogRecord:
    record = logging.LogRecord("persona", logging.WARNING, __file__, 1, message, args, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_extras_are_appended_as_sorted_json():
    formatter = StructuredFormatter("%(levelname)s %(message)s")

    output = formatter.format(_record("Skipping %s", "event", line="data: bad", skipped_events=2))

    assert output == 'WARNING Skipping event | {"line": "data: bad", "skipped_events": 2}'


def test_plain_records_have_no_context_suffix():
    formatter = StructuredFormatter("%(message)s")

    assert formatter.format(_record("Initialized")) == "Initialized"


def test_timestamps_are_utc_iso():
    formatter = StructuredFormatter("%(asctime)s %(message)s")

    output = formatter.format(_record("hello"))

    stamp = output.split(" ", 1)[0]
    assert stamp.endswith("Z")
    assert "T" in stamp
