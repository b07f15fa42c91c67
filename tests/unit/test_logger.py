"""
Name: Structured Logger Tests

Responsibilities:
  - JSON output enriched with run/request context
  - Sensitive keys redacted, long values truncated
  - Chapter text fields summarized by length
"""

import json
import logging
import sys

import pytest

from enhancer.context import clear_context, set_request_context, set_run_context
from enhancer.crosscutting.logger import JSONFormatter

pytestmark = pytest.mark.unit


def _record(msg="hello", **extra) -> logging.LogRecord:
    record = logging.LogRecord("enhancer", logging.INFO, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture(autouse=True)
def _reset_context():
    clear_context()
    yield
    clear_context()


def test_output_is_json_with_context():
    set_request_context(request_id="req-1")
    set_run_context(run_id="run-1", content_identity="ab" * 32)

    payload = json.loads(JSONFormatter().format(_record(index=3)))

    assert payload["message"] == "hello"
    assert payload["level"] == "INFO"
    assert payload["request_id"] == "req-1"
    assert payload["run_id"] == "run-1"
    assert payload["content_identity"] == "ab" * 32
    assert payload["index"] == 3


def test_empty_context_keys_are_omitted():
    payload = json.loads(JSONFormatter().format(_record()))

    assert "request_id" not in payload
    assert "run_id" not in payload


def test_sensitive_keys_are_redacted():
    payload = json.loads(
        JSONFormatter().format(
            _record(api_key="AIza-secret", extra_info={"authorization": "Bearer x"})
        )
    )

    assert payload["api_key"] == "***REDACTED***"
    assert payload["extra_info"]["authorization"] == "***REDACTED***"


def test_credential_label_is_logged_as_is():
    payload = json.loads(JSONFormatter().format(_record(credential_label="credential#1")))

    assert payload["credential_label"] == "credential#1"


def test_long_strings_are_truncated():
    payload = json.loads(JSONFormatter().format(_record(chunk_text="x" * 5000)))

    assert len(payload["chunk_text"]) < 5000
    assert payload["chunk_text"].endswith("(truncated)")


def test_exception_info_is_included():
    try:
        raise RuntimeError("kaput")
    except RuntimeError:
        record = _record()
        record.exc_info = sys.exc_info()

    payload = json.loads(JSONFormatter().format(record))

    assert payload["exception"]["type"] == "RuntimeError"
    assert payload["exception"]["message"] == "kaput"


def test_chapter_text_fields_are_reported_by_size():
    payload = json.loads(
        JSONFormatter().format(
            _record(original_text="a long chapter body", prompt="x" * 40)
        )
    )

    assert payload["original_text"] == "<19 chars>"
    assert payload["prompt"] == "<40 chars>"


def test_backup_keys_setting_is_redacted_inside_nested_values():
    payload = json.loads(
        JSONFormatter().format(_record(settings={"backup_api_keys": "k1,k2"}))
    )

    assert payload["settings"]["backup_api_keys"] == "***REDACTED***"
