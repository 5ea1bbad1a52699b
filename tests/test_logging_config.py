from __future__ import annotations

import logging
from pathlib import Path

import pytest

from logging_config import _DEFAULT_EXTRA_KEYS, ContextualFormatter

ROOT = Path(__file__).resolve().parents[1]
SOURCE_DIRS = ("app", "cli", "datastore", "feed", "services")


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("feed.subscriber", logging.INFO, __file__, 1, "Feed state changed", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_formatter_appends_whitelisted_context() -> None:
    formatter = ContextualFormatter(fmt="%(message)s")

    line = formatter.format(_record(state="subscribed", topic="@msg/sayhi", job_id="abc"))

    assert line == "Feed state changed | topic=@msg/sayhi state=subscribed"


def test_formatter_skips_missing_and_none_values() -> None:
    formatter = ContextualFormatter(fmt="%(message)s", extra_keys=["attempt", "delay"])

    assert formatter.format(_record(attempt=None)) == "Feed state changed"


@pytest.mark.parametrize("key", _DEFAULT_EXTRA_KEYS)
def test_every_context_key_is_logged_somewhere(key: str) -> None:
    sources = [
        path.read_text()
        for directory in SOURCE_DIRS
        for path in (ROOT / directory).rglob("*.py")
    ]

    assert any(f'"{key}":' in text for text in sources)
