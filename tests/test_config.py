# tests/test_config.py
from __future__ import annotations

import logging

import pytest
from pydantic import ValidationError

from config import Settings, configure_logging


def test_defaults():
    s = Settings.from_env({})
    assert s.amber_threshold_days == 3
    assert s.progress_lag_amber_pct is None
    assert s.write_back is True
    assert s.seed_demo is False
    assert s.log_level == "INFO"


def test_reads_prefixed_variables():
    s = Settings.from_env({
        "WORKSTREAM_AMBER_THRESHOLD_DAYS": "5",
        "WORKSTREAM_PROGRESS_LAG_AMBER_PCT": "12.5",
        "WORKSTREAM_UNMET_CRITERIA_AMBER": "true",
        "WORKSTREAM_WRITE_BACK": "false",
        "WORKSTREAM_LOG_LEVEL": "debug",
        "WORKSTREAM_PORT": "9000",
        "AMBER_THRESHOLD_DAYS": "99",
    })
    assert s.amber_threshold_days == 5
    assert s.progress_lag_amber_pct == 12.5
    assert s.unmet_criteria_amber is True
    assert s.write_back is False
    assert s.log_level == "DEBUG"
    assert s.port == 9000


def test_blank_values_keep_defaults():
    assert Settings.from_env({"WORKSTREAM_AMBER_THRESHOLD_DAYS": "  "}).amber_threshold_days == 3


@pytest.mark.parametrize("name, value", [
    ("WORKSTREAM_AMBER_THRESHOLD_DAYS", "-1"),
    ("WORKSTREAM_PROGRESS_LAG_AMBER_PCT", "150"),
    ("WORKSTREAM_LOG_LEVEL", "LOUD"),
    ("WORKSTREAM_PORT", "0"),
])
def test_invalid_values_are_rejected(name, value):
    with pytest.raises(ValidationError):
        Settings.from_env({name: value})


def test_configure_logging_installs_one_handler():
    root = logging.getLogger()
    before = list(root.handlers)
    level = root.level
    try:
        configure_logging("WARNING")
        configure_logging("DEBUG")
        added = [h for h in root.handlers if h not in before]
        assert len(added) == 1
        assert added[0].level == logging.DEBUG
        assert root.level == logging.DEBUG
    finally:
        for h in root.handlers[:]:
            if h not in before:
                root.removeHandler(h)
        root.setLevel(level)
