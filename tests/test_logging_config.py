from __future__ import annotations

import logging

from logging_config import ContextualFormatter


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="services.intake",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="Stored reading",
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_formatter_appends_known_context_keys() -> None:
    formatter = ContextualFormatter(fmt="%(message)s")

    output = formatter.format(_record(reading_id=4, topic="iot/telemetry", unrelated="x"))

    assert output == "Stored reading | reading_id=4 topic=iot/telemetry"


def test_formatter_skips_missing_and_none_values() -> None:
    formatter = ContextualFormatter(fmt="%(message)s", extra_keys=["reason"])

    assert formatter.format(_record(reason=None)) == "Stored reading"
