import json
import logging

from app.middleware.logging_config import JSONFormatter, ReadableFormatter


def _record(**extra):
    record = logging.LogRecord(
        "app.services.backfill_service", logging.INFO, __file__, 10,
        "Backfill applied on %s", ("tasks",), None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_forwards_repair_context():
    line = JSONFormatter().format(_record(table="tasks", mode="apply", tenant_id=7))

    entry = json.loads(line)
    assert entry["message"] == "Backfill applied on tasks"
    assert entry["table"] == "tasks"
    assert entry["mode"] == "apply"
    assert entry["tenant_id"] == 7
    assert "record_id" not in entry


def test_readable_formatter_tags_table_and_mode():
    line = ReadableFormatter().format(_record(table="tasks", mode="dry_run"))

    assert "<tasks> [dry_run] Backfill applied on tasks" in line
