import json
import logging

import structlog

from Rehome.config import Settings
from Rehome.logging import redact_settings, setup_logging


def test_redact_settings_masks_database_credentials():
    s = Settings(database_url="postgresql+asyncpg://blog:hunter2@db:5432/rehome")
    red = redact_settings(s)
    assert red["database_url"] == "postgresql+asyncpg://[REDACTED]@db:5432/rehome"
    assert "hunter2" not in json.dumps(red)


def test_redact_settings_keeps_plain_urls():
    s = Settings(database_url="sqlite+aiosqlite:///./rehome.sqlite3")
    assert redact_settings(s)["database_url"] == "sqlite+aiosqlite:///./rehome.sqlite3"


def test_file_handler_writes_json_lines(tmp_path):
    path = tmp_path / "logs" / "rehome.jsonl"
    s = Settings(logging_console="NONE", logging_file="INFO", logging_file_path=str(path))
    try:
        setup_logging(s)
        structlog.contextvars.bind_contextvars(import_run_id="run-1")
        structlog.get_logger("test").info("import.test.event", rows=3)
    finally:
        structlog.contextvars.unbind_contextvars("import_run_id")
        for handler in logging.getLogger().handlers:
            handler.close()
        logging.basicConfig(handlers=[], force=True)
        structlog.reset_defaults()

    lines = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
    record = next(r for r in lines if r.get("event") == "import.test.event")
    assert record["rows"] == 3
    assert record["import_run_id"] == "run-1"
    assert record["level"] == "info"
