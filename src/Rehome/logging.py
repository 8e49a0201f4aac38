# logging.py

import logging
import os
from logging.handlers import RotatingFileHandler

import structlog
from structlog.contextvars import merge_contextvars

from Rehome.config import Settings

# Third-party loggers routed through the JSON handlers
_FOREIGN_LOGGERS = ("sqlalchemy", "aiosqlite", "alembic", "asyncio")


def _level(name: str | None, default: int) -> int | None:
    """Resolve a configured level name; None means the handler is off."""
    if not name:
        return default
    if name.upper() == "NONE":
        return None
    return getattr(logging, name.upper(), default)


def _json_formatter() -> structlog.stdlib.ProcessorFormatter:
    # Renders structlog events and plain stdlib records alike, one JSON object per line
    return structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.add_log_level,
            merge_contextvars,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        foreign_pre_chain=[
            structlog.stdlib.add_logger_name,
            structlog.processors.add_log_level,
            merge_contextvars,
        ],
    )


def _handlers(settings: Settings, root_level: int) -> list[logging.Handler]:
    formatter = _json_formatter()
    handlers: list[logging.Handler] = []

    console_level = _level(settings.logging_console, root_level)
    if console_level is not None:
        console = logging.StreamHandler()
        console.setLevel(console_level)
        console.setFormatter(formatter)
        handlers.append(console)

    file_level = _level(settings.logging_file, root_level)
    if file_level is not None:
        path = settings.logging_file_path
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        run_log = RotatingFileHandler(
            path,
            maxBytes=settings.logging_max_bytes,
            backupCount=settings.logging_backup_count,
            encoding="utf-8",
        )
        run_log.setLevel(file_level)
        run_log.setFormatter(formatter)
        handlers.append(run_log)
    return handlers


def setup_logging(settings: Settings | None = None) -> None:
    """Route structlog and stdlib logging into JSON console/file handlers.

    Every event emitted during ``run_import`` carries the ``import_run_id``
    bound in contextvars. Without settings, logs go to the console at INFO.
    """
    settings = settings or Settings(logging_console="INFO", logging_file="NONE")
    root_level = _level(settings.logging_level, logging.INFO) or logging.INFO

    logging.captureWarnings(True)
    logging.basicConfig(level=root_level, handlers=_handlers(settings, root_level), force=True)

    for name in _FOREIGN_LOGGERS:
        lg = logging.getLogger(name)
        lg.handlers = []
        lg.propagate = True
    # SQL statement echo only when debugging an import
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.DEBUG if root_level <= logging.DEBUG else logging.WARNING
    )

    structlog.configure(
        processors=[
            merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def redact_settings(settings: Settings) -> dict:
    """Settings as a dict that is safe to print next to an import summary.

    Any ``*_token``/``*_secret``/``*_key`` field and the credentials part of
    ``database_url`` become "[REDACTED]".
    """
    data = settings.model_dump()
    for k in data:
        if k.endswith(("_token", "_secret", "_key")):
            data[k] = "[REDACTED]"
    url = data.get("database_url") or ""
    scheme, sep, rest = url.partition("://")
    if sep and "@" in rest:
        data["database_url"] = f"{scheme}://[REDACTED]@{rest.rsplit('@', 1)[1]}"
    return data
