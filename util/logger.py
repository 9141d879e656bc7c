# util/logger.py
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from typing import Optional
from config.settings import settings

logging.captureWarnings(True)


class ColoredFormatter(logging.Formatter):
    COLORS = {
        "DEBUG": "\033[37m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[41m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        # Keep plain levelname for files; only colorize for console
        if getattr(record, "_colorize", False):
            lvl = record.levelname
            record.levelname = f"{self.COLORS.get(lvl, self.RESET)}{lvl}{self.RESET}"
        return super().format(record)


def init_logger(level_override: Optional[str] = None) -> logging.Logger:
    """
    Idempotent logger init for batch runs:
    - Logs to stderr so per-chapter progress on stdout stays readable.
    - Writes to LOG_DIR/LOG_FILE_NAME only when settings.LOG_TO_FILE is True.
    - Rotates file logs by size (maxBytes/backupCount in settings).
    - Respects settings.LOG_LEVEL unless the CLI passes an override.
    """
    root = logging.getLogger()
    if getattr(root, "_chapter_explainer_inited", False):
        return logging.getLogger(settings.LOGGER_NAME)

    level_name = (level_override or settings.LOG_LEVEL or "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    root.setLevel(level)

    for h in list(root.handlers):
        root.removeHandler(h)

    text_fmt = "%(asctime)s %(levelname)s %(name)s - %(message)s"
    date_fmt = "%Y-%m-%dT%H:%M:%S%z"
    plain = logging.Formatter(text_fmt, datefmt=date_fmt)
    colored = ColoredFormatter(text_fmt, datefmt=date_fmt)

    ch = logging.StreamHandler(sys.stderr)
    ch.setLevel(level)
    ch.setFormatter(colored if sys.stderr.isatty() else plain)

    # Tag console records to colorize levelname, leave files plain
    old_emit = ch.emit

    def emit_with_flag(record: logging.LogRecord):
        record._colorize = True  # type: ignore[attr-defined]
        return old_emit(record)

    ch.emit = emit_with_flag  # type: ignore[assignment]
    root.addHandler(ch)

    if settings.LOG_TO_FILE:
        os.makedirs(settings.LOG_DIR, exist_ok=True)
        fh = RotatingFileHandler(
            os.path.join(settings.LOG_DIR, settings.LOG_FILE_NAME),
            maxBytes=settings.LOG_MAX_BYTES,
            backupCount=settings.LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
        fh.setLevel(level)
        fh.setFormatter(plain)
        root.addHandler(fh)

    # Per-request lines from the HTTP and Redis clients drown out chapter progress.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("redis").setLevel(logging.WARNING)

    root._chapter_explainer_inited = True  # type: ignore[attr-defined]
    logger = logging.getLogger(settings.LOGGER_NAME)
    logger.debug("Logger initialized", extra={"component": "bootstrap"})
    return logger
