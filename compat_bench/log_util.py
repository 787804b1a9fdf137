import logging
from logging import config
from pathlib import Path

LOG_FILE_NAME = "compat_bench.log"


def init(log_level: str, log_dir: str | Path = "logs"):
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    log_config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "format": "%(asctime)s | %(levelname)s | %(message)s (%(filename)s:%(lineno)s)",
            },
            "table": {
                "format": "%(message)s",
            },
            "colorful_console": {
                "format": "%(asctime)s | %(levelname)s: %(message)s (%(filename)s:%(lineno)s)",
                "()": StatusColorFormatter,
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "colorful_console",
            },
            "table_console": {
                "class": "logging.StreamHandler",
                "formatter": "table",
            },
            "file": {
                "class": "logging.handlers.RotatingFileHandler",
                "formatter": "default",
                "filename": str(log_dir.joinpath(LOG_FILE_NAME)),
                "maxBytes": 10485760,  # 10MB
                "backupCount": 5,
                "encoding": "utf8",
            },
        },
        "loggers": {
            "compat_bench": {
                "handlers": ["console", "file"],
                "level": log_level,
                "propagate": False,
            },
            # suite and result tables, printed without decoration
            "no_color": {
                "handlers": ["table_console", "file"],
                "level": log_level,
                "propagate": False,
            },
        },
    }

    config.dictConfig(log_config)


class colors:
    PASS = "\033[92m"
    DEBUG = "\033[94m"
    WARNING = "\033[93m"
    FAIL = "\033[91m"
    ENDC = "\033[0m"


LEVEL_COLORS = {
    "DEBUG": colors.DEBUG,
    "INFO": colors.PASS,
    "WARNING": colors.WARNING,
    "ERROR": colors.FAIL,
    "CRITICAL": colors.FAIL,
}

STATUS_COLORS = {
    "PASS": colors.PASS,
    "SKIPPED": colors.WARNING,
    "NOT_EXECUTED": colors.WARNING,
    "FAIL": colors.FAIL,
    "ERROR": colors.FAIL,
}


def colorize(text: str, color: str | None) -> str:
    if not color:
        return text
    return f"{color}{text}{colors.ENDC}"


class StatusColorFormatter(logging.Formatter):
    """Colors the level name, and the record message when the record carries
    a test status through ``extra={"status": ...}``."""

    def format(self, record: logging.LogRecord) -> str:
        levelname = record.levelname
        msg = record.msg
        record.levelname = colorize(levelname, LEVEL_COLORS.get(levelname))
        status = getattr(record, "status", None)
        if status is not None:
            record.msg = colorize(str(record.msg), STATUS_COLORS.get(str(status)))
        try:
            return super().format(record)
        finally:
            record.levelname = levelname
            record.msg = msg
