# pensive/logging_setup.py
import logging
from logging.config import dictConfig
from logging import LogRecord
from pathlib import Path
import contextvars
import os

# ---- Correlation context (set by middleware / worker) ----
request_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("request_id", default="-")
user_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("user_id", default="-")

# Attributes every LogRecord carries; anything else came in through `extra=`
_RESERVED = set(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime", "request_id", "user_id"}


class ContextFilter(logging.Filter):
    def filter(self, record: LogRecord) -> bool:
        record.request_id = request_id_var.get()
        record.user_id = user_id_var.get()
        return True


class ExtraFormatter(logging.Formatter):
    """Standard line format with the `extra=` fields appended as key=value pairs."""

    def format(self, record: LogRecord) -> str:
        line = super().format(record)
        extras = {k: v for k, v in vars(record).items() if k not in _RESERVED and not k.startswith("_")}
        if not extras:
            return line
        pairs = " ".join(f"{k}={v!r}" for k, v in sorted(extras.items()))
        if record.exc_text and record.exc_text in line:
            head, _, tail = line.partition("\n")
            return f"{head} | {pairs}\n{tail}"
        return f"{line} | {pairs}"


# ---- Paths & levels ----
BASE_DIR = Path(__file__).resolve().parents[1]  # project root (folder that contains 'pensive/')
LOG_DIR = Path(os.getenv("LOG_DIR", BASE_DIR / "logs"))
LOG_FILE = LOG_DIR / "pensive.log"

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def setup_logging() -> Path:
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    dictConfig({
        "version": 1,
        "disable_existing_loggers": False,

        "filters": {
            "context": {"()": ContextFilter},
        },

        "formatters": {
            "standard": {
                "()": ExtraFormatter,
                "format": (
                    "%(asctime)s | %(levelname)s | %(name)s | req=%(request_id)s user=%(user_id)s | "
                    "%(message)s (%(filename)s:%(lineno)d)"
                ),
            },
            "uvicorn_access": {
                "format": "%(asctime)s | %(levelname)s | %(message)s"
            },
        },

        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "standard",
                "filters": ["context"],
            },
            "file": {
                "class": "logging.handlers.TimedRotatingFileHandler",
                "formatter": "standard",
                "filters": ["context"],
                "filename": str(LOG_FILE),
                "when": "midnight",
                "backupCount": 14,
                "encoding": "utf-8",
            },
            "uvicorn_console": {
                "class": "logging.StreamHandler",
                "formatter": "uvicorn_access",
            },
        },

        "loggers": {
            # pensive.content, pensive.jobs, ... all propagate up to this one
            "pensive": {"handlers": ["console", "file"], "level": LOG_LEVEL, "propagate": False},

            "apscheduler": {"handlers": ["console", "file"], "level": "INFO", "propagate": False},
            "httpx": {"handlers": ["console", "file"], "level": "WARNING", "propagate": False},

            "uvicorn.error":  {"handlers": ["uvicorn_console", "file"], "level": "INFO", "propagate": False},
            "uvicorn.access": {"handlers": ["uvicorn_console", "file"], "level": "INFO", "propagate": False},
        },

        "root": {"handlers": ["console"], "level": LOG_LEVEL},
    })

    logging.getLogger("pensive").info(f"Logging to: {LOG_FILE}")
    return LOG_FILE


def get_logger(name: str = "pensive") -> logging.Logger:
    return logging.getLogger(name)
