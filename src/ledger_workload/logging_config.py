import logging
import logging.config
import os
import sys

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

LOGGING_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "default": {
            "format": "%(asctime)s %(levelname)-6s %(name)s:%(lineno)d %(message)s",
            "datefmt": "%Y-%m-%d %H:%M:%S",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "default",
            "stream": sys.stdout,
        },
    },
    "loggers": {
        "ledger_workload": {
            "level": LOG_LEVEL,
            "handlers": ["console"],
            "propagate": False,
        },
        "uvicorn.access": {
            "level": "WARNING",  # one line per status poll otherwise
            "handlers": ["console"],
            "propagate": False,
        },
        "httpx": {
            "level": "WARNING",
            "handlers": ["console"],
            "propagate": False,
        },
    },
    "root": {
        "level": "WARNING",
        "handlers": ["console"],
    },
}


def setup_logging(level: str | None = None) -> None:
    """Apply the logging configuration, optionally overriding the package level."""
    config = LOGGING_CONFIG
    if level:
        config = {**LOGGING_CONFIG, "loggers": {**LOGGING_CONFIG["loggers"]}}
        config["loggers"]["ledger_workload"] = {**config["loggers"]["ledger_workload"], "level": level.upper()}
    logging.config.dictConfig(config)
    os.environ.setdefault("PYTHONUNBUFFERED", "1")
