import logging
import logging.config
import os
import sys

LOG_LEVEL = os.getenv("LOG_LEVEL", "WARNING").upper()

LOGGING_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "default": {
            "format": "%(asctime)s %(levelname)-6s %(name)8s:%(lineno)d %(message)s",
            "datefmt": "%Y-%m-%d %H:%M:%S",
        },
    },
    "handlers": {
        # stdout belongs to CLI output and the MCP stdio transport
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "default",
            "stream": sys.stderr,
        },
    },
    "loggers": {
        "escrow_walkthrough": {
            "level": LOG_LEVEL,
            "handlers": ["console"],
            "propagate": False,
        },
        "mcp": {
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


def setup_logging(level: str | None = None, log_file: str | None = None):
    """Apply the logging configuration, optionally mirroring to a file."""
    config = {**LOGGING_CONFIG, "handlers": dict(LOGGING_CONFIG["handlers"]),
              "loggers": {k: dict(v) for k, v in LOGGING_CONFIG["loggers"].items()}}
    if level:
        config["loggers"]["escrow_walkthrough"]["level"] = level.upper()
    if log_file:
        config["handlers"]["file"] = {
            "class": "logging.FileHandler",
            "formatter": "default",
            "filename": log_file,
            "mode": "a",
        }
        for logger in config["loggers"].values():
            logger["handlers"] = [*logger["handlers"], "file"]
    logging.config.dictConfig(config)
