"""Structlog configuration used by the bridge and the permission server."""

from __future__ import annotations

import logging
import logging.config
import sys

import structlog

from autohand_acp.settings import settings


def configure_logging() -> None:
    """Configure structlog + stdlib logging using env-driven settings.

    Everything is written to stderr (and optionally a file): stdout carries
    the protocol stream.
    """
    log_level_name = settings.log_level()
    log_level = getattr(logging, log_level_name, logging.INFO)
    log_format = settings.log_format()
    log_file = settings.log_file()

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]

    if log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    structlog.configure(
        processors=shared_processors
        + [
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processor=renderer,
        foreign_pre_chain=shared_processors,
    )

    handlers: dict[str, dict] = {
        "default": {
            "class": "logging.StreamHandler",
            "formatter": "default",
            "stream": sys.stderr,
        }
    }
    if log_file:
        handlers["file"] = {
            "class": "logging.FileHandler",
            "formatter": "default",
            "filename": log_file,
            "encoding": "utf-8",
        }
    handler_names = list(handlers)

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {"default": {"()": lambda: formatter}},
            "handlers": handlers,
            "root": {"handlers": handler_names, "level": log_level},
            "loggers": {
                "uvicorn": {"handlers": handler_names, "level": log_level, "propagate": False},
                "uvicorn.error": {
                    "handlers": handler_names,
                    "level": log_level,
                    "propagate": False,
                },
                "uvicorn.access": {
                    "handlers": handler_names,
                    "level": logging.WARNING,
                    "propagate": False,
                },
            },
        }
    )
