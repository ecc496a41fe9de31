from __future__ import annotations

import logging
import sys

import structlog

from contact_engine.core.config import get_settings

_NOISE_LOGGERS = ("sqlalchemy.engine", "alembic.runtime.migration")


def _pre_chain(time_fmt: str) -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt=time_fmt),
        # Lifts the ``extra={...}`` context passed at stdlib call sites into the event.
        structlog.stdlib.ExtraAdder(),
    ]


def configure_logging(level: str | None = None, json_output: bool | None = None) -> None:
    settings = get_settings()
    level = level or settings.log_level
    json_output = settings.log_json if json_output is None else json_output

    if json_output:
        pre_chain = _pre_chain("iso")
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        pre_chain = _pre_chain("%H:%M:%S")
        renderer = structlog.dev.ConsoleRenderer()

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
        foreign_pre_chain=pre_chain,
    )
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for name in _NOISE_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
