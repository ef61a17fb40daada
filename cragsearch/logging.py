import logging
import sys
from typing import Optional

import structlog
from cragsearch.core.config import settings

HANDLER_NAME = "cragsearch"


def use_json_logs() -> bool:
    """LOG_JSON when set, otherwise JSON everywhere except development."""
    if settings.LOG_JSON is not None:
        return settings.LOG_JSON
    return settings.ENV.lower() != "development"


def configure_logging(json_logs: Optional[bool] = None, level: Optional[str] = None):
    """
    Send structlog events and standard library records (uvicorn, httpx, the
    catalog store) through one stdout handler, rendered as JSON lines or for
    the console. Level and format default to the current settings.
    """
    json_logs = use_json_logs() if json_logs is None else json_logs
    level = (level or settings.LOG_LEVEL).upper()

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]

    if json_logs:
        renderers = [structlog.processors.dict_tracebacks, structlog.processors.JSONRenderer()]
    else:
        renderers = [structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=shared_processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta] + renderers,
    )
    handler = logging.StreamHandler(sys.stdout)
    handler.set_name(HANDLER_NAME)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    # Reconfiguring replaces our handler and leaves any others alone
    for existing in list(root.handlers):
        if existing.get_name() == HANDLER_NAME:
            root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    # Route uvicorn's own loggers through the root logger configured above
    for _log in ["uvicorn", "uvicorn.error", "uvicorn.access"]:
        logger = logging.getLogger(_log)
        logger.handlers = []
        logger.propagate = True
