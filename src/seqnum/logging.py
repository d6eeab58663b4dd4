import logging
from collections.abc import MutableMapping
from typing import Any

import structlog

SERVICE_NAME = "seqnum"


def add_service_name(_logger: Any, _method_name: str, event_dict: MutableMapping[str, Any]) -> MutableMapping[str, Any]:
    """Tag every event so numbering logs can be told apart in shared output."""
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def setup_logging(debug: bool) -> None:
    log_level = logging.DEBUG if debug else logging.INFO

    logging.basicConfig(
        level=log_level,
        format="%(message)s",
    )

    # Driver chatter drowns out allocation events
    for name in ("pymongo", "pymongo.topology", "pymongo.connection", "pymongo.command"):
        logging.getLogger(name).setLevel(logging.WARNING)
    # Per-attempt retry events are debug level; keep them even when the root logger is stricter
    logging.getLogger(SERVICE_NAME).setLevel(log_level)

    processors: list[structlog.types.Processor] = [
        # Carries the prefix bound for the duration of an allocation
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        add_service_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if debug:
        processors.append(structlog.dev.ConsoleRenderer())
    else:
        processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
