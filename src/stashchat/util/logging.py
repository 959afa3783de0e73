from __future__ import annotations

import logging
import sys
from typing import IO, Any

import structlog

_HANDLER_NAME = "stashchat"
_NOISY_LOGGERS = ("httpx", "httpcore", "openai", "botocore", "urllib3")
_CLIP_MARKER = "...[clipped]"


def clip_long_values(max_chars: int) -> structlog.types.Processor:
    """Processor that shortens string fields longer than *max_chars*.

    Events carry user questions and model output; long values are cut so a
    single request cannot flood the log with personal content.
    """

    def _clip(_logger: Any, _method: str, event_dict: structlog.types.EventDict) -> Any:
        for key, value in event_dict.items():
            if key != "event" and isinstance(value, str) and len(value) > max_chars:
                event_dict[key] = value[:max_chars] + _CLIP_MARKER
        return event_dict

    return _clip


def configure_logging(
    json_output: bool = True,
    log_level: str = "INFO",
    stream: IO[str] | None = None,
    max_value_chars: int = 500,
) -> None:
    """Send structlog events through a single stdlib handler on the root logger.

    Request context bound with ``structlog.contextvars`` (user, channel) is
    merged into every event. Reconfiguring swaps the previous handler out.
    """
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        clip_long_values(max_value_chars),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
    ]
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=(
                structlog.processors.JSONRenderer()
                if json_output
                else structlog.dev.ConsoleRenderer(colors=False)
            ),
        )
    )

    root = logging.getLogger()
    root.handlers = [h for h in root.handlers if h.get_name() != _HANDLER_NAME]
    root.addHandler(handler)
    root.setLevel(logging.getLevelName(log_level.upper()) if _known(log_level) else logging.INFO)

    # SDK request logs duplicate our own call-level events
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def _known(level: str) -> bool:
    return isinstance(logging.getLevelName(level.upper()), int)
