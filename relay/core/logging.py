import logging
import sys
import structlog
from pythonjsonlogger.json import JsonFormatter


def setup_logging(level: str = "INFO", log_format: str = "json"):
    """
    Configure structured logging for the relay.

    structlog builds the event dict; the stdlib handler renders it, as JSON
    through python-json-logger by default, or as console lines for local runs.
    """
    level = level.upper()

    handler = logging.StreamHandler(sys.stdout)
    if log_format == "json":
        handler.setFormatter(
            JsonFormatter(
                "%(asctime)s %(levelname)s %(name)s %(message)s",
                rename_fields={"levelname": "level_name", "asctime": "ts"},
            )
        )
        renderer = structlog.stdlib.render_to_log_kwargs
    else:
        handler.setFormatter(logging.Formatter("%(message)s"))
        renderer = structlog.dev.ConsoleRenderer()

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(getattr(logging, level))

    # botocore is chatty at DEBUG
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("aiobotocore").setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


class ContextLogger:
    """
    Logger with context support for tracing messages through the relay.
    """

    def __init__(self, name: str):
        self.logger = structlog.get_logger(name)

    def with_context(self, **kwargs) -> structlog.BoundLogger:
        """Add context to logger."""
        return self.logger.bind(**kwargs)

    def info(self, event: str, **kwargs):
        self.logger.info(event, **kwargs)

    def error(self, event: str, **kwargs):
        self.logger.error(event, **kwargs)

    def warning(self, event: str, **kwargs):
        self.logger.warning(event, **kwargs)

    def debug(self, event: str, **kwargs):
        self.logger.debug(event, **kwargs)

    def exception(self, event: str, **kwargs):
        """Log at error level with the active exception attached."""
        self.logger.exception(event, **kwargs)


def get_logger(name: str) -> ContextLogger:
    """
    Get a context-aware logger instance.
    """
    return ContextLogger(name)
