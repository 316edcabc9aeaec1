import logging
import sys
from functools import lru_cache

from loguru import logger

from config.base import get_settings

from .context import log_context
from .format import NotificationLogFormat

DEVELOPMENT_ENVIRONMENTS = {"dev", "development", "local", "test"}

# uvicorn's reloader and the std logging bridge are too chatty for the console
NOISY_MESSAGES = ("changes detected",)


class InterceptHandler(logging.Handler):
    """Route standard `logging` records (uvicorn, SQLAlchemy, sendgrid) into Loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


def _is_noise(record) -> bool:
    return record["function"] == "callHandlers" or any(
        text in record["message"] for text in NOISY_MESSAGES
    )


def _context_patcher(record) -> None:
    record["extra"].update(log_context.get({}))


@lru_cache(maxsize=1)
def setup_logging() -> None:
    """Configure Loguru sinks for the notification service.

    Three sinks are installed:

    - stdout, colorized in development and JSON-serialized elsewhere;
    - a rotating main log file;
    - a rotating error log file receiving ERROR and above only.

    Standard library loggers are redirected through `InterceptHandler` and
    every record is enriched with the active request/job context.
    """
    settings = get_settings()
    settings.ensure_log_paths()

    logger.remove()

    logging.root.handlers = [InterceptHandler()]
    logging.root.setLevel(settings.logging_level)
    for name in list(logging.root.manager.loggerDict.keys()):
        logging.getLogger(name).handlers = []
        logging.getLogger(name).propagate = True

    is_development = settings.environment.lower() in DEVELOPMENT_ENVIRONMENTS
    error_log_file = str(settings.log_file).replace(".log", "_errors.log")

    handlers_config = [
        {
            "sink": sys.stdout,
            "level": settings.logging_level,
            "colorize": is_development,
            "serialize": not is_development,
            "backtrace": False,
            "diagnose": is_development,
            "filter": lambda record: (
                record["extra"].get("target") != "file" and not _is_noise(record)
            ),
            "format": lambda record: NotificationLogFormat(record).log_console_format(),
        },
        {
            "sink": settings.log_file,
            "level": "INFO",
            "colorize": False,
            "serialize": True,
            "enqueue": True,
            "backtrace": True,
            "diagnose": False,
            "rotation": "10 MB",
            "retention": "10 days",
            "compression": "zip",
            "filter": lambda record: not _is_noise(record),
            "format": lambda record: NotificationLogFormat(record).log_file_format(),
        },
        {
            "sink": error_log_file,
            "level": "ERROR",
            "colorize": False,
            "serialize": True,
            "enqueue": True,
            "backtrace": True,
            "diagnose": False,
            "rotation": "10 MB",
            "retention": "60 days",
            "compression": "zip",
            "format": lambda record: NotificationLogFormat(record).log_file_format(),
        },
    ]

    logger.configure(handlers=handlers_config, patcher=_context_patcher)
