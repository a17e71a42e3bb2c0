import json
import logging
import sys
from pathlib import Path
from typing import Any, cast

from loguru import logger

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<level>{message}</level>"
)

# Third-party libraries that log every request at INFO through stdlib logging.
NOISY_LOGGERS = ("httpx", "httpcore")


class InterceptHandler(logging.Handler):
    """A custom logging handler to intercept standard logging messages.

    This handler redirects standard logging messages to Loguru.
    """

    def emit(self, record: logging.LogRecord) -> None:
        """Emits a log record to the Loguru logger.

        Args:
            record: The log record to emit.
        """
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = str(record.levelno)

        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = cast(Any, frame.f_back)
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


def _json_formatter(record: dict[str, Any]) -> str:
    """Structures a log record as a single JSON line.

    Loguru treats the returned string as a format template, so the JSON is
    stashed in ``extra`` and referenced from the template.
    """
    log_object = {
        "timestamp": record["time"].isoformat(),
        "level": record["level"].name,
        "message": record["message"],
        "source": {
            "name": record["name"],
            "file": f"{record['file'].name}:{record['line']}",
            "function": record["function"],
        },
        "extra": {
            k: v for k, v in record["extra"].items() if k != "serialized"
        },
    }
    record["extra"]["serialized"] = json.dumps(log_object, default=str)
    return "{extra[serialized]}\n"


def setup_logging(
    console_level: str = "INFO",
    file_level: str = "DEBUG",
    log_dir: Path | None = None,
) -> None:
    """Configures the application-wide Loguru logger.

    This function removes any default handlers, sets up a console sink with
    a readable format, and an optional daily-rotated file sink with JSON
    lines. It also intercepts standard library logging so that httpx output
    goes through the same sinks.

    Args:
        console_level: The minimum log level for console output.
        file_level: The minimum log level for file output.
        log_dir: Directory to store log files. If None, file logging is disabled.
    """
    logger.remove()
    logger.add(
        sys.stderr,
        level=console_level.upper(),
        format=CONSOLE_FORMAT,
        colorize=True,
    )

    if log_dir:
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.warning(f"File logging disabled, cannot create '{log_dir}': {e}")
        else:
            logger.add(
                log_dir / "dukafetch_{time:YYYY-MM-DD}.log",
                level=file_level.upper(),
                format=_json_formatter,
                rotation="00:00",  # New file at midnight
                retention="7 days",
                compression="zip",
                enqueue=True,  # Make logging calls non-blocking
                backtrace=False,  # Keep log files clean
                diagnose=False,
            )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    # httpx reports each request at INFO; the downloader logs them at DEBUG.
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger.debug("Logging configured successfully.")
