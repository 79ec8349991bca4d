# logging_utils.py
import logging
import sys
from pathlib import Path
from typing import Any

from loguru import logger

DEFAULT_LOG_FILENAME = "chardat-exchange.log"
DEFAULT_ROTATION = "10 MB"
DEFAULT_RETENTION = 20  # files

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan> | {message}"
)

# Third-party loggers that are chatty below WARNING
_QUIET_LOGGERS = ("uvicorn.access", "PIL")


class InterceptHandler(logging.Handler):
    """Redirect stdlib logging to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except (ValueError, TypeError):
            level = record.levelno

        frame = logging.currentframe()
        depth = 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back  # type: ignore[assignment]
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


def log_file_path(log_dir: Path | str) -> Path:
    return Path(log_dir) / DEFAULT_LOG_FILENAME


def configure_logging(
    log_dir: Path | str | None,
    console_level: str = "INFO",
    console_json: bool = False,
    rotation: str | int | None = None,
    retention: str | int | None = None,
) -> Path | None:
    """
    Route stdlib logging into loguru and install the console and file sinks.

    Args:
        log_dir: Directory for `chardat-exchange.log`; enables the JSON file sink when set.
        console_level: Console level string (e.g., INFO/DEBUG).
        console_json: Emit console as JSON when True; otherwise colored text.
        rotation: loguru rotation rule (e.g., '10 MB', '1 day'); defaults to 10 MB.
        retention: loguru retention rule (e.g., '1 week', 5); defaults to 20 files.

    Returns:
        Path of the log file, or None when file logging is disabled.
    """
    logger.remove()

    console_kwargs: dict[str, Any] = {
        "level": console_level.upper(),
        "serialize": console_json,
        "enqueue": True,
        "backtrace": False,
        "diagnose": False,
    }
    if not console_json:
        console_kwargs["format"] = CONSOLE_FORMAT
    logger.add(sys.stderr, **console_kwargs)

    log_file = None
    if log_dir is not None:
        log_dir_path = Path(log_dir)
        try:
            log_dir_path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            logger.error(f"Failed to create log directory {log_dir_path}: {exc}")
        else:
            log_file = log_file_path(log_dir_path)
            logger.add(
                log_file,
                level="DEBUG",
                serialize=True,
                rotation=rotation if rotation is not None else DEFAULT_ROTATION,
                retention=retention if retention is not None else DEFAULT_RETENTION,
                enqueue=True,
                backtrace=False,
                diagnose=False,
            )
            logger.info(f"File logging enabled at {log_file}")

    logging.basicConfig(handlers=[InterceptHandler()], level=logging.NOTSET, force=True)
    logging.captureWarnings(True)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return log_file


def shutdown_logging() -> None:
    """Flush enqueued records; call before the process exits."""
    logger.complete()
