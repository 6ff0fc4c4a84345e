import sys
from typing import Any
from typing import Final

from loguru import logger

from dk_util.log.data_types import LogRecord
from dk_util.primitives import LogLevel

# ANSI color codes that work well on both light and dark backgrounds.
# WARNING_COLOR: Bold gold/orange (256-color code 178)
# ERROR_COLOR: Bold red (256-color code 196)
# DEBUG_COLOR: Solid blue (256-color code 33)
# TEMP_COLOR: Orange (256-color code 208), matching the router's TEMP lines
WARNING_COLOR = "\x1b[1;38;5;178m"
ERROR_COLOR = "\x1b[1;38;5;196m"
DEBUG_COLOR = "\x1b[38;5;33m"
TEMP_COLOR = "\x1b[38;5;208m"
RESET_COLOR = "\x1b[0m"

# Custom loguru level number for TEMP (between DEBUG=10 and INFO=20)
TEMP_LEVEL_NO: Final[int] = 15

DEVELOPER_LOG_DEFAULT_NAME: Final[str] = "dk_util"

_LOGURU_LEVEL_BY_LOG_LEVEL: Final[dict[LogLevel, str]] = {
    LogLevel.DEBUG: "DEBUG",
    LogLevel.INFO: "INFO",
    LogLevel.WARNING: "WARNING",
    LogLevel.ERROR: "ERROR",
    LogLevel.FATAL: "CRITICAL",
    LogLevel.SUCCESS: "SUCCESS",
    LogLevel.TEMP: "TEMP",
}


def register_temp_level() -> None:
    """Register the custom TEMP log level with loguru.

    Called at module import time so that developer-channel records at TEMP level
    always have somewhere to go. Idempotent.
    """
    try:
        logger.level("TEMP")
    except ValueError:
        logger.level("TEMP", no=TEMP_LEVEL_NO, color="<fg #ff8700>")


register_temp_level()


def to_loguru_level(level: LogLevel) -> str:
    return _LOGURU_LEVEL_BY_LOG_LEVEL[level]


def _dynamic_stderr_sink(message: Any) -> None:
    """Loguru sink that always writes to the current sys.stderr."""
    sys.stderr.write(str(message))
    sys.stderr.flush()


def _format_diagnostic_message(record: Any) -> str:
    """Format package diagnostics, coloring warnings, errors and debug output.

    The record parameter is a loguru Record TypedDict, but the type is only available
    in type stubs so we use Any here.
    """
    level_name = record["level"].name
    if level_name == "WARNING":
        return f"{WARNING_COLOR}WARNING: {{message}}{RESET_COLOR}\n"
    if level_name in ("ERROR", "CRITICAL"):
        return f"{ERROR_COLOR}{level_name}: {{message}}{RESET_COLOR}\n"
    if level_name == "TEMP":
        return f"{TEMP_COLOR}TEMP: {{message}}{RESET_COLOR}\n"
    if level_name in ("DEBUG", "TRACE"):
        return f"{DEBUG_COLOR}{{message}}{RESET_COLOR}\n"
    return "{message}\n"


def setup_logging(level: LogLevel = LogLevel.INFO) -> int:
    """Route loguru output (package diagnostics and the developer channel) to stderr.

    Removes any previously installed handlers and returns the id of the new one.
    """
    logger.remove()
    # Use a callable sink so the handler always writes to the current sys.stderr,
    # even if it gets replaced (e.g., by pytest's capture mechanism).
    return logger.add(
        _dynamic_stderr_sink,
        level=to_loguru_level(level),
        format=_format_diagnostic_message,
        colorize=False,
        diagnose=False,
    )


def forward_to_developer_log(record: LogRecord) -> None:
    """Emit a routed record through loguru at the matching level, named by its tag."""
    message = record.message
    if record.error is not None:
        message = f"{message}\nError: {record.error}"
    if record.stack_trace is not None:
        message = f"{message}\nStackTrace:\n{record.stack_trace}"
    logger.bind(name=record.tag or DEVELOPER_LOG_DEFAULT_NAME).log(to_loguru_level(record.level), "{}", message)
