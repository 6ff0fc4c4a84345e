import re
import time
from enum import auto
from typing import Any
from typing import Final
from typing import Self

from pydantic import GetCoreSchemaHandler
from pydantic_core import CoreSchema
from pydantic_core import core_schema

from dk_util.common.enums import UpperCaseStrEnum
from dk_util.common.pure import pure
from dk_util.errors import InvalidRunIdError

_RUN_ID_PATTERN: Final[re.Pattern[str]] = re.compile(r"^RUN_\d+_\d{4}$")


class RunId(str):
    """Correlation token shared by every state emitted for one asynchronous invocation.

    Format is RUN_<epoch-millis>_<suffix>, where the suffix is the epoch-microsecond
    count modulo 10000. Two ids generated within the same microsecond tick collide;
    ids generated at least one millisecond apart never do.
    """

    def __new__(cls, value: str) -> Self:
        if not _RUN_ID_PATTERN.match(value):
            raise InvalidRunIdError(value)
        return super().__new__(cls, value)

    @classmethod
    def generate(cls) -> Self:
        now_ns = time.time_ns()
        millis = now_ns // 1_000_000
        suffix = (now_ns // 1_000) % 10_000
        return cls(f"RUN_{millis}_{suffix:04d}")

    @classmethod
    def __get_pydantic_core_schema__(
        cls,
        source_type: Any,
        handler: GetCoreSchemaHandler,
    ) -> CoreSchema:
        return core_schema.no_info_after_validator_function(
            cls,
            core_schema.str_schema(),
            serialization=core_schema.to_string_ser_schema(),
        )


class LogLevel(UpperCaseStrEnum):
    """Severity of a log record.

    DEBUG through FATAL are strictly ordered. SUCCESS and TEMP are side-channel
    levels that filter like INFO and DEBUG respectively but render differently.
    """

    DEBUG = auto()
    INFO = auto()
    WARNING = auto()
    ERROR = auto()
    FATAL = auto()
    SUCCESS = auto()
    TEMP = auto()


# Priority used by every minimum-level filter
_LEVEL_PRIORITY: Final[dict[LogLevel, int]] = {
    LogLevel.DEBUG: 0,
    LogLevel.INFO: 1,
    LogLevel.WARNING: 2,
    LogLevel.ERROR: 3,
    LogLevel.FATAL: 4,
    LogLevel.SUCCESS: 1,
    LogLevel.TEMP: 0,
}

# Value sent to remote collectors as levelValue
_LEVEL_WIRE_VALUE: Final[dict[LogLevel, int]] = {
    LogLevel.DEBUG: 0,
    LogLevel.INFO: 1,
    LogLevel.WARNING: 2,
    LogLevel.ERROR: 3,
    LogLevel.FATAL: 4,
    LogLevel.SUCCESS: 5,
    LogLevel.TEMP: 6,
}

_LEVEL_LABEL: Final[dict[LogLevel, str]] = {
    LogLevel.DEBUG: "🐛 DEBUG",
    LogLevel.INFO: "ℹ️  INFO",
    LogLevel.WARNING: "⚠️  WARN",
    LogLevel.ERROR: "❌ ERROR",
    LogLevel.FATAL: "💀 FATAL",
    LogLevel.SUCCESS: "✅ SUCCESS",
    LogLevel.TEMP: "🔶 TEMP",
}

# ANSI colors: cyan, white, yellow, red, magenta, green, orange (256-color code 208)
_LEVEL_COLOR: Final[dict[LogLevel, str]] = {
    LogLevel.DEBUG: "\x1b[36m",
    LogLevel.INFO: "\x1b[37m",
    LogLevel.WARNING: "\x1b[33m",
    LogLevel.ERROR: "\x1b[31m",
    LogLevel.FATAL: "\x1b[35m",
    LogLevel.SUCCESS: "\x1b[32m",
    LogLevel.TEMP: "\x1b[38;5;208m",
}


@pure
def level_priority(level: LogLevel) -> int:
    return _LEVEL_PRIORITY[level]


@pure
def level_wire_value(level: LogLevel) -> int:
    return _LEVEL_WIRE_VALUE[level]


@pure
def level_label(level: LogLevel) -> str:
    return _LEVEL_LABEL[level]


@pure
def level_color(level: LogLevel) -> str:
    return _LEVEL_COLOR[level]


@pure
def is_at_least(level: LogLevel, minimum: LogLevel) -> bool:
    """Return True if level passes a minimum-level filter set to minimum."""
    return _LEVEL_PRIORITY[level] >= _LEVEL_PRIORITY[minimum]
