"""Pure rendering helpers shared by the log router and its sinks."""

import inspect
import json
import os
import re
from collections.abc import Collection
from datetime import datetime
from typing import Any
from typing import Final

from dk_util.common.pure import pure
from dk_util.log.data_types import LogRecord
from dk_util.primitives import level_color
from dk_util.primitives import level_label
from dk_util.primitives import level_wire_value

RESET_COLOR: Final[str] = "\x1b[0m"

_ANSI_ESCAPE_PATTERN: Final[re.Pattern[str]] = re.compile(r"\x1b\[[0-9;]*m")

_THIS_FILE: Final[str] = os.path.normcase(os.path.abspath(__file__))


@pure
def format_time(moment: datetime) -> str:
    """Render a time as HH:MM:SS.mmm."""
    return f"{moment:%H:%M:%S}.{moment.microsecond // 1000:03d}"


@pure
def format_log_line(record: LogRecord, is_timestamp_shown: bool, is_color_used: bool) -> str:
    """Render the main line of a record.

    Shape: <HH:MM:SS.mmm> [ICON LEVEL] #Tag @file.py:line: message
    The location segment is present only when the record carries one.
    """
    parts: list[str] = []
    if is_color_used:
        parts.append(level_color(record.level))
    if is_timestamp_shown:
        parts.append(f"<{format_time(record.timestamp)}> ")
    parts.append(f"[{level_label(record.level)}]")
    if record.tag:
        parts.append(f" #{record.tag}")
    if record.caller_location:
        parts.append(f" @{record.caller_location}")
    parts.append(f": {record.message}")
    if is_color_used:
        parts.append(RESET_COLOR)
    return "".join(parts)


@pure
def format_detail_lines(record: LogRecord, is_color_used: bool) -> list[str]:
    """Render the optional Error and StackTrace lines that follow the main line."""
    color = level_color(record.level) if is_color_used else ""
    reset = RESET_COLOR if is_color_used else ""
    lines: list[str] = []
    if record.error is not None:
        lines.append(f"{color}Error: {record.error}{reset}")
    if record.stack_trace is not None:
        lines.append(f"{color}StackTrace:\n{record.stack_trace}{reset}")
    return lines


@pure
def strip_ansi(text: str) -> str:
    """Remove ANSI color escape sequences."""
    return _ANSI_ESCAPE_PATTERN.sub("", text)


@pure
def to_pretty_json(value: Any) -> str:
    """Render a value as indented JSON. Raises TypeError or ValueError when it is not serializable."""
    return json.dumps(value, indent=2, ensure_ascii=False)


@pure
def build_wire_payload(record: LogRecord) -> dict[str, Any]:
    """Build the JSON object sent to remote collectors for one record."""
    payload: dict[str, Any] = {
        "timestamp": record.timestamp.isoformat(),
        "timestampMs": int(record.timestamp.timestamp() * 1000),
        "level": level_label(record.level),
        "levelValue": level_wire_value(record.level),
        "message": record.message,
    }
    if record.tag:
        payload["tag"] = record.tag
    if record.error is not None:
        payload["error"] = record.error
    if record.stack_trace is not None:
        payload["stackTrace"] = record.stack_trace
    payload["location"] = record.caller_location
    return payload


def normalize_source_path(path: str) -> str:
    return os.path.normcase(os.path.abspath(path))


def get_caller_location(skip_files: Collection[str]) -> str:
    """Return file.py:line of the first stack frame outside the given files.

    skip_files must contain paths normalized with normalize_source_path. Returns an
    empty string when no such frame exists or the stack cannot be inspected.
    """
    try:
        frame = inspect.currentframe()
        try:
            while frame is not None:
                filename = normalize_source_path(frame.f_code.co_filename)
                if filename != _THIS_FILE and filename not in skip_files:
                    return f"{os.path.basename(filename)}:{frame.f_lineno}"
                frame = frame.f_back
        finally:
            del frame
    except Exception:
        return ""
    return ""
