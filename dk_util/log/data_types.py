from datetime import datetime
from enum import auto

from pydantic import Field

from dk_util.common.enums import UpperCaseStrEnum
from dk_util.common.frozen_model import FrozenModel
from dk_util.primitives import LogLevel


class LogRecord(FrozenModel):
    """A single log entry, as handed to the file and remote sinks."""

    timestamp: datetime = Field(description="Local time the record was created")
    level: LogLevel = Field(description="Severity of the record")
    message: str = Field(description="Rendered message text")
    tag: str | None = Field(default=None, description="Optional tag used for filtering and display")
    error: str | None = Field(default=None, description="String rendering of the attached error, if any")
    stack_trace: str | None = Field(default=None, description="Attached stack trace text, if any")
    caller_location: str = Field(default="", description="file.py:line of the call site, or empty if unknown")


class FileSinkState(UpperCaseStrEnum):
    """Lifecycle of the rotating file sink."""

    UNINITIALIZED = auto()
    INITIALIZED = auto()


class RemoteTransportState(UpperCaseStrEnum):
    """Lifecycle of the remote log transport."""

    DISABLED = auto()
    DISCOVERING = auto()
    CONNECTING = auto()
    CONNECTED = auto()
    DISCONNECTED = auto()


class LogFileInfo(FrozenModel):
    """Summary of one log file on disk."""

    name: str = Field(description="File name, e.g. app_20240115_1200.log")
    size_bytes: int = Field(description="Current size of the file")
    modified_at: datetime = Field(description="Last modification time")
