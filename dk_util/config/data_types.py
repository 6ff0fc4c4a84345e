from pathlib import Path
from typing import Final

from pydantic import Field

from dk_util.common.frozen_model import FrozenModel
from dk_util.common.mutable_model import MutableModel
from dk_util.common.primitives import NonEmptyStr
from dk_util.common.primitives import PortNumber
from dk_util.common.primitives import PositiveInt
from dk_util.primitives import LogLevel

DEFAULT_DATA_DIR_NAME: Final[str] = ".dk_util"

LOGS_DIR_NAME: Final[str] = "logs"

EXPORTED_LOGS_DIR_NAME: Final[str] = "exported_logs"

DEFAULT_MAX_FILE_SIZE_BYTES: Final[int] = 10 * 1024 * 1024

DEFAULT_MAX_FILE_COUNT: Final[int] = 5

REMOTE_LOG_SERVICE_TYPE: Final[str] = "_hurricane-log._tcp.local."


class FileLogOptions(FrozenModel):
    """Settings for the rotating log file sink."""

    is_enabled: bool = Field(default=True, description="Whether records are appended to log files")
    min_level: LogLevel = Field(default=LogLevel.INFO, description="Minimum level written to the file")
    max_file_size_bytes: PositiveInt = Field(
        default=PositiveInt(DEFAULT_MAX_FILE_SIZE_BYTES),
        description="Size at which the active file is rotated",
    )
    max_file_count: PositiveInt = Field(
        default=PositiveInt(DEFAULT_MAX_FILE_COUNT),
        description="Number of log files retained on disk",
    )
    log_dir: Path | None = Field(default=None, description="Directory holding log files (default ~/.dk_util/logs)")


class RemoteLogOptions(FrozenModel):
    """Settings for streaming records to a remote collector."""

    is_enabled: bool = Field(default=False, description="Whether records are streamed to a collector")
    min_level: LogLevel = Field(default=LogLevel.DEBUG, description="Minimum level streamed")
    is_auto_discover: bool = Field(default=True, description="Find the collector through mDNS")
    host: NonEmptyStr | None = Field(default=None, description="Collector host when not auto-discovering")
    port: PortNumber | None = Field(default=None, description="Collector port when not auto-discovering")
    path: str | None = Field(default=None, description="WebSocket path appended to ws://host:port")
    service_name: str | None = Field(
        default=None,
        description="Only connect to the discovered service with this name",
    )


class LogRouterConfig(MutableModel):
    """Process-wide logging configuration.

    Mutable so that the router's setters can change filtering at runtime.
    """

    min_level: LogLevel = Field(default=LogLevel.DEBUG, description="Minimum level that is routed at all")
    is_enabled: bool = Field(default=True, description="Master switch for all log output")
    is_timestamp_shown: bool = Field(default=True, description="Prefix lines with <HH:MM:SS.mmm>")
    is_location_shown: bool = Field(default=True, description="Include @file:line of the call site")
    is_color_used: bool = Field(default=True, description="Wrap console lines in ANSI colors")
    include_tags: set[str] = Field(
        default_factory=set,
        description="When non-empty, only records with one of these tags are routed",
    )
    exclude_tags: set[str] = Field(default_factory=set, description="Records with these tags are never routed")
    is_developer_log_enabled: bool = Field(default=False, description="Also forward records to loguru")
    is_state_logging_enabled: bool = Field(
        default=True,
        description="Whether the state engines log their transitions",
    )
    file: FileLogOptions = Field(default_factory=FileLogOptions, description="File sink settings")
    remote: RemoteLogOptions = Field(default_factory=RemoteLogOptions, description="Remote streaming settings")


def get_default_data_dir() -> Path:
    """Return the default data directory for dk_util (~/.dk_util)."""
    return Path.home() / DEFAULT_DATA_DIR_NAME


def get_default_log_dir() -> Path:
    return get_default_data_dir() / LOGS_DIR_NAME


def get_default_export_dir() -> Path:
    return get_default_data_dir() / EXPORTED_LOGS_DIR_NAME
