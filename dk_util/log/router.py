import asyncio
import sys
from collections.abc import Callable
from collections.abc import Collection
from collections.abc import Iterable
from datetime import datetime
from typing import Any

from loguru import logger

from dk_util.config.data_types import DEFAULT_MAX_FILE_COUNT
from dk_util.config.data_types import DEFAULT_MAX_FILE_SIZE_BYTES
from dk_util.config.data_types import LogRouterConfig
from dk_util.log.data_types import LogRecord
from dk_util.log.file_sink import RotatingFileSink
from dk_util.log.formatting import format_detail_lines
from dk_util.log.formatting import format_log_line
from dk_util.log.formatting import get_caller_location
from dk_util.log.formatting import normalize_source_path
from dk_util.log.formatting import to_pretty_json
from dk_util.log.remote_transport import RemoteLogTransport
from dk_util.log.remote_transport import StatusCallback
from dk_util.primitives import LogLevel
from dk_util.primitives import is_at_least
from dk_util.utils.logging import forward_to_developer_log

ConsoleSink = Callable[[str], None]

TEMP_TAG = "TEMP"


def write_console_line(line: str) -> None:
    """Console sink that always writes to the current sys.stdout."""
    sys.stdout.write(line + "\n")
    sys.stdout.flush()


class LogRouter:
    """Filters log calls and fans the surviving records out to every enabled sink.

    A record passes the global switch, the minimum level and the tag filter, is
    rendered once, and is then written to the console, the rotating file sink, the
    developer channel (loguru) and the remote transport. Each sink is isolated: a
    failing sink is reported through loguru and the others still receive the record.

    File writes are scheduled as tasks when called on a running event loop (they
    run in submission order) and happen inline otherwise. Await drain() before the
    loop shuts down so that scheduled writes are not lost.
    """

    def __init__(
        self,
        config: LogRouterConfig | None = None,
        console_sink: ConsoleSink | None = None,
        file_sink: RotatingFileSink | None = None,
        transport: RemoteLogTransport | None = None,
        caller_skip_files: Collection[str] = (),
    ) -> None:
        self.config = config if config is not None else LogRouterConfig()
        self.console_sink = console_sink if console_sink is not None else write_console_line
        self.file_sink = file_sink if file_sink is not None else RotatingFileSink(log_dir=self.config.file.log_dir)
        self.transport = transport if transport is not None else RemoteLogTransport()
        self._skip_files = frozenset(
            [normalize_source_path(__file__), *(normalize_source_path(path) for path in caller_skip_files)]
        )
        self._pending_file_writes: set[asyncio.Task[None]] = set()

    # -- logging --

    def log(
        self,
        level: LogLevel,
        message: Any,
        tag: str | None = None,
        error: Any = None,
        stack_trace: str | None = None,
    ) -> None:
        config = self.config
        if not config.is_enabled:
            return
        if not is_at_least(level, config.min_level):
            return
        if tag is not None and not isinstance(tag, str):
            tag = _to_text(tag)
        if self._is_tag_filtered(tag):
            return

        record = LogRecord(
            timestamp=datetime.now(),
            level=level,
            message=_to_text(message),
            tag=tag,
            error=None if error is None else _to_text(error),
            stack_trace=None if stack_trace is None else _to_text(stack_trace),
            caller_location=get_caller_location(self._skip_files) if config.is_location_shown else "",
        )
        line = format_log_line(record, config.is_timestamp_shown, config.is_color_used)
        detail_lines = format_detail_lines(record, config.is_color_used)

        try:
            for console_line in (line, *detail_lines):
                self.console_sink(console_line)
        except Exception as e:
            logger.warning("Console log sink failed: {}", e)

        if self.file_sink.is_enabled and is_at_least(level, self.file_sink.min_level):
            self._submit_file_write("\n".join((line, *detail_lines)))

        if config.is_developer_log_enabled:
            try:
                forward_to_developer_log(record)
            except Exception as e:
                logger.warning("Developer log channel failed: {}", e)

        if self.transport.is_enabled and is_at_least(level, config.remote.min_level):
            try:
                self.transport.send_log(record)
            except Exception as e:
                logger.warning("Remote log transport failed: {}", e)

    def debug(self, message: Any, tag: str | None = None, error: Any = None, stack_trace: str | None = None) -> None:
        self.log(LogLevel.DEBUG, message, tag=tag, error=error, stack_trace=stack_trace)

    def info(self, message: Any, tag: str | None = None, error: Any = None, stack_trace: str | None = None) -> None:
        self.log(LogLevel.INFO, message, tag=tag, error=error, stack_trace=stack_trace)

    def success(self, message: Any, tag: str | None = None, error: Any = None, stack_trace: str | None = None) -> None:
        self.log(LogLevel.SUCCESS, message, tag=tag, error=error, stack_trace=stack_trace)

    def warning(self, message: Any, tag: str | None = None, error: Any = None, stack_trace: str | None = None) -> None:
        self.log(LogLevel.WARNING, message, tag=tag, error=error, stack_trace=stack_trace)

    def error(self, message: Any, tag: str | None = None, error: Any = None, stack_trace: str | None = None) -> None:
        self.log(LogLevel.ERROR, message, tag=tag, error=error, stack_trace=stack_trace)

    def fatal(self, message: Any, tag: str | None = None, error: Any = None, stack_trace: str | None = None) -> None:
        self.log(LogLevel.FATAL, message, tag=tag, error=error, stack_trace=stack_trace)

    def temp(self, message: Any, tag: str | None = None, error: Any = None, stack_trace: str | None = None) -> None:
        """Log throwaway debugging output, tagged TEMP unless another tag is given so it is easy to find later."""
        self.log(LogLevel.TEMP, message, tag=tag or TEMP_TAG, error=error, stack_trace=stack_trace)

    def separator(self, char: str = "-", length: int = 80) -> None:
        if not self.config.is_enabled:
            return
        self._write_plain_lines([char * length])

    def title(self, text: str, char: str = "=", length: int = 80) -> None:
        if not self.config.is_enabled:
            return
        rule = char * length
        self._write_plain_lines([rule, text, rule])

    def json(self, value: Any, tag: str | None = None) -> None:
        """Pretty-print a JSON-serializable value at debug level."""
        if not self.config.is_enabled:
            return
        try:
            pretty = to_pretty_json(value)
        except (TypeError, ValueError) as e:
            self.error(f"Failed to format JSON: {e}", tag=tag)
            return
        self.debug(f"JSON Output:\n{pretty}", tag=tag)

    # -- configuration --

    def set_level(self, level: LogLevel) -> None:
        self.config.min_level = level

    def set_enabled(self, is_enabled: bool) -> None:
        self.config.is_enabled = is_enabled

    def set_show_timestamp(self, is_shown: bool) -> None:
        self.config.is_timestamp_shown = is_shown

    def set_show_location(self, is_shown: bool) -> None:
        self.config.is_location_shown = is_shown

    def set_use_color(self, is_used: bool) -> None:
        self.config.is_color_used = is_used

    def set_include_tags(self, tags: Iterable[str]) -> None:
        self.config.include_tags = set(tags)

    def add_include_tag(self, tag: str) -> None:
        self.config.include_tags.add(tag)

    def remove_include_tag(self, tag: str) -> None:
        self.config.include_tags.discard(tag)

    def clear_include_tags(self) -> None:
        self.config.include_tags.clear()

    def get_include_tags(self) -> set[str]:
        return set(self.config.include_tags)

    def set_exclude_tags(self, tags: Iterable[str]) -> None:
        self.config.exclude_tags = set(tags)

    def add_exclude_tag(self, tag: str) -> None:
        self.config.exclude_tags.add(tag)

    def remove_exclude_tag(self, tag: str) -> None:
        self.config.exclude_tags.discard(tag)

    def clear_exclude_tags(self) -> None:
        self.config.exclude_tags.clear()

    def get_exclude_tags(self) -> set[str]:
        return set(self.config.exclude_tags)

    # -- file logging --

    def init_file_log(
        self,
        is_enabled: bool = True,
        min_level: LogLevel = LogLevel.INFO,
        max_file_size_bytes: int = DEFAULT_MAX_FILE_SIZE_BYTES,
        max_file_count: int = DEFAULT_MAX_FILE_COUNT,
    ) -> None:
        self.config.file = self.config.file.model_copy(
            update={
                "is_enabled": is_enabled,
                "min_level": min_level,
                "max_file_size_bytes": max_file_size_bytes,
                "max_file_count": max_file_count,
            }
        )
        self.file_sink.init(
            is_enabled=is_enabled,
            min_level=min_level,
            max_file_size_bytes=max_file_size_bytes,
            max_file_count=max_file_count,
        )

    # -- remote logging --

    async def enable_remote_log(
        self,
        min_level: LogLevel = LogLevel.DEBUG,
        is_auto_discover: bool = True,
        host: str | None = None,
        port: int | None = None,
        path: str | None = None,
        service_name: str | None = None,
    ) -> None:
        self.config.remote = self.config.remote.model_copy(
            update={
                "is_enabled": True,
                "min_level": min_level,
                "is_auto_discover": is_auto_discover,
                "host": host,
                "port": port,
                "path": path,
                "service_name": service_name,
            }
        )
        await self.transport.enable(
            is_auto_discover=is_auto_discover,
            host=host,
            port=port,
            path=path,
            service_name=service_name,
        )

    async def disable_remote_log(self) -> None:
        self.config.remote = self.config.remote.model_copy(update={"is_enabled": False})
        await self.transport.disable()

    async def reconnect_remote_log(self) -> None:
        if not self.transport.is_enabled:
            logger.debug("Remote logging is not enabled, nothing to reconnect")
            return
        await self.transport.reconnect()

    def set_remote_status_callback(self, callback: StatusCallback | None) -> None:
        self.transport.set_status_callback(callback)

    @property
    def is_remote_connected(self) -> bool:
        return self.transport.is_connected

    @property
    def is_remote_enabled(self) -> bool:
        return self.transport.is_enabled

    # -- lifecycle --

    async def drain(self) -> None:
        """Wait for scheduled file writes and pending remote sends."""
        while self._pending_file_writes:
            await asyncio.gather(*self._pending_file_writes, return_exceptions=True)
        await self.transport.drain()

    async def close(self) -> None:
        await self.transport.disable()
        await self.drain()
        self.file_sink.close()

    # -- internals --

    def _is_tag_filtered(self, tag: str | None) -> bool:
        include_tags = self.config.include_tags
        if not tag:
            return bool(include_tags)
        if tag in self.config.exclude_tags:
            return True
        if include_tags:
            return tag not in include_tags
        return False

    def _write_plain_lines(self, lines: list[str]) -> None:
        try:
            for line in lines:
                self.console_sink(line)
        except Exception as e:
            logger.warning("Console log sink failed: {}", e)
        if self.file_sink.is_enabled:
            self._submit_file_write("\n".join(lines))

    def _submit_file_write(self, text: str) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._write_file(text)
            return
        # Tasks start in creation order and the write itself never yields, so order is preserved
        task = loop.create_task(self._write_file_async(text))
        self._pending_file_writes.add(task)
        task.add_done_callback(self._pending_file_writes.discard)

    async def _write_file_async(self, text: str) -> None:
        self._write_file(text)

    def _write_file(self, text: str) -> None:
        try:
            self.file_sink.write(text)
        except Exception as e:
            logger.warning("File log sink failed: {}", e)


def _to_text(value: Any) -> str:
    try:
        return str(value)
    except Exception as e:
        logger.warning("Cannot render {} for logging: {}", type(value).__name__, e)
        return f"<unprintable {type(value).__name__}>"


_default_router: LogRouter | None = None


def get_default_router() -> LogRouter:
    """Return the process-wide router, creating one with default settings on first use."""
    global _default_router
    if _default_router is None:
        _default_router = LogRouter()
    return _default_router


def set_default_router(router: LogRouter | None) -> None:
    """Replace the process-wide router. Passing None resets it to lazily created defaults."""
    global _default_router
    _default_router = router
