import re
import shutil
from datetime import datetime
from pathlib import Path
from typing import Final
from typing import TextIO

from loguru import logger

from dk_util.config.data_types import DEFAULT_MAX_FILE_COUNT
from dk_util.config.data_types import DEFAULT_MAX_FILE_SIZE_BYTES
from dk_util.config.data_types import get_default_export_dir
from dk_util.config.data_types import get_default_log_dir
from dk_util.log.data_types import FileSinkState
from dk_util.log.data_types import LogFileInfo
from dk_util.log.formatting import strip_ansi
from dk_util.primitives import LogLevel

LOG_FILE_PREFIX: Final[str] = "app_"
LOG_FILE_SUFFIX: Final[str] = ".log"
EXPORT_FILE_PREFIX: Final[str] = "exported_logs_"

_EXPORT_RULE_WIDTH: Final[int] = 80

# app_<YYYYMMDD>_<HHmm>[_<n>].log
_LOG_FILE_NAME_PATTERN: Final[re.Pattern[str]] = re.compile(r"^app_(\d{8}_\d{4})(?:_(\d+))?\.log$")


def _log_file_sort_key(path: Path) -> tuple[int, str, int]:
    """Order log files by modification time, breaking ties by the creation stamp in the name."""
    match = _LOG_FILE_NAME_PATTERN.match(path.name)
    stamp = match.group(1) if match else ""
    ordinal = int(match.group(2)) if match and match.group(2) else 0
    return (path.stat().st_mtime_ns, stamp, ordinal)


def _list_log_files_newest_first(log_dir: Path) -> list[Path]:
    files = [p for p in log_dir.iterdir() if p.is_file() and p.name.endswith(LOG_FILE_SUFFIX)]
    return sorted(files, key=_log_file_sort_key, reverse=True)


def _prune_old_logs(log_dir: Path, max_files: int, keep: Path | None) -> None:
    """Remove the oldest log files so that at most max_files remain.

    Uses least-recently-modified strategy and never removes the file passed as keep.
    Failures during deletion are ignored so that a file removed concurrently, or one
    we lack permission for, does not prevent logging.
    """
    try:
        log_files = _list_log_files_newest_first(log_dir)
    except OSError:
        # If we can't read the directory, just skip pruning
        return

    if keep is not None and keep in log_files:
        log_files.remove(keep)
        log_files.insert(0, keep)

    for old_log in log_files[max_files:]:
        try:
            old_log.unlink()
            logger.debug("Removed old log file {}", old_log)
        except OSError:
            pass


class RotatingFileSink:
    """Appends formatted log lines to a size-capped, count-capped set of dated files.

    The sink owns at most one open file handle at a time. It is inert until init()
    succeeds; an init failure disables it until init() is called again, while a
    failed write is only logged and the sink stays enabled.
    """

    def __init__(self, log_dir: Path | None = None, export_dir: Path | None = None) -> None:
        self.log_dir = log_dir if log_dir is not None else get_default_log_dir()
        self.export_dir = export_dir if export_dir is not None else get_default_export_dir()
        self.is_enabled = False
        self.min_level = LogLevel.INFO
        self.max_file_size_bytes = DEFAULT_MAX_FILE_SIZE_BYTES
        self.max_file_count = DEFAULT_MAX_FILE_COUNT
        self._state = FileSinkState.UNINITIALIZED
        self._active_path: Path | None = None
        self._handle: TextIO | None = None

    @property
    def state(self) -> FileSinkState:
        return self._state

    @property
    def active_path(self) -> Path | None:
        """Path of the file currently receiving writes, if initialized."""
        return self._active_path

    def init(
        self,
        is_enabled: bool = True,
        min_level: LogLevel = LogLevel.INFO,
        max_file_size_bytes: int = DEFAULT_MAX_FILE_SIZE_BYTES,
        max_file_count: int = DEFAULT_MAX_FILE_COUNT,
    ) -> None:
        """Start (or restart) file logging with a fresh dated file."""
        self.is_enabled = is_enabled
        self.min_level = min_level
        self.max_file_size_bytes = max_file_size_bytes
        self.max_file_count = max_file_count

        self._close_handle()
        self._active_path = None
        self._state = FileSinkState.UNINITIALIZED

        if not is_enabled:
            return

        try:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            path = self._next_log_path(datetime.now())
            path.touch()
            _prune_old_logs(self.log_dir, max_file_count, keep=path)
        except OSError as e:
            logger.warning("Failed to initialize log file in {}, file logging disabled: {}", self.log_dir, e)
            self.is_enabled = False
            return

        self._active_path = path
        self._state = FileSinkState.INITIALIZED
        logger.debug("Log file initialized: {}", path)

    def write(self, text: str) -> None:
        """Append one formatted entry (ANSI codes removed), rotating first if the file is full."""
        if not self.is_enabled or self._state != FileSinkState.INITIALIZED or self._active_path is None:
            return

        data = strip_ansi(text) + "\n"
        try:
            if self._is_rotation_needed(len(data.encode("utf-8"))):
                logger.debug("Log file {} reached {} bytes, rotating", self._active_path, self.max_file_size_bytes)
                self.init(
                    is_enabled=True,
                    min_level=self.min_level,
                    max_file_size_bytes=self.max_file_size_bytes,
                    max_file_count=self.max_file_count,
                )
                if self._active_path is None:
                    return

            if self._handle is None:
                self._handle = self._active_path.open("a", encoding="utf-8")
            self._handle.write(data)
            self._handle.flush()
        except OSError as e:
            logger.warning("Failed to write log file {}: {}", self._active_path, e)

    def list_log_files(self) -> list[Path]:
        """Return all log files, most recently modified first."""
        if not self.log_dir.exists():
            return []
        try:
            return _list_log_files_newest_first(self.log_dir)
        except OSError as e:
            logger.warning("Failed to list log files in {}: {}", self.log_dir, e)
            return []

    def describe_log_files(self) -> list[LogFileInfo]:
        infos: list[LogFileInfo] = []
        for path in self.list_log_files():
            try:
                stat = path.stat()
            except OSError:
                continue
            infos.append(
                LogFileInfo(
                    name=path.name,
                    size_bytes=stat.st_size,
                    modified_at=datetime.fromtimestamp(stat.st_mtime),
                )
            )
        return infos

    def clear_all_logs(self) -> None:
        """Delete every log file and return to the uninitialized state."""
        self._close_handle()
        self._active_path = None
        self._state = FileSinkState.UNINITIALIZED
        try:
            if self.log_dir.exists():
                shutil.rmtree(self.log_dir)
                logger.info("Cleared all log files in {}", self.log_dir)
        except OSError as e:
            logger.warning("Failed to clear log files in {}: {}", self.log_dir, e)

    def export_logs(self, destination_dir: Path | None = None) -> Path | None:
        """Merge every log file into one export file and return its path.

        Files are concatenated newest first, after a manifest header, each preceded by
        a delimiter block naming it. Returns None if there is nothing to export or the
        export cannot be written.
        """
        log_files = self.list_log_files()
        if not log_files:
            logger.info("No log files to export")
            return None

        target_dir = destination_dir if destination_dir is not None else self.export_dir
        heavy_rule = "=" * _EXPORT_RULE_WIDTH
        light_rule = "-" * _EXPORT_RULE_WIDTH
        try:
            if self._handle is not None:
                self._handle.flush()
            target_dir.mkdir(parents=True, exist_ok=True)
            now = datetime.now()
            export_path = target_dir / f"{EXPORT_FILE_PREFIX}{now:%Y%m%d_%H%M}{LOG_FILE_SUFFIX}"
            with export_path.open("w", encoding="utf-8") as out:
                out.write(f"{heavy_rule}\n")
                out.write(f"Exported at: {now.isoformat(sep=' ', timespec='seconds')}\n")
                out.write(f"Log file count: {len(log_files)}\n")
                out.write(f"{heavy_rule}\n\n")
                for index, log_file in enumerate(log_files, start=1):
                    modified_at = datetime.fromtimestamp(log_file.stat().st_mtime)
                    out.write(f"{light_rule}\n")
                    out.write(f"File {index}: {log_file.name}\n")
                    out.write(f"Modified at: {modified_at.isoformat(sep=' ', timespec='seconds')}\n")
                    out.write(f"{light_rule}\n")
                    out.write(log_file.read_text(encoding="utf-8", errors="replace"))
                    out.write("\n\n")
        except OSError as e:
            logger.warning("Failed to export log files to {}: {}", target_dir, e)
            return None

        logger.info("Exported {} log files to {}", len(log_files), export_path)
        return export_path

    def close(self) -> None:
        """Release the open file handle. The sink reopens it lazily on the next write."""
        self._close_handle()

    def _is_rotation_needed(self, incoming_bytes: int) -> bool:
        assert self._active_path is not None
        try:
            size = self._active_path.stat().st_size
        except FileNotFoundError:
            return False
        if size >= self.max_file_size_bytes:
            return True
        return size > 0 and size + incoming_bytes >= self.max_file_size_bytes

    def _next_log_path(self, now: datetime) -> Path:
        base_name = f"{LOG_FILE_PREFIX}{now:%Y%m%d_%H%M}"
        candidate = self.log_dir / f"{base_name}{LOG_FILE_SUFFIX}"
        ordinal = 1
        while candidate.exists():
            candidate = self.log_dir / f"{base_name}_{ordinal}{LOG_FILE_SUFFIX}"
            ordinal += 1
        return candidate

    def _close_handle(self) -> None:
        if self._handle is None:
            return
        try:
            self._handle.close()
        except OSError as e:
            logger.warning("Failed to close log file {}: {}", self._active_path, e)
        self._handle = None
