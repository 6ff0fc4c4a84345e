from pathlib import Path
from typing import Any

import tomlkit
from loguru import logger
from pydantic import ValidationError
from tomlkit.exceptions import TOMLKitError

from dk_util.config.data_types import LogRouterConfig
from dk_util.errors import LogConfigError
from dk_util.log.file_sink import RotatingFileSink
from dk_util.log.router import ConsoleSink
from dk_util.log.router import LogRouter

_LEVEL_KEY = "min_level"


def load_config(path: Path) -> LogRouterConfig:
    """Load logging settings from a TOML file.

    Top-level keys map onto LogRouterConfig, with [file] and [remote] tables for the
    sink options. Level names are case-insensitive. A missing file yields defaults.
    """
    if not path.exists():
        logger.debug("No logging config at {}, using defaults", path)
        return LogRouterConfig()

    try:
        with open(path) as f:
            raw = tomlkit.load(f).unwrap()
    except TOMLKitError as e:
        raise LogConfigError(f"Cannot parse logging config {path}: {e}") from e

    try:
        return LogRouterConfig.model_validate(_normalize_levels(raw))
    except ValidationError as e:
        raise LogConfigError(f"Invalid logging config {path}: {e}") from e


def save_config(config: LogRouterConfig, path: Path) -> None:
    """Write logging settings to a TOML file, omitting unset optional values."""
    data = config.model_dump(mode="json", exclude_none=True)
    doc = tomlkit.document()
    for key, value in data.items():
        if isinstance(value, dict):
            table = tomlkit.table()
            for sub_key, sub_value in value.items():
                table.add(sub_key, sub_value)
            doc.add(key, table)
        else:
            doc.add(key, sorted(value) if isinstance(value, list) else value)

    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        tomlkit.dump(doc, f)


def build_router(config: LogRouterConfig, console_sink: ConsoleSink | None = None) -> LogRouter:
    """Create a router for the given settings, with file logging started if configured.

    Remote logging needs a running event loop; call enable_configured_remote_log()
    from async code to start it.
    """
    router = LogRouter(
        config=config,
        console_sink=console_sink,
        file_sink=RotatingFileSink(log_dir=config.file.log_dir),
    )
    if config.file.is_enabled:
        router.init_file_log(
            is_enabled=True,
            min_level=config.file.min_level,
            max_file_size_bytes=config.file.max_file_size_bytes,
            max_file_count=config.file.max_file_count,
        )
    return router


async def enable_configured_remote_log(router: LogRouter) -> None:
    """Start remote logging on the router if its config asks for it."""
    remote = router.config.remote
    if not remote.is_enabled:
        return
    await router.enable_remote_log(
        min_level=remote.min_level,
        is_auto_discover=remote.is_auto_discover,
        host=remote.host,
        port=remote.port,
        path=remote.path,
        service_name=remote.service_name,
    )


def _normalize_levels(raw: dict[str, Any]) -> dict[str, Any]:
    normalized = dict(raw)
    if isinstance(normalized.get(_LEVEL_KEY), str):
        normalized[_LEVEL_KEY] = normalized[_LEVEL_KEY].upper()
    for section in ("file", "remote"):
        table = normalized.get(section)
        if isinstance(table, dict) and isinstance(table.get(_LEVEL_KEY), str):
            normalized[section] = {**table, _LEVEL_KEY: table[_LEVEL_KEY].upper()}
    return normalized
