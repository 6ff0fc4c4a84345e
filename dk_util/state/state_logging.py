from collections.abc import Callable
from typing import Any

from loguru import logger

from dk_util.log.formatting import to_pretty_json
from dk_util.log.router import LogRouter
from dk_util.log.router import get_default_router


def describe_producer(producer: Callable[..., Any]) -> str:
    """Name used for a producer in state logs, e.g. "fetch_user" or "UserRepo.load"."""
    return getattr(producer, "__qualname__", None) or type(producer).__name__


class StateLogger:
    """Verbose transition logging shared by the state engines.

    Logs go to the given router, or to the process default router at the time of the
    call. Logging is skipped entirely when state logging is disabled, and a failure
    while logging is reported through loguru without interrupting the caller.
    """

    def __init__(self, log_router: LogRouter | None = None, is_enabled: bool | None = None) -> None:
        self._log_router = log_router
        self._is_enabled = is_enabled

    @property
    def router(self) -> LogRouter:
        return self._log_router if self._log_router is not None else get_default_router()

    @property
    def is_enabled(self) -> bool:
        if self._is_enabled is not None:
            return self._is_enabled
        return self.router.config.is_state_logging_enabled

    def log(self, action: Callable[[LogRouter], None]) -> None:
        if not self.is_enabled:
            return
        try:
            action(self.router)
        except Exception as e:
            logger.warning("State transition logging failed: {}", e)

    def log_result(self, prefix: str, result: Any, tag: str) -> None:
        """Log a producer result as indented JSON, or as plain text when it is not serializable."""

        def _write(router: LogRouter) -> None:
            try:
                pretty = to_pretty_json(result)
            except (TypeError, ValueError):
                router.info(f"{prefix}Result: {result}", tag=tag)
                return
            router.info(f"{prefix}Result:\n{pretty}", tag=tag)

        self.log(_write)
