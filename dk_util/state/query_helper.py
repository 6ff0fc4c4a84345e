import traceback
from collections.abc import Awaitable
from collections.abc import Callable
from typing import Final
from typing import TypeVar

from loguru import logger

from dk_util.log.router import LogRouter
from dk_util.state.event_helper import get_error_message
from dk_util.state.query_state import QueryEmpty
from dk_util.state.query_state import QueryError
from dk_util.state.query_state import QueryLoading
from dk_util.state.query_state import QueryState
from dk_util.state.query_state import QuerySuccess
from dk_util.state.state_logging import StateLogger
from dk_util.state.state_logging import describe_producer

T = TypeVar("T")

QueryStateSink = Callable[[QueryState], None]

_LOG_TAG: Final[str] = "QueryStateHelper"


class QueryStateHelper:
    """Runs a data query and reports Loading followed by Success, Empty or Error."""

    def __init__(self, log_router: LogRouter | None = None, is_state_logging_enabled: bool | None = None) -> None:
        self.state_logger = StateLogger(log_router, is_state_logging_enabled)

    async def trigger_query(
        self,
        producer: Callable[[], Awaitable[T]],
        on_state_change: QueryStateSink,
        is_empty: Callable[[T], bool] | None = None,
        tag: str | None = None,
    ) -> None:
        """Emit QueryLoading, await the producer, then emit the outcome.

        The result is reported as QueryEmpty when is_empty is given and returns True
        for it. Producer and sink failures never escape this coroutine.
        """
        log_tag = tag or _LOG_TAG
        name = describe_producer(producer)
        log = self.state_logger.log

        try:
            log(lambda router: router.title(f"Start query: {name}"))
            self._emit(on_state_change, QueryLoading())
            try:
                result = await producer()
                log(lambda router: router.debug(f"Query succeeded: {name}", tag=log_tag))
                self.state_logger.log_result("Query ", result, log_tag)
                is_result_empty = is_empty is not None and is_empty(result)
            except Exception as e:
                message = get_error_message(e)
                stack_trace = traceback.format_exc()
                self._emit(on_state_change, QueryError(message=message))
                log(
                    lambda router: router.error(
                        f"Query failed: {message}",
                        tag=log_tag,
                        error=e,
                        stack_trace=stack_trace,
                    )
                )
                return

            if is_result_empty:
                self._emit(on_state_change, QueryEmpty())
                log(lambda router: router.warning(f"Query returned no data: {name}", tag=log_tag))
            else:
                self._emit(on_state_change, QuerySuccess(data=result))
                log(lambda router: router.info(f"Query result handled: {name}", tag=log_tag))
        finally:
            log(lambda router: router.title(f"End query: {name}"))

    def _emit(self, on_state_change: QueryStateSink, state: QueryState) -> None:
        try:
            on_state_change(state)
        except Exception as e:
            logger.warning("Query state sink failed on {} state: {}", state.kind, e)


async def trigger_query(
    producer: Callable[[], Awaitable[T]],
    on_state_change: QueryStateSink,
    is_empty: Callable[[T], bool] | None = None,
    tag: str | None = None,
) -> None:
    """Run trigger_query() on a helper bound to the process default router."""
    await QueryStateHelper().trigger_query(producer, on_state_change, is_empty=is_empty, tag=tag)
