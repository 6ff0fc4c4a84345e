import traceback
from collections.abc import Awaitable
from collections.abc import Callable
from typing import Any
from typing import Final
from typing import TypeVar
from typing import assert_never

from loguru import logger

from dk_util.log.router import LogRouter
from dk_util.primitives import RunId
from dk_util.state.event_state import EventCompleted
from dk_util.state.event_state import EventError
from dk_util.state.event_state import EventIdle
from dk_util.state.event_state import EventLoading
from dk_util.state.event_state import EventState
from dk_util.state.event_state import EventSuccess
from dk_util.state.state_logging import StateLogger
from dk_util.state.state_logging import describe_producer

T = TypeVar("T")

EventStateSink = Callable[[EventState], None]

DEFAULT_SUCCESS_MESSAGE: Final[str] = "Operation succeeded"

_LOG_TAG: Final[str] = "EventStateHelper"


def get_error_message(error: BaseException) -> str:
    """Human-readable message for an exception, falling back to its type name when str() is empty."""
    return str(error) or type(error).__name__


class EventStateHelper:
    """Runs asynchronous producers and reports their lifecycle as event states.

    Every call to trigger_event() emits exactly Loading, then Success or Error, then
    Completed, all sharing one freshly generated run id. Exceptions from the producer
    become Error states, and exceptions from the sink are logged and swallowed, so
    the returned coroutine always completes normally.
    """

    def __init__(self, log_router: LogRouter | None = None, is_state_logging_enabled: bool | None = None) -> None:
        self.state_logger = StateLogger(log_router, is_state_logging_enabled)

    async def trigger_event(
        self,
        producer: Callable[[], Awaitable[T]],
        on_state_change: EventStateSink,
        tag: str | None = None,
    ) -> None:
        run_id = RunId.generate()
        log_tag = tag or _LOG_TAG
        name = describe_producer(producer)
        log = self.state_logger.log

        try:
            log(lambda router: router.title(f"[{run_id}] Start handling event: {name}"))
            log(lambda router: router.separator())
            log(lambda router: router.debug(f"[{run_id}] Triggered event: {name}", tag=log_tag))

            self._emit(on_state_change, EventLoading(run_id=run_id))
            try:
                result = await producer()
            except Exception as e:
                message = get_error_message(e)
                stack_trace = traceback.format_exc()
                self._emit(
                    on_state_change,
                    EventError(run_id=run_id, message=message, error=e, stack_trace=stack_trace),
                )
                log(
                    lambda router: router.error(
                        f"[{run_id}] Event failed: {message}",
                        tag=log_tag,
                        error=e,
                        stack_trace=stack_trace,
                    )
                )
            else:
                self._emit(on_state_change, EventSuccess(run_id=run_id, data=result))
                log(lambda router: router.info(f"[{run_id}] Event succeeded: {name}", tag=log_tag))
                if result is not None:
                    self.state_logger.log_result(f"[{run_id}] ", result, log_tag)
        finally:
            self._emit(on_state_change, EventCompleted(run_id=run_id))
            log(lambda router: router.debug(f"[{run_id}] Finished event: {name}", tag=log_tag))
            log(lambda router: router.separator())
            log(lambda router: router.title(f"[{run_id}] End handling event: {name}"))

    def handle_state(
        self,
        state: EventState,
        on_loading: Callable[[], None] | None = None,
        on_success: Callable[[Any, str], None] | None = None,
        on_error: Callable[[str, Any, str | None], None] | None = None,
        on_idle: Callable[[], None] | None = None,
        on_complete: Callable[[], None] | None = None,
    ) -> None:
        """Invoke the callback matching the state's variant, if one was given.

        on_success receives the data and the state's message (or a default one).
        on_error receives the message, the exception and the stack trace. A callback
        that raises is logged and does not propagate.
        """
        log = self.state_logger.log
        match state:
            case EventLoading():
                if on_loading is not None:
                    log(lambda router: router.debug(f"[{state.run_id}] State: loading", tag=_LOG_TAG))
                    self._run_callback(state.run_id, "loading", on_loading)
            case EventSuccess():
                if on_success is not None:
                    message = state.message if state.message is not None else DEFAULT_SUCCESS_MESSAGE
                    log(lambda router: router.info(f"[{state.run_id}] State: success", tag=_LOG_TAG))
                    self._run_callback(state.run_id, "success", lambda: on_success(state.data, message))
            case EventError():
                if on_error is not None:
                    log(lambda router: router.error(f"[{state.run_id}] State: error - {state.message}", tag=_LOG_TAG))
                    self._run_callback(
                        state.run_id,
                        "error",
                        lambda: on_error(state.message, state.error, state.stack_trace),
                    )
            case EventIdle():
                if on_idle is not None:
                    log(lambda router: router.debug(f"[{state.run_id or 'N/A'}] State: idle", tag=_LOG_TAG))
                    self._run_callback(state.run_id, "idle", on_idle)
            case EventCompleted():
                if on_complete is not None:
                    log(lambda router: router.debug(f"[{state.run_id}] State: completed", tag=_LOG_TAG))
                    self._run_callback(state.run_id, "completed", on_complete)
            case _ as unreachable:
                assert_never(unreachable)

    def _emit(self, on_state_change: EventStateSink, state: EventState) -> None:
        try:
            on_state_change(state)
        except Exception as e:
            logger.warning("State sink failed on {} state of {}: {}", state.kind, state.run_id, e)

    def _run_callback(self, run_id: RunId | None, phase: str, callback: Callable[[], None]) -> None:
        label = run_id or "N/A"
        log = self.state_logger.log
        log(lambda router: router.debug(f"[{label}] Running {phase} callback", tag=_LOG_TAG))
        try:
            callback()
        except Exception as e:
            logger.warning("The {} callback for {} failed: {}", phase, label, e)
            stack_trace = traceback.format_exc()
            log(
                lambda router: router.error(
                    f"[{label}] The {phase} callback failed: {e}",
                    tag=_LOG_TAG,
                    error=e,
                    stack_trace=stack_trace,
                )
            )
        else:
            log(lambda router: router.debug(f"[{label}] Finished {phase} callback", tag=_LOG_TAG))


async def trigger_event(
    producer: Callable[[], Awaitable[T]],
    on_state_change: EventStateSink,
    tag: str | None = None,
) -> None:
    """Run trigger_event() on a helper bound to the process default router."""
    await EventStateHelper().trigger_event(producer, on_state_change, tag=tag)


def handle_state(
    state: EventState,
    on_loading: Callable[[], None] | None = None,
    on_success: Callable[[Any, str], None] | None = None,
    on_error: Callable[[str, Any, str | None], None] | None = None,
    on_idle: Callable[[], None] | None = None,
    on_complete: Callable[[], None] | None = None,
) -> None:
    """Run handle_state() on a helper bound to the process default router."""
    EventStateHelper().handle_state(
        state,
        on_loading=on_loading,
        on_success=on_success,
        on_error=on_error,
        on_idle=on_idle,
        on_complete=on_complete,
    )
