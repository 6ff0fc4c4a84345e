import asyncio
from collections.abc import Awaitable
from collections.abc import Callable
from typing import Any

import pytest

from dk_util.log.router import LogRouter
from dk_util.log.testing import CapturingConsole
from dk_util.state.event_helper import DEFAULT_SUCCESS_MESSAGE
from dk_util.state.event_helper import EventStateHelper
from dk_util.state.event_helper import get_error_message
from dk_util.state.event_helper import handle_state
from dk_util.state.event_helper import trigger_event
from dk_util.state.event_state import EventCompleted
from dk_util.state.event_state import EventError
from dk_util.state.event_state import EventIdle
from dk_util.state.event_state import EventLoading
from dk_util.state.event_state import EventState
from dk_util.state.event_state import EventSuccess


async def _return_ok() -> str:
    return "ok"


async def _raise_boom() -> str:
    raise ValueError("boom")


class _SilentError(Exception):
    pass


async def _raise_without_message() -> str:
    raise _SilentError()


def _run_and_collect(
    helper: EventStateHelper,
    producer: Callable[[], Awaitable[Any]],
    tag: str | None = None,
) -> list[EventState]:
    states: list[EventState] = []
    asyncio.run(helper.trigger_event(producer, states.append, tag=tag))
    return states


def test_success_emits_loading_success_completed(default_router: LogRouter) -> None:
    states = _run_and_collect(EventStateHelper(), _return_ok)

    assert [type(state) for state in states] == [EventLoading, EventSuccess, EventCompleted]
    success = states[1]
    assert isinstance(success, EventSuccess)
    assert success.data == "ok"
    assert success.message is None


def test_failure_emits_loading_error_completed(default_router: LogRouter) -> None:
    states = _run_and_collect(EventStateHelper(), _raise_boom)

    assert [type(state) for state in states] == [EventLoading, EventError, EventCompleted]
    error = states[1]
    assert isinstance(error, EventError)
    assert error.message == "boom"
    assert isinstance(error.error, ValueError)
    assert error.stack_trace is not None
    assert "ValueError: boom" in error.stack_trace


def test_empty_exception_message_falls_back_to_type_name(default_router: LogRouter) -> None:
    states = _run_and_collect(EventStateHelper(), _raise_without_message)

    error = states[1]
    assert isinstance(error, EventError)
    assert error.message == "_SilentError"


def test_all_states_share_one_run_id(default_router: LogRouter) -> None:
    for producer in (_return_ok, _raise_boom):
        states = _run_and_collect(EventStateHelper(), producer)

        assert len({state.run_id for state in states}) == 1


def test_each_invocation_gets_a_new_run_id(default_router: LogRouter) -> None:
    helper = EventStateHelper()

    async def run_twice() -> list[EventState]:
        states: list[EventState] = []
        await helper.trigger_event(_return_ok, states.append)
        await asyncio.sleep(0.002)
        await helper.trigger_event(_return_ok, states.append)
        return states

    states = asyncio.run(run_twice())

    assert states[0].run_id != states[3].run_id


def test_concurrent_invocations_keep_their_own_sequences(default_router: LogRouter) -> None:
    helper = EventStateHelper()
    first: list[EventState] = []
    second: list[EventState] = []

    async def slow() -> int:
        await asyncio.sleep(0.01)
        return 1

    async def run() -> None:
        await helper.trigger_event(slow, first.append)
        await asyncio.gather(
            helper.trigger_event(slow, second.append),
            helper.trigger_event(_raise_boom, first.append),
        )

    asyncio.run(run())

    assert [type(state) for state in second] == [EventLoading, EventSuccess, EventCompleted]
    assert len(first) == 6
    assert len({state.run_id for state in first[:3]}) == 1
    assert len({state.run_id for state in first[3:]}) == 1


def test_failing_sink_still_receives_completed(default_router: LogRouter, loguru_messages: list[str]) -> None:
    received: list[EventState] = []

    def flaky_sink(state: EventState) -> None:
        received.append(state)
        if isinstance(state, EventSuccess):
            raise RuntimeError("ui crashed")

    asyncio.run(EventStateHelper().trigger_event(_return_ok, flaky_sink))

    assert [type(state) for state in received] == [EventLoading, EventSuccess, EventCompleted]
    assert any("State sink failed" in message for message in loguru_messages)


def test_state_logging_goes_to_router(default_router: LogRouter, console: CapturingConsole) -> None:
    _run_and_collect(EventStateHelper(), _return_ok, tag="Fetch")

    assert "Start handling event: _return_ok" in console.text
    assert "End handling event: _return_ok" in console.text
    assert "#Fetch: [RUN_" in console.text
    assert '"ok"' in console.text


def test_failure_is_logged_with_error_details(default_router: LogRouter, console: CapturingConsole) -> None:
    _run_and_collect(EventStateHelper(), _raise_boom)

    assert "Event failed: boom" in console.text
    assert "Error: boom" in console.lines


def test_state_logging_can_be_disabled(default_router: LogRouter, console: CapturingConsole) -> None:
    _run_and_collect(EventStateHelper(is_state_logging_enabled=False), _return_ok)

    assert console.lines == []


def test_state_logging_follows_router_config(default_router: LogRouter, console: CapturingConsole) -> None:
    default_router.config.is_state_logging_enabled = False

    _run_and_collect(EventStateHelper(), _raise_boom)

    assert console.lines == []


def test_non_serializable_result_is_logged_as_text(default_router: LogRouter, console: CapturingConsole) -> None:
    async def produce_set() -> set[int]:
        return {42}

    states = _run_and_collect(EventStateHelper(), produce_set)

    assert isinstance(states[1], EventSuccess)
    assert "Result: {42}" in console.text


def test_module_level_trigger_event_uses_default_router(
    default_router: LogRouter,
    console: CapturingConsole,
) -> None:
    states: list[EventState] = []

    asyncio.run(trigger_event(_return_ok, states.append))

    assert len(states) == 3
    assert "Start handling event" in console.text


class _Recorder:
    def __init__(self) -> None:
        self.calls: list[tuple] = []

    def callbacks(self) -> dict:
        return {
            "on_loading": lambda: self.calls.append(("loading",)),
            "on_success": lambda data, message: self.calls.append(("success", data, message)),
            "on_error": lambda message, error, stack_trace: self.calls.append(("error", message, error, stack_trace)),
            "on_idle": lambda: self.calls.append(("idle",)),
            "on_complete": lambda: self.calls.append(("completed",)),
        }


@pytest.mark.parametrize(
    ("state", "expected"),
    [
        (EventIdle(), ("idle",)),
        (EventSuccess(run_id="RUN_1700000000000_1234", data=[1, 2], message="saved"), ("success", [1, 2], "saved")),
        (EventSuccess(run_id="RUN_1700000000000_1234", data=3), ("success", 3, DEFAULT_SUCCESS_MESSAGE)),
        (
            EventError(run_id="RUN_1700000000000_1234", message="bad", stack_trace="trace"),
            ("error", "bad", None, "trace"),
        ),
        (EventLoading(run_id="RUN_1700000000000_1234"), ("loading",)),
        (EventCompleted(run_id="RUN_1700000000000_1234"), ("completed",)),
    ],
)
def test_handle_state_dispatches_each_variant(default_router: LogRouter, state: EventState, expected: tuple) -> None:
    recorder = _Recorder()

    EventStateHelper().handle_state(state, **recorder.callbacks())

    assert recorder.calls == [expected]


def test_handle_state_without_matching_callback_is_noop(default_router: LogRouter) -> None:
    recorder = _Recorder()
    callbacks = recorder.callbacks()
    del callbacks["on_success"]

    EventStateHelper().handle_state(EventSuccess(run_id="RUN_1700000000000_1234", data=1), **callbacks)

    assert recorder.calls == []


def test_handle_state_isolates_callback_failure(
    default_router: LogRouter,
    console: CapturingConsole,
    loguru_messages: list[str],
) -> None:
    def explode() -> None:
        raise RuntimeError("callback broke")

    handle_state(EventLoading(run_id="RUN_1700000000000_1234"), on_loading=explode)

    assert any("loading callback" in message and "callback broke" in message for message in loguru_messages)
    assert "The loading callback failed: callback broke" in console.text


def test_get_error_message() -> None:
    assert get_error_message(ValueError("bad")) == "bad"
    assert get_error_message(ValueError()) == "ValueError"
