import asyncio

from dk_util.state.query_helper import QueryStateHelper
from dk_util.state.query_notifier import QueryStateNotifier
from dk_util.state.query_state import QueryEmpty
from dk_util.state.query_state import QueryError
from dk_util.state.query_state import QueryIdle
from dk_util.state.query_state import QueryLoading
from dk_util.state.query_state import QueryState
from dk_util.state.query_state import QuerySuccess


def _make_notifier() -> QueryStateNotifier[int]:
    return QueryStateNotifier(helper=QueryStateHelper(is_state_logging_enabled=False))


async def _load_count() -> int:
    return 7


async def _load_zero() -> int:
    return 0


async def _load_failure() -> int:
    raise TimeoutError("slow backend")


def test_initial_value_is_idle() -> None:
    assert _make_notifier().value == QueryIdle()


def test_query_publishes_loading_then_success() -> None:
    notifier = _make_notifier()
    observed: list[QueryState] = []
    notifier.add_listener(observed.append)

    asyncio.run(notifier.query(_load_count))

    assert observed == [QueryLoading(), QuerySuccess(data=7)]
    assert notifier.value.get_data() == 7


def test_query_publishes_empty() -> None:
    notifier = _make_notifier()
    observed: list[QueryState] = []
    notifier.add_listener(observed.append)

    asyncio.run(notifier.query(_load_zero, is_empty=lambda count: count == 0))

    assert observed == [QueryLoading(), QueryEmpty()]


def test_query_publishes_error() -> None:
    notifier = _make_notifier()

    asyncio.run(notifier.query(_load_failure))

    assert notifier.value == QueryError(message="slow backend")


def test_listeners_are_called_in_registration_order() -> None:
    notifier = _make_notifier()
    calls: list[str] = []
    notifier.add_listener(lambda state: calls.append(f"first:{state.kind}"))
    notifier.add_listener(lambda state: calls.append(f"second:{state.kind}"))

    notifier.value = QueryLoading()

    assert calls == ["first:loading", "second:loading"]


def test_removed_listener_is_not_called() -> None:
    notifier = _make_notifier()
    observed: list[QueryState] = []
    notifier.add_listener(observed.append)
    notifier.remove_listener(observed.append)

    notifier.value = QueryLoading()

    assert observed == []


def test_failing_listener_does_not_block_others(loguru_messages: list[str]) -> None:
    notifier = _make_notifier()
    observed: list[QueryState] = []

    def explode(state: QueryState) -> None:
        raise RuntimeError("widget disposed")

    notifier.add_listener(explode)
    notifier.add_listener(observed.append)

    notifier.value = QueryEmpty()

    assert observed == [QueryEmpty()]
    assert any("widget disposed" in message for message in loguru_messages)
