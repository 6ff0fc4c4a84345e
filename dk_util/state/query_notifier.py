from collections.abc import Awaitable
from collections.abc import Callable
from typing import Generic
from typing import TypeVar

from loguru import logger

from dk_util.state.query_helper import QueryStateHelper
from dk_util.state.query_state import QueryIdle
from dk_util.state.query_state import QueryState

T = TypeVar("T")

QueryStateListener = Callable[[QueryState], None]


class QueryStateNotifier(Generic[T]):
    """Holds the current query state of one subject and notifies listeners when it changes."""

    def __init__(self, initial: QueryState | None = None, helper: QueryStateHelper | None = None) -> None:
        self._value: QueryState = initial if initial is not None else QueryIdle()
        self.helper = helper if helper is not None else QueryStateHelper()
        self._listeners: list[QueryStateListener] = []

    @property
    def value(self) -> QueryState:
        return self._value

    @value.setter
    def value(self, state: QueryState) -> None:
        self._value = state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception as e:
                logger.warning("Query state listener failed on {} state: {}", state.kind, e)

    def add_listener(self, listener: QueryStateListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: QueryStateListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def query(
        self,
        producer: Callable[[], Awaitable[T]],
        is_empty: Callable[[T], bool] | None = None,
        tag: str | None = None,
    ) -> None:
        """Run the producer, publishing each query state through value."""

        def _set_value(state: QueryState) -> None:
            self.value = state

        await self.helper.trigger_query(producer, _set_value, is_empty=is_empty, tag=tag)
