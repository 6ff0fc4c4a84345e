import asyncio
from collections.abc import Awaitable
from collections.abc import Callable
from typing import Any
from typing import Generic
from typing import Self
from typing import TypeVar

from loguru import logger

from dk_util.state.event_helper import EventStateHelper
from dk_util.state.event_state import EventState

T = TypeVar("T")


class EventSubscription:
    """One subscriber's view of an EventStateChannel, consumed with `async for`.

    States are queued per subscriber, so a slow subscriber never holds up the others.
    Iteration stops once the subscription is cancelled or the channel is closed and
    every state delivered before that has been consumed.
    """

    def __init__(self, channel: "EventStateChannel[Any]") -> None:
        self._channel = channel
        # None marks the end of the stream
        self._queue: asyncio.Queue[EventState | None] = asyncio.Queue()
        self._is_ended = False
        self.listener_task: asyncio.Task[None] | None = None

    @property
    def is_active(self) -> bool:
        return not self._is_ended

    def cancel(self) -> None:
        """Stop receiving states. Already delivered states can still be iterated."""
        self._channel._detach(self)
        self._end()

    def __aiter__(self) -> Self:
        return self

    async def __anext__(self) -> EventState:
        state = await self._queue.get()
        if state is None:
            raise StopAsyncIteration
        return state

    def _deliver(self, state: EventState) -> None:
        if not self._is_ended:
            self._queue.put_nowait(state)

    def _end(self) -> None:
        if not self._is_ended:
            self._is_ended = True
            self._queue.put_nowait(None)


class EventStateChannel(Generic[T]):
    """Broadcasts event states to any number of independent subscribers."""

    def __init__(self, helper: EventStateHelper | None = None) -> None:
        self.helper = helper if helper is not None else EventStateHelper()
        self._subscriptions: list[EventSubscription] = []
        self._is_closed = False

    @property
    def is_closed(self) -> bool:
        return self._is_closed

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def add(self, state: EventState) -> None:
        """Deliver a state to every current subscriber."""
        if self._is_closed:
            logger.debug("Dropping {} state sent to a closed channel", state.kind)
            return
        for subscription in list(self._subscriptions):
            subscription._deliver(state)

    async def trigger(self, producer: Callable[[], Awaitable[T]], tag: str | None = None) -> None:
        """Run the producer through the event-state engine, broadcasting every transition."""
        await self.helper.trigger_event(producer, self.add, tag=tag)

    def subscribe(self) -> EventSubscription:
        subscription = EventSubscription(self)
        if self._is_closed:
            subscription._end()
        else:
            self._subscriptions.append(subscription)
        return subscription

    def listen(
        self,
        on_loading: Callable[[], None] | None = None,
        on_success: Callable[[Any, str], None] | None = None,
        on_error: Callable[[str, Any, str | None], None] | None = None,
        on_idle: Callable[[], None] | None = None,
        on_complete: Callable[[], None] | None = None,
    ) -> EventSubscription:
        """Dispatch every future state to the matching callback from a background task.

        Must be called while an event loop is running.
        """
        subscription = self.subscribe()

        async def _dispatch() -> None:
            async for state in subscription:
                self.helper.handle_state(
                    state,
                    on_loading=on_loading,
                    on_success=on_success,
                    on_error=on_error,
                    on_idle=on_idle,
                    on_complete=on_complete,
                )

        subscription.listener_task = asyncio.get_running_loop().create_task(_dispatch())
        return subscription

    async def close(self) -> None:
        """End every subscription and wait for listeners to finish the states already delivered."""
        self._is_closed = True
        subscriptions = list(self._subscriptions)
        self._subscriptions.clear()
        for subscription in subscriptions:
            subscription._end()
        listener_tasks = [s.listener_task for s in subscriptions if s.listener_task is not None]
        if listener_tasks:
            await asyncio.gather(*listener_tasks)

    def _detach(self, subscription: EventSubscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)
