"""Lifecycle states for a single asynchronous invocation.

One invocation always produces exactly [EventLoading, EventSuccess | EventError,
EventCompleted], all carrying the same run id. EventIdle describes a subject with
no invocation started yet and is never emitted by the engine itself.
"""

from typing import Annotated
from typing import Any
from typing import Generic
from typing import Literal
from typing import TypeVar

from pydantic import Discriminator
from pydantic import Field

from dk_util.common.frozen_model import FrozenModel
from dk_util.primitives import RunId

T = TypeVar("T")


class EventIdle(FrozenModel):
    """No invocation has started."""

    kind: Literal["idle"] = "idle"
    run_id: RunId | None = Field(default=None, description="Run id, if the idle state is tied to one")


class EventLoading(FrozenModel):
    """The invocation is in flight."""

    kind: Literal["loading"] = "loading"
    run_id: RunId = Field(description="Run id of the invocation")


class EventSuccess(FrozenModel, Generic[T]):
    """The invocation produced a value."""

    kind: Literal["success"] = "success"
    run_id: RunId = Field(description="Run id of the invocation")
    data: T = Field(description="Value returned by the producer")
    message: str | None = Field(default=None, description="Optional human-readable success message")


class EventError(FrozenModel):
    """The invocation failed."""

    kind: Literal["error"] = "error"
    run_id: RunId = Field(description="Run id of the invocation")
    message: str = Field(description="Human-readable failure message")
    error: Any = Field(default=None, description="The exception raised by the producer")
    stack_trace: str | None = Field(default=None, description="Formatted traceback of the failure")


class EventCompleted(FrozenModel):
    """Terminal marker emitted after success or error. Carries no payload."""

    kind: Literal["completed"] = "completed"
    run_id: RunId = Field(description="Run id of the invocation")


EventState = Annotated[
    EventIdle | EventLoading | EventSuccess[Any] | EventError | EventCompleted,
    Discriminator("kind"),
]
