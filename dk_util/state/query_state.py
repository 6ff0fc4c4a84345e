"""Current-value states for a persisted data view.

Query states are positional rather than invocation-scoped: a subject holds one of
them at a time and moves Idle|prior -> Loading -> Success | Empty | Error.
"""

from typing import Annotated
from typing import Any
from typing import Generic
from typing import Literal
from typing import TypeVar

from pydantic import Discriminator
from pydantic import Field

from dk_util.common.frozen_model import FrozenModel
from dk_util.errors import QueryStateAccessError

T = TypeVar("T")


class _QueryStateBase(FrozenModel):
    """Shared accessors for every query state variant."""

    @property
    def is_idle(self) -> bool:
        return isinstance(self, QueryIdle)

    @property
    def is_loading(self) -> bool:
        return isinstance(self, QueryLoading)

    @property
    def is_success(self) -> bool:
        return isinstance(self, QuerySuccess)

    @property
    def is_empty(self) -> bool:
        return isinstance(self, QueryEmpty)

    @property
    def is_error(self) -> bool:
        return isinstance(self, QueryError)

    def get_data(self) -> Any:
        """Return the loaded data. Raises QueryStateAccessError unless this is a QuerySuccess."""
        if isinstance(self, QuerySuccess):
            return self.data
        raise QueryStateAccessError(f"No data available in {type(self).__name__}")

    def get_error_message(self) -> str:
        """Return the failure message. Raises QueryStateAccessError unless this is a QueryError."""
        if isinstance(self, QueryError):
            return self.message
        raise QueryStateAccessError(f"No error message available in {type(self).__name__}")


class QueryIdle(_QueryStateBase):
    """Initial state, nothing requested yet."""

    kind: Literal["idle"] = "idle"


class QueryLoading(_QueryStateBase):
    kind: Literal["loading"] = "loading"


class QuerySuccess(_QueryStateBase, Generic[T]):
    kind: Literal["success"] = "success"
    data: T = Field(description="Value returned by the producer")


class QueryEmpty(_QueryStateBase):
    """The producer succeeded but its result was judged empty."""

    kind: Literal["empty"] = "empty"


class QueryError(_QueryStateBase):
    kind: Literal["error"] = "error"
    message: str = Field(description="Human-readable failure message")


QueryState = Annotated[
    QueryIdle | QueryLoading | QuerySuccess[Any] | QueryEmpty | QueryError,
    Discriminator("kind"),
]
