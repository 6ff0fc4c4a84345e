from collections.abc import Callable
from typing import TypeVar

_F = TypeVar("_F", bound=Callable[..., object])


def pure(func: _F) -> _F:
    """Mark a function as pure (no side effects).

    This decorator is advisory only and is not enforced at runtime.
    It serves as documentation to indicate that the decorated function
    does no I/O and returns the same output for the same inputs.
    """
    return func
