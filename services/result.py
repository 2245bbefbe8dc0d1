"""
Explicit success/failure wrapper for service calls made by request adapters.
"""
from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar

T = TypeVar('T')


@dataclass
class Result(Generic[T]):
    """
    Outcome of a service call.

    - value: the operation's return value on success
    - error: the exception it raised otherwise
    """

    value: Optional[T] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def run_operation(operation: Callable[..., T], *args: Any, **kwargs: Any) -> Result[T]:
    """
    Call ``operation`` and capture its outcome.

    Only ``Exception`` is captured; cancellation and interpreter exits
    propagate to the caller.
    """
    try:
        return Result(value=operation(*args, **kwargs))
    except Exception as e:
        return Result(error=e)
