"""
Result values returned by the parsing collaborators.

Parsers of untrusted input report failure as data instead of raising, so
the loader can match on the outcome and pick a fallback.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Successful outcome carrying a value."""
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    """Failed outcome with a short reason and the underlying exception, if any."""
    reason: str
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return False

    def __str__(self) -> str:
        if self.error is None:
            return self.reason
        return f"{self.reason}: {self.error}"


Result = Union[Ok[T], Err]
