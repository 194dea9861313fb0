from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

from market.errors import MarketError

T = TypeVar("T")


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Tagged result of an operation: either a value or a typed error."""

    value: Optional[T] = None
    error: Optional[MarketError] = None

    @classmethod
    def success(cls, value: Optional[T] = None) -> "Outcome[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: MarketError) -> "Outcome[T]":
        return cls(error=error)

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> Optional[T]:
        """Return the value, raising the carried error for failed outcomes."""
        if self.error is not None:
            raise self.error
        return self.value
