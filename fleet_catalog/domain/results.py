from dataclasses import dataclass, field
from typing import Generic, List, Optional, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class FetchResult(Generic[T]):
    """
    Outcome of a single best-effort upstream call.
    A failed call carries an error message and an empty item list, so callers can
    keep going while still being able to tell "nothing there" from "call failed".
    """
    items: List[T] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, items: List[T]) -> "FetchResult[T]":
        return cls(items=list(items))

    @classmethod
    def failure(cls, error: str) -> "FetchResult[T]":
        return cls(items=[], error=error)
