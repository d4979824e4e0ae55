"""Resolution result for soft-failing platform queries.

Role and permission lookups talk to live platform APIs. When a lookup
fails, the caller still gets a usable value: a conservative default, marked
as degraded and carrying the error that caused it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class Resolution(Generic[T]):
    """A resolved value, or a degraded default with the error behind it."""

    value: T
    degraded: bool = False
    error: BaseException | None = None

    @classmethod
    def ok(cls, value: T) -> Resolution[T]:
        return cls(value)

    @classmethod
    def fallback(cls, value: T, error: BaseException | None = None) -> Resolution[T]:
        return cls(value, degraded=True, error=error)
