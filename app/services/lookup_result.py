from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Generic, TypeVar

T = TypeVar("T")


class LookupStatus(StrEnum):
    found = "found"
    not_found = "not_found"
    failed = "failed"


@dataclass(frozen=True)
class LookupResult(Generic[T]):
    """Outcome of a lookup that keeps "absent" apart from "backend error"."""

    status: LookupStatus
    value: T | None = None
    error: Exception | None = None

    @classmethod
    def found(cls, value: T) -> LookupResult[T]:
        return cls(status=LookupStatus.found, value=value)

    @classmethod
    def not_found(cls) -> LookupResult[T]:
        return cls(status=LookupStatus.not_found)

    @classmethod
    def failed(cls, error: Exception) -> LookupResult[T]:
        return cls(status=LookupStatus.failed, error=error)

    @property
    def is_found(self) -> bool:
        return self.status == LookupStatus.found

    @property
    def is_failed(self) -> bool:
        return self.status == LookupStatus.failed
