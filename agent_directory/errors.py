"""Error taxonomy and the Result value returned by every coordinator operation."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Generic, TypeVar

T = TypeVar("T")
R = TypeVar("R")


class DirectoryError(Exception):
    """Base class for every failure the cache layer reports."""


class NetworkUnavailable(DirectoryError):
    """Offline-only mode is on or there is no validated network path."""

    def __init__(self, message: str = "Network unavailable or offline mode enabled") -> None:
        super().__init__(message)


class RemoteTransportFailure(DirectoryError):
    """The upstream never answered (connect error, timeout, broken stream)."""


class RemoteApplicationFailure(DirectoryError):
    """The upstream answered, but with a bad status or an unusable body."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class StorageFailure(DirectoryError):
    """A local store read or write failed."""


@dataclass(frozen=True)
class Result(Generic[T]):
    value: T | None = None
    error: DirectoryError | None = None

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: DirectoryError) -> "Result[T]":
        return cls(error=error)

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        """Return the value or raise the stored error."""
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]

    def fold(self, on_success: Callable[[T], R], on_failure: Callable[[DirectoryError], R]) -> R:
        if self.error is not None:
            return on_failure(self.error)
        return on_success(self.value)  # type: ignore[arg-type]
