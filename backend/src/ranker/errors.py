from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


class RankerError(Exception):
    """Base class for every error raised by the scoring core."""


class RepositoryError(RankerError):
    """A data operation failed. The storage failure is chained as ``__cause__``."""


class ConfigurationError(RepositoryError):
    pass


class MatchResultError(RepositoryError):
    pass


class PenaltyError(RepositoryError):
    pass


class TeamAliasError(RepositoryError):
    pass


class MalformedConfigError(RepositoryError):
    """Rank points text is not a flat key/value table."""


class InvalidInputError(RankerError, ValueError):
    """Score calculation preconditions were violated."""


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Either a value or the exception that prevented it. Used by best-effort steps."""

    value: T | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None
