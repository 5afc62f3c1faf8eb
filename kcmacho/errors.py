"""Exception hierarchy and a runtime check helper."""

from __future__ import annotations


class KCError(Exception):
    """Base class of every error raised by this package."""

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class FatalError(KCError):
    """An internal invariant was violated."""


class DecodeError(KCError):
    """Binary data could not be decoded."""


def verify(condition: object, description: str) -> None:
    """Raise FatalError naming *description* when *condition* is false."""
    if not condition:
        raise FatalError(f"verify condition {description} failed")