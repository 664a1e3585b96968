"""Exception hierarchy for BlastRadius."""

from __future__ import annotations


class BlastRadiusError(Exception):
    """Base class for every error raised by this package."""


class ParseError(BlastRadiusError):
    """A single source file could not be parsed.

    Captured per file during a build and never propagated past Stage A.
    """

    def __init__(self, path: str, message: str) -> None:
        super().__init__(f"{path}: {message}")
        self.path = path
        self.message = message


class IntegrityViolation(BlastRadiusError):
    """A relationship row referenced a row that does not exist.

    Lookups are always created before the relationships that use them, so
    this indicates a defect rather than bad input.
    """


class StoreFrozenError(BlastRadiusError):
    """A write was attempted after the store entered the query phase."""


class StoreLoadError(BlastRadiusError):
    """A persisted store is missing a table or contains a malformed one."""
