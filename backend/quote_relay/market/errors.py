"""Exception types raised by the quote relay core."""

from __future__ import annotations


class RelayError(Exception):
    """Base class for all relay errors."""


class ResolutionError(RelayError):
    """An instrument name could not be mapped to an upstream ticker."""

    def __init__(self, name: str, reason: str = "no match") -> None:
        super().__init__(f"cannot resolve {name!r}: {reason}")
        self.name = name
        self.reason = reason


class FeedSourceError(RelayError):
    """The Feed Source session could not be established or has failed."""


class ConfigStoreError(RelayError):
    """The Configuration Store could not be opened or rejected a mutation."""
