"""Error taxonomy for evno.

Setup errors (auth, listing, container, permissions, store) propagate to the
caller. Per-item errors (fetch, parse) are caught by the watcher at the item
boundary.
"""

from __future__ import annotations


class EvnoError(Exception):
    """Base class for all evno errors."""


class AuthError(EvnoError):
    """Authentication against the identity provider failed."""


class ListingError(EvnoError):
    """A container could not be listed."""


class ContainerError(EvnoError):
    """A container could not be created."""


class PermissionUpdateError(EvnoError):
    """Access control for a resource could not be read or written."""


class FetchError(EvnoError):
    """An inbox item could not be fetched."""

    def __init__(self, url: str, message: str) -> None:
        super().__init__(f"{url}: {message}")
        self.url = url


class ParseError(EvnoError):
    """A notification payload could not be parsed."""


class StoreOpenError(EvnoError):
    """The identity store backing file could not be opened."""
