"""Ports (interfaces) used by the watcher engine.

Ports define the minimal contracts for the session, container and identity
store collaborators so that the core can be reused with different backends.
"""

from __future__ import annotations

from typing import List, Optional, Protocol, Sequence

from evno.core.models import FetchedResource, InboxResource, Permission


class SessionPort(Protocol):
    """Authenticated fetch capability bound to a WebID."""

    web_id: Optional[str]

    async def fetch(self, url: str) -> FetchedResource:
        ...

    def close(self) -> None:
        ...


class ContainerPort(Protocol):
    """Container listing, creation and access control on the remote store."""

    async def list(self, container_url: str) -> List[InboxResource]:
        ...

    async def make_directory(self, url: str) -> None:
        ...

    async def change_permissions(self, url: str, permissions: Sequence[Permission]) -> None:
        ...


class IdentityStorePort(Protocol):
    """Persistent set of already delivered dedup keys."""

    def has(self, key: str) -> bool:
        ...

    def mark_seen(self, key: str) -> None:
        ...

    def close(self) -> None:
        ...
