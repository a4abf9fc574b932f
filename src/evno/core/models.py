"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to rdflib sessions, HTTP responses or any other integration type.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

from rdflib import RDF, URIRef
from rdflib.term import Node

Statement = Tuple[Node, Node, Node]


@dataclass(frozen=True)
class Notification:
    """One parsed notification: its derived subject IRI and every statement."""

    id: Optional[str]
    statements: Tuple[Statement, ...]

    @property
    def types(self) -> Tuple[str, ...]:
        if self.id is None:
            return ()
        subject = URIRef(self.id)
        return tuple(
            str(obj)
            for subj, pred, obj in self.statements
            if subj == subject and pred == RDF.type
        )

    @property
    def is_empty(self) -> bool:
        return not self.statements


@dataclass(frozen=True)
class InboxResource:
    """One item listed in an inbox container."""

    url: str


@dataclass(frozen=True)
class FetchedResource:
    """Body and declared media type of a fetched inbox item."""

    url: str
    content_type: Optional[str]
    body: bytes


@dataclass(frozen=True)
class Permission:
    """Access modes granted to one agent on a resource."""

    agent: str
    append: bool = False
    read: bool = False
    write: bool = False
    control: bool = False


@dataclass(frozen=True)
class SendResult:
    """Outcome of posting a notification to an inbox."""

    success: bool
    location: Optional[str]
    status: int
