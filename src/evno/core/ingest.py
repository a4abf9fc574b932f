"""Notification ingestion pipeline.

Turns a raw byte stream plus a declared media type into a Notification. The
whole stream is read before parsing starts, and the identifying subject is
only derived once every statement has been produced, so a typed statement
that arrives late in the document is still found.
"""

from __future__ import annotations

import logging
from typing import BinaryIO, Iterable, List, Optional, Union

from rdflib import RDF, Graph, Namespace, URIRef
from rdflib.plugins.stores.memory import Memory

from evno.core.errors import ParseError
from evno.core.models import Notification, Statement

LOGGER = logging.getLogger(__name__)

AS = Namespace("https://www.w3.org/ns/activitystreams#")

# Activity kinds whose typed subject identifies the notification.
EVENT_TYPES = frozenset(
    AS[name]
    for name in ("Create", "Update", "Remove", "Announce", "Offer", "Accept", "Reject")
)

DEFAULT_MEDIA_TYPE = "application/ld+json"

# Media type -> rdflib parser plugin name.
_PARSER_FORMATS = {
    "application/ld+json": "json-ld",
    "application/json": "json-ld",
    "text/turtle": "turtle",
    "application/n-triples": "nt",
    "text/n3": "n3",
    "application/rdf+xml": "xml",
    "application/n-quads": "nquads",
    "application/trig": "trig",
}

ByteStream = Union[bytes, bytearray, BinaryIO, Iterable[bytes]]


class _RecordingStore(Memory):
    """Memory store that remembers every triple in the order it was added."""

    def __init__(self) -> None:
        super().__init__()
        self.recorded: List[Statement] = []

    def add(self, triple, context, quoted=False) -> None:
        self.recorded.append(triple)
        super().add(triple, context, quoted)


def normalize_media_type(media_type: Optional[str]) -> str:
    """Strip parameters and case from a Content-Type value."""

    if not media_type:
        return DEFAULT_MEDIA_TYPE
    value = media_type.split(";", 1)[0].strip().lower()
    return value or DEFAULT_MEDIA_TYPE


def _read_all(stream: ByteStream) -> bytes:
    if isinstance(stream, (bytes, bytearray)):
        return bytes(stream)
    read = getattr(stream, "read", None)
    if callable(read):
        return read()
    return b"".join(stream)


def derive_id(statements: Iterable[Statement]) -> Optional[str]:
    """Return the IRI of the first subject typed as a known activity.

    Blank-node subjects are skipped: their labels change on every parse, so
    they cannot identify a notification across ticks.
    """

    for subject, predicate, obj in statements:
        if not isinstance(subject, URIRef):
            continue
        if predicate == RDF.type and obj in EVENT_TYPES:
            return str(subject)
    return None


def parse_statements(data: bytes, media_type: Optional[str], base: Optional[str] = None) -> List[Statement]:
    """Parse a document and return its statements in parser order."""

    normalized = normalize_media_type(media_type)
    parser_format = _PARSER_FORMATS.get(normalized)
    if parser_format is None:
        raise ParseError(f"Unsupported media type: {normalized}")

    store = _RecordingStore()
    graph = Graph(store=store)
    try:
        graph.parse(data=data, format=parser_format, publicID=base)
    except Exception as exc:
        raise ParseError(f"Could not parse {normalized} payload: {exc}") from exc
    return list(store.recorded)


def parse_notification(
    stream: ByteStream,
    media_type: Optional[str] = DEFAULT_MEDIA_TYPE,
    base: Optional[str] = None,
) -> Notification:
    """Read a whole stream and build a Notification from it.

    A document without any recognized activity still yields a Notification,
    with ``id`` set to None and every statement kept.
    """

    data = _read_all(stream)
    statements = parse_statements(data, media_type, base)
    notification_id = derive_id(statements)
    if notification_id is None:
        LOGGER.debug("No typed activity found among %s statements", len(statements))
    return Notification(id=notification_id, statements=tuple(statements))
