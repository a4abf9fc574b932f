"""Outbound notification adapter.

Serializes a Notification to compact JSON-LD and posts it to an inbox.
"""

from __future__ import annotations

import logging

import requests
from rdflib import Graph

from evno.adapters.solid import SolidSession
from evno.core.errors import FetchError
from evno.core.ingest import AS
from evno.core.models import Notification, SendResult

LOGGER = logging.getLogger(__name__)

JSONLD_CONTEXT = {"@vocab": str(AS)}


def serialize_notification(notification: Notification) -> str:
    """Return the notification as compact JSON-LD."""

    graph = Graph()
    graph.bind("as", AS)
    for statement in notification.statements:
        graph.add(statement)
    return graph.serialize(format="json-ld", context=JSONLD_CONTEXT, auto_compact=True)


async def send_notification(notification: Notification, inbox_url: str, session: SolidSession) -> SendResult:
    """POST a notification to ``inbox_url``; report success and Location."""

    body = serialize_notification(notification)
    try:
        response = await session.arequest(
            "POST",
            inbox_url,
            headers={"content-type": "application/ld+json"},
            data=body.encode("utf-8"),
        )
    except requests.RequestException as exc:
        raise FetchError(inbox_url, str(exc)) from exc

    result = SendResult(
        success=response.ok,
        location=response.headers.get("Location"),
        status=response.status_code,
    )
    if result.success:
        LOGGER.info("Sent %s to %s (location=%s)", notification.id, inbox_url, result.location)
    else:
        LOGGER.warning("Inbox %s refused %s: HTTP %s", inbox_url, notification.id, result.status)
    return result
