"""Console formatting for notifications.

Keeping formatting here prevents drift between the watch and send commands.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from evno.adapters.jsonld_sender import serialize_notification
from evno.core.ingest import AS
from evno.core.models import Notification

DIVIDER = "──────────────"


def short_type(type_iri: str) -> str:
    """Return ActivityStreams types by local name, anything else unchanged."""

    if type_iri.startswith(str(AS)):
        return type_iri[len(str(AS)):]
    return type_iri


def _format_text(notification: Notification, received: datetime) -> str:
    timestamp = received.astimezone().strftime("%H:%M:%S %d-%m-%Y").strip()
    types = ", ".join(short_type(value) for value in notification.types) or "unknown"

    lines = [
        f"[{timestamp}]",
        f"Activity:   {notification.id or '(no typed activity)'}",
        f"Type:       {types}",
        f"Statements: {len(notification.statements)}",
        DIVIDER,
    ]
    for subject, predicate, obj in notification.statements:
        lines.append(f"{subject.n3()} {predicate.n3()} {obj.n3()} .")
    lines.append(DIVIDER)
    return "\n".join(lines)


def format_notification(
    notification: Notification,
    mode: str = "text",
    received: Optional[datetime] = None,
) -> str:
    """Return the notification formatted for the requested mode."""

    if mode == "text":
        return _format_text(notification, received or datetime.now())
    if mode == "jsonld":
        return serialize_notification(notification)
    raise ValueError(f"Unsupported notification format: {mode}")
