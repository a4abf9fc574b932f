"""Deduplication key strategies (core domain)."""

from __future__ import annotations

import logging

from evno.core.models import InboxResource, Notification

LOGGER = logging.getLogger(__name__)

STRATEGY_ACTIVITY = "activity"
# Some inboxes reuse or omit activity ids; the resource URL is always present.
URL_STRATEGIES = frozenset({"notification_id", "resource_url"})
STRATEGIES = frozenset({STRATEGY_ACTIVITY}) | URL_STRATEGIES


def validate_strategy(strategy: str) -> str:
    """Return the strategy unchanged, or raise for unknown tokens."""

    if strategy not in STRATEGIES:
        raise ValueError(f"Unsupported dedup strategy: {strategy}")
    return strategy


def compute_dedup_key(strategy: str, resource: InboxResource, notification: Notification) -> str:
    """Return the identity-store key for a notification under a strategy."""

    if strategy in URL_STRATEGIES:
        return resource.url

    if strategy == STRATEGY_ACTIVITY:
        if notification.id:
            return notification.id
        LOGGER.debug("No activity id in %s, keying on resource url", resource.url)
        return resource.url

    raise ValueError(f"Unsupported dedup strategy: {strategy}")
