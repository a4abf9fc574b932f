"""Watcher factory for evno.

Reads account credentials from the environment and wires the Solid adapters
and the SQLite identity store into an InboxWatcher.
"""

from __future__ import annotations

import logging
import os
from functools import partial

from dotenv import load_dotenv

from evno.adapters.sqlite_storage import open_identity_store
from evno.auth import Credentials, authenticate
from evno.core.config import WatcherConfig
from evno.core.watcher import InboxWatcher


def credentials_from_env() -> Credentials:
    """Build Credentials from EVNO_* variables, loading .env first."""

    load_dotenv()

    name = os.getenv("EVNO_NAME", "evno")
    email = os.getenv("EVNO_EMAIL")
    password = os.getenv("EVNO_PASSWORD")
    idp = os.getenv("EVNO_IDP")

    # Fail fast on missing credentials to avoid an opaque HTTP 401 later.
    if not email or not password or not idp:
        raise RuntimeError("Missing EVNO_EMAIL, EVNO_PASSWORD or EVNO_IDP in environment")

    return Credentials(
        name=name,
        email=email,
        password=password,
        idp=idp,
        web_id=os.getenv("EVNO_WEB_ID") or None,
    )


async def build_watcher(base_url: str, credentials: Credentials, config: WatcherConfig) -> InboxWatcher:
    """Authenticate and return a watcher owning its identity store."""

    logging.getLogger(__name__).info("Initializing watcher for %s", base_url)
    return await InboxWatcher.create(
        base_url,
        credentials,
        config,
        authenticator=partial(authenticate, timeout=config.item_timeout),
        store_factory=open_identity_store,
    )
