"""Inbox watcher engine.

This module is integration-agnostic. It only relies on ports for the session,
container operations and the identity store, so the polling loop can be driven
against a Solid pod, an in-memory fake, or any other backend.

Each tick runs a strict order:
1) List the inbox container
2) For each listed resource, in listing order: fetch and parse it
3) Compute the dedup key for the active strategy
4) Skip keys already in the identity store
5) Emit the notification, then mark its key seen

Ticks never overlap. A failing item is reported and skipped without aborting
the rest of the tick or the schedule.
"""

from __future__ import annotations

import asyncio
import enum
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from evno.core.config import WatcherConfig
from evno.core.dedup import compute_dedup_key, validate_strategy
from evno.core.errors import PermissionUpdateError
from evno.core.ingest import parse_notification
from evno.core.models import InboxResource, Notification, Permission
from evno.core.ports import ContainerPort, IdentityStorePort, SessionPort

LOGGER = logging.getLogger(__name__)

NOTIFICATION_EVENT = "notification"
ERROR_EVENT = "error"
EVENTS = (NOTIFICATION_EVENT, ERROR_EVENT)

Listener = Callable[[Any], Optional[Awaitable[None]]]
Authenticator = Callable[[Any, str], Awaitable[Tuple[SessionPort, ContainerPort]]]
StoreFactory = Callable[[str], IdentityStorePort]


class WatcherState(enum.Enum):
    IDLE = "idle"
    POLLING = "polling"
    STOPPING = "stopping"
    STOPPED = "stopped"


@dataclass(frozen=True)
class ItemError:
    """Payload of an ``error`` event: which resource failed and why."""

    url: str
    error: BaseException


def _close_session(session: SessionPort) -> None:
    close = getattr(session, "close", None)
    if callable(close):
        close()


def join_url(base_url: str, path: str) -> str:
    """Append a relative container path to a base container URL."""

    if not base_url.endswith("/"):
        base_url = f"{base_url}/"
    return f"{base_url}{path.lstrip('/')}"


class InboxWatcher:
    """Polls one inbox and emits every notification it has not delivered yet."""

    def __init__(
        self,
        session: SessionPort,
        containers: ContainerPort,
        config: Optional[WatcherConfig] = None,
        store: Optional[IdentityStorePort] = None,
    ) -> None:
        self._session = session
        self._containers = containers
        self._config = config or WatcherConfig()
        # No store means no deduplication: every fetched item is emitted.
        self._store = store
        self._strategy = validate_strategy(self._config.strategy)
        self._listeners: Dict[str, List[Listener]] = {event: [] for event in EVENTS}
        self._state = WatcherState.IDLE
        self._inbox_url: Optional[str] = None
        self._task: Optional[asyncio.Task] = None
        self._wake: Optional[asyncio.Event] = None
        self._ticking = False

    @classmethod
    async def create(
        cls,
        base_url: str,
        credentials: Any,
        config: Optional[WatcherConfig] = None,
        *,
        authenticator: Authenticator,
        store_factory: Optional[StoreFactory] = None,
    ) -> "InboxWatcher":
        """Authenticate and return a watcher bound to the new session.

        Authentication errors propagate unchanged. When caching is enabled the
        identity store is opened here and owned by the watcher until close().
        """

        config = config or WatcherConfig()
        session, containers = await authenticator(credentials, base_url)
        LOGGER.info("Authenticated as %s", session.web_id)

        store = None
        if config.cache.enabled:
            if store_factory is None:
                raise ValueError("store_factory is required when caching is enabled")
            try:
                store = store_factory(config.cache.path)
            except Exception:
                _close_session(session)
                raise
            LOGGER.info("Identity store opened at %s", config.cache.path)
        return cls(session, containers, config=config, store=store)

    @property
    def state(self) -> WatcherState:
        return self._state

    @property
    def strategy(self) -> str:
        return self._strategy

    @property
    def store(self) -> Optional[IdentityStorePort]:
        return self._store

    def on(self, event: str, listener: Listener) -> Listener:
        """Register a listener and return it, for a later off()."""

        if event not in self._listeners:
            raise ValueError(f"Unknown event: {event}")
        self._listeners[event].append(listener)
        return listener

    def off(self, event: str, listener: Listener) -> None:
        if event not in self._listeners:
            raise ValueError(f"Unknown event: {event}")
        if listener in self._listeners[event]:
            self._listeners[event].remove(listener)

    async def init(self, base_url: str, inbox_path: Optional[str] = None) -> str:
        """Make sure the inbox exists and the session's agent can use it.

        Safe to call repeatedly. Listing, creation and permission errors
        propagate to the caller.
        """

        inbox_url = join_url(base_url, inbox_path or self._config.inbox_path)
        resources = await self._containers.list(base_url)
        if not any(resource.url == inbox_url for resource in resources):
            LOGGER.info("Creating inbox %s", inbox_url)
            await self._containers.make_directory(inbox_url)

        web_id = self._session.web_id
        if not web_id:
            raise PermissionUpdateError("Session is not bound to a WebID")
        permission = Permission(agent=web_id, append=True, read=True)
        await self._containers.change_permissions(inbox_url, [permission])
        return inbox_url

    def start(self, inbox_url: str, strategy: Optional[str] = None) -> "InboxWatcher":
        """Begin polling ``inbox_url`` on the running event loop.

        Returns immediately. Calling start() again after stop() resumes
        polling; if the previous tick is still in flight, the existing loop is
        reused so two ticks never run at once.
        """

        self._strategy = validate_strategy(strategy or self._config.strategy)
        self._inbox_url = inbox_url

        if self._state is WatcherState.POLLING:
            return self

        loop = asyncio.get_running_loop()
        self._state = WatcherState.POLLING
        if self._task is None or self._task.done():
            self._task = loop.create_task(self._poll())
        LOGGER.info("Polling %s every %ss (strategy=%s)", inbox_url, self._config.interval, self._strategy)
        return self

    def stop(self) -> None:
        """Ask the loop not to begin another tick. An in-flight tick finishes."""

        if self._state is not WatcherState.POLLING:
            return
        if self._task is None or self._task.done():
            self._state = WatcherState.STOPPED
            return
        self._state = WatcherState.STOPPING
        if self._wake is not None:
            self._wake.set()

    async def wait_stopped(self) -> None:
        """Wait until the polling loop has settled."""

        if self._task is not None and not self._task.done():
            await self._task

    async def close(self) -> None:
        """Stop polling and release the identity store and the session."""

        self.stop()
        await self.wait_stopped()
        if self._store is not None:
            self._store.close()
            self._store = None
        _close_session(self._session)

    async def __aenter__(self) -> "InboxWatcher":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def _poll(self) -> None:
        wake = self._wake = asyncio.Event()
        try:
            while self._state is WatcherState.POLLING:
                try:
                    await self.tick()
                except Exception as exc:
                    # A failed listing must not end the schedule.
                    LOGGER.exception("Tick failed for %s", self._inbox_url)
                    await self._emit(ERROR_EVENT, ItemError(self._inbox_url or "", exc))

                if self._state is not WatcherState.POLLING:
                    break
                wake.clear()
                try:
                    await asyncio.wait_for(wake.wait(), timeout=self._config.interval)
                except asyncio.TimeoutError:
                    pass
        finally:
            self._state = WatcherState.STOPPED
            LOGGER.info("Stopped polling %s", self._inbox_url)

    async def tick(self, inbox_url: Optional[str] = None) -> List[Notification]:
        """Run one list-fetch-parse-dedup-emit pass and return what was emitted."""

        inbox_url = inbox_url or self._inbox_url
        if not inbox_url:
            raise ValueError("No inbox url: pass one or call start() first")
        if self._ticking:
            raise RuntimeError("A tick is already running for this watcher")

        self._ticking = True
        try:
            resources = await self._containers.list(inbox_url)
            emitted: List[Notification] = []
            for resource in resources:
                try:
                    notification = await asyncio.wait_for(
                        self._load(resource), timeout=self._config.item_timeout
                    )
                except Exception as exc:
                    LOGGER.exception("Skipping %s", resource.url)
                    await self._emit(ERROR_EVENT, ItemError(resource.url, exc))
                    continue

                key = compute_dedup_key(self._strategy, resource, notification)
                if self._store is not None and self._store.has(key):
                    LOGGER.debug("Dedup skip for %s", key)
                    continue

                await self._emit(NOTIFICATION_EVENT, notification)
                if self._store is not None:
                    self._store.mark_seen(key)
                emitted.append(notification)
                LOGGER.info("Notification %s delivered from %s", notification.id, resource.url)
            return emitted
        finally:
            self._ticking = False

    async def _load(self, resource: InboxResource) -> Notification:
        fetched = await self._session.fetch(resource.url)
        # rdflib may fetch remote JSON-LD contexts with blocking I/O.
        return await asyncio.to_thread(
            parse_notification, fetched.body, fetched.content_type, fetched.url
        )

    async def _emit(self, event: str, payload: Any) -> None:
        for listener in list(self._listeners[event]):
            try:
                result = listener(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                LOGGER.exception("Listener for %s event failed", event)
