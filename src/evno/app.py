"""Application entry point for the evno inbox watcher."""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Optional

from art import tprint
from dotenv import load_dotenv

from evno import settings
from evno.adapters.jsonld_sender import send_notification
from evno.adapters.notification_formatting import format_notification
from evno.adapters.sqlite_storage import open_identity_store
from evno.auth import login
from evno.client import build_watcher, credentials_from_env
from evno.core.config import CacheConfig
from evno.core.ingest import parse_notification
from evno.core.models import Notification
from evno.core.watcher import ERROR_EVENT, NOTIFICATION_EVENT, ItemError, join_url

NAME = "EVNO"
FONT = "tarty-1"

# File extension -> media type for `evno send`.
_SEND_MEDIA_TYPES = {
    ".jsonld": "application/ld+json",
    ".json": "application/ld+json",
    ".ttl": "text/turtle",
    ".nt": "application/n-triples",
}


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


class _RedactingFormatter(logging.Formatter):
    def __init__(self, secrets: list[str], fmt: str, datefmt: Optional[str] = None) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._secrets = [secret for secret in secrets if secret]

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for secret in self._secrets:
            message = message.replace(secret, "***")
        return message


def _collect_redaction_values(config: dict) -> list[str]:
    redact_cfg = config.get("redact", {}) if config else {}
    if not redact_cfg.get("enabled", True):
        return []
    values = []
    for name in redact_cfg.get("patterns", ["EVNO_PASSWORD"]):
        value = os.getenv(name)
        if value:
            values.append(value)
    return sorted(set(values), key=len, reverse=True)


def _configure_logging() -> None:
    config = settings.LOGGING or {}
    if not config.get("enabled", True):
        return

    load_dotenv()
    level_name = str(config.get("level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"
    secrets = _collect_redaction_values(config)
    formatter = _RedactingFormatter(secrets, fmt=fmt, datefmt=datefmt)

    handlers: list[logging.Handler] = []

    if config.get("console", True):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    file_cfg = config.get("file", {})
    if file_cfg.get("enabled", False):
        path = file_cfg.get("path", "logs/evno.log")
        if not os.path.isabs(path):
            path = os.path.join(settings.PROJECT_ROOT, path)
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        max_bytes = int(file_cfg.get("max_bytes", 5 * 1024 * 1024))
        backup_count = int(file_cfg.get("backup_count", 5))
        file_handler = RotatingFileHandler(
            path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if not handlers:
        return

    logging.basicConfig(level=level, handlers=handlers)


def _require_base_url() -> str:
    if not settings.BASE_URL:
        raise RuntimeError("base_url is required in config.json")
    return settings.BASE_URL


async def _init() -> None:
    base_url = _require_base_url()
    # Creating the inbox needs no identity store.
    config = dataclasses.replace(settings.WATCHER_CONFIG, cache=CacheConfig(enabled=False))
    watcher = await build_watcher(base_url, credentials_from_env(), config)
    async with watcher:
        inbox_url = await watcher.init(base_url, settings.INBOX_PATH)
    print(inbox_url)


async def _watch(once: bool, strategy: Optional[str]) -> None:
    logger = logging.getLogger(__name__)
    base_url = _require_base_url()
    watcher = await build_watcher(base_url, credentials_from_env(), settings.WATCHER_CONFIG)

    def _print_notification(notification: Notification) -> None:
        print(format_notification(notification, mode=settings.OUTPUT_FORMAT))

    def _report_error(item_error: ItemError) -> None:
        logger.warning("Could not process %s: %s", item_error.url, item_error.error)

    watcher.on(NOTIFICATION_EVENT, _print_notification)
    watcher.on(ERROR_EVENT, _report_error)

    inbox_url = join_url(base_url, settings.INBOX_PATH)
    async with watcher:
        if once:
            emitted = await watcher.tick(inbox_url)
            logger.info("Single pass complete: notifications=%s", len(emitted))
            return
        watcher.start(inbox_url, strategy)
        logger.info("Watching %s. Press Ctrl+C to stop.", inbox_url)
        await watcher.wait_stopped()


async def _send(path: str, inbox_url: str) -> None:
    media_type = _SEND_MEDIA_TYPES.get(os.path.splitext(path)[1].lower(), "application/ld+json")
    with open(path, "rb") as handle:
        notification = parse_notification(handle, media_type)

    session = await asyncio.to_thread(login, credentials_from_env(), settings.ITEM_TIMEOUT)
    try:
        result = await send_notification(notification, inbox_url, session)
    finally:
        session.close()

    if not result.success:
        raise SystemExit(f"Inbox refused the notification (HTTP {result.status})")
    print(result.location or inbox_url)


def _prune() -> None:
    logger = logging.getLogger(__name__)
    with open_identity_store(settings.CACHE_PATH) as store:
        removed = store.prune(settings.CACHE_TTL_DAYS)
        logger.info("Prune removed %s keys, %s remain", removed, store.count())


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="evno")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("init", help="Create the inbox and grant access to it")

    watch_parser = subparsers.add_parser("watch", help="Start the watcher")
    watch_parser.add_argument("--once", action="store_true", help="Run a single pass and exit")
    watch_parser.add_argument(
        "--strategy",
        choices=["activity", "notification_id"],
        default=None,
        help="Dedup key: activity id or inbox resource url",
    )

    send_parser = subparsers.add_parser("send", help="Send a notification file to an inbox")
    send_parser.add_argument("file")
    send_parser.add_argument("inbox_url")

    subparsers.add_parser("prune", help="Drop identity store keys past cache.ttl_days")

    args = parser.parse_args(argv)
    _print_banner()
    _configure_logging()

    try:
        if args.command == "init":
            asyncio.run(_init())
        elif args.command == "send":
            asyncio.run(_send(args.file, args.inbox_url))
        elif args.command == "prune":
            _prune()
        else:
            asyncio.run(_watch(getattr(args, "once", False), getattr(args, "strategy", None)))
    except KeyboardInterrupt:
        logging.getLogger(__name__).info("Interrupted, shutting down")


if __name__ == "__main__":
    main()
