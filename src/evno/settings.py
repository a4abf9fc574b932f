"""Static configuration for evno.

Watcher settings (pod, inbox, strategy, cache, logging) live in a single JSON
file; account secrets stay in the environment (.env).
"""

import json
import os

from evno.core.config import DEFAULT_CACHE_PATH, CacheConfig, WatcherConfig

PROJECT_ROOT = os.getcwd()

# config.json sits in the working directory unless EVNO_CONFIG points elsewhere.
CONFIG_PATH = os.getenv("EVNO_CONFIG", os.path.join(PROJECT_ROOT, "config.json"))


def _load_json_config() -> dict:
    """Load config.json with a flat, user-friendly schema."""

    if not os.path.exists(CONFIG_PATH):
        raise FileNotFoundError(f"Config file not found: {CONFIG_PATH}")

    with open(CONFIG_PATH, "r", encoding="utf-8") as handle:
        return json.load(handle)


_CONFIG = _load_json_config()

# Expose the raw config for modules that need structured access.
CONFIG = _CONFIG

# Pod root container, e.g. https://pod.example/alice/
BASE_URL = _CONFIG.get("base_url")
INBOX_PATH = _CONFIG.get("inbox_path", "inbox/")

# Dedup strategy: "activity" keys on the activity id, "notification_id" on
# the inbox resource url.
STRATEGY = _CONFIG.get("strategy", "activity")
POLL_INTERVAL = float(_CONFIG.get("poll_interval", 1.0))
ITEM_TIMEOUT = float(_CONFIG.get("item_timeout", 30.0))

# Identity store controls.
# - enabled: without a store every fetched item is emitted on every tick
# - path: SQLite file, parent directories are created on demand
# - ttl_days: horizon used by `evno prune`
_cache = _CONFIG.get("cache", {})
CACHE_ENABLED = bool(_cache.get("enabled", True))
CACHE_PATH = _cache.get("path", DEFAULT_CACHE_PATH)
CACHE_TTL_DAYS = int(_cache.get("ttl_days", 30))

# Console output of received notifications: "text" or "jsonld".
OUTPUT_FORMAT = _CONFIG.get("output_format", "text")

# Logging configuration (optional).
LOGGING = _CONFIG.get("logging", {})

WATCHER_CONFIG = WatcherConfig(
    inbox_path=INBOX_PATH,
    strategy=STRATEGY,
    interval=POLL_INTERVAL,
    item_timeout=ITEM_TIMEOUT,
    cache=CacheConfig(enabled=CACHE_ENABLED, path=CACHE_PATH, ttl_days=CACHE_TTL_DAYS),
)
