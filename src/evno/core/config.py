"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely.
"""

from __future__ import annotations

from dataclasses import dataclass, field

DEFAULT_CACHE_PATH = "./.cache/cache.dsb"


@dataclass(frozen=True)
class CacheConfig:
    """Identity store settings."""

    enabled: bool = True
    path: str = DEFAULT_CACHE_PATH
    ttl_days: int = 30


@dataclass(frozen=True)
class WatcherConfig:
    """Polling settings for the watcher engine."""

    inbox_path: str = "inbox/"
    strategy: str = "activity"
    # Seconds between the end of one tick and the start of the next.
    interval: float = 1.0
    # Upper bound on fetch + parse of a single inbox item, in seconds.
    item_timeout: float = 30.0
    cache: CacheConfig = field(default_factory=CacheConfig)
