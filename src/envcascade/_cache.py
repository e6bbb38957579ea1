"""In-memory cache of fetched secrets.

Entries are keyed by app, environment and token identity, so secrets fetched
with one credential are never served to another. Values are copied on the way
in and on the way out. Removed entries have their values overwritten before
release.

Secure wipe is best-effort: Python strings are immutable, so the wipe replaces
the cache's references with random text of equal length and drops them. It
cannot scrub copies the interpreter or the caller still hold.
"""

from __future__ import annotations

import atexit
import json
import logging
import secrets as _random
import signal
import string
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from ._models import CacheMetrics, CacheStatus, TokenSource
from ._types import InvalidationCriteriaError, InvalidationPattern, TokenOrigin

logger = logging.getLogger(__name__)

DEFAULT_TTL = 5 * 60.0
DEFAULT_MAX_ENTRIES = 100
DEFAULT_SWEEP_INTERVAL = 2 * 60.0

_WIPE_ALPHABET = string.ascii_letters + string.digits

CacheKey = tuple[str, str, str, str]


@dataclass
class CacheEntry:
    secrets: dict[str, str]
    created_at: float
    ttl: float
    app_name: str
    environment: str
    token_source: TokenSource
    access_count: int = 0
    last_accessed_at: float = field(default=0.0)

    def is_expired(self, now: float) -> bool:
        return now - self.created_at > self.ttl


def _cache_key(app_name: str, environment: str, token_source: TokenSource) -> CacheKey:
    return (app_name, environment, token_source.origin.value, token_source.identity)


def wipe_secrets(secrets: dict[str, str]) -> None:
    """Overwrite every value with random text of equal length, then empty the dict."""
    for key, value in list(secrets.items()):
        secrets[key] = "".join(_random.choice(_WIPE_ALPHABET) for _ in range(len(value)))
    secrets.clear()


class SecretsCache:
    """TTL-keyed, capacity-bounded cache of secrets.

    Construct one per process (or per test) and pass it to the components that
    need it. ``close()`` stops the background sweep and wipes every entry; the
    cache is also a context manager.

    Args:
        max_entries: Capacity. Adding a new key at capacity evicts the oldest entry.
        default_ttl: Seconds an entry stays fresh when ``set`` gets no ``ttl``.
        sweep_interval: Seconds between background expiry sweeps. ``None``
            disables the sweep thread.
        clock: Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        *,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        default_ttl: float = DEFAULT_TTL,
        sweep_interval: float | None = DEFAULT_SWEEP_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: dict[CacheKey, CacheEntry] = {}
        self._lock = threading.RLock()

        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._sweeps = 0

        self._closed = False
        self._stop = threading.Event()
        self._sweep_interval = sweep_interval
        self._sweeper: threading.Thread | None = None
        self._previous_handlers: dict[int, Any] = {}
        self._atexit_registered = False

        if sweep_interval is not None:
            self._start_sweeper(sweep_interval)

    # -- context manager ----------------------------------------------------

    def __enter__(self) -> "SecretsCache":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    # -- core operations ----------------------------------------------------

    def set(
        self,
        app_name: str,
        environment: str,
        secrets: dict[str, str],
        token_source: TokenSource,
        ttl: float | None = None,
    ) -> None:
        key = _cache_key(app_name, environment, token_source)
        now = self._clock()
        entry = CacheEntry(
            secrets=dict(secrets),
            created_at=now,
            ttl=ttl if ttl is not None else self.default_ttl,
            app_name=app_name,
            environment=environment,
            token_source=token_source,
            last_accessed_at=now,
        )

        with self._lock:
            previous = self._entries.get(key)
            if previous is None and len(self._entries) >= self.max_entries:
                self._evict_oldest()
            elif previous is not None:
                wipe_secrets(previous.secrets)
            self._entries[key] = entry

        logger.debug(
            "Cached %d secrets for %s:%s (ttl=%ss)", len(secrets), app_name, environment, entry.ttl
        )

    def get(
        self,
        app_name: str,
        environment: str,
        token_source: TokenSource,
    ) -> dict[str, str] | None:
        key = _cache_key(app_name, environment, token_source)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None

            now = self._clock()
            if entry.is_expired(now):
                self._remove(key)
                self._misses += 1
                logger.debug("Cache entry expired for %s:%s", app_name, environment)
                return None

            entry.access_count += 1
            entry.last_accessed_at = now
            self._hits += 1
            logger.debug(
                "Cache hit for %s:%s (age %.0fs)", app_name, environment, now - entry.created_at
            )
            return dict(entry.secrets)

    def has(self, app_name: str, environment: str, token_source: TokenSource) -> bool:
        key = _cache_key(app_name, environment, token_source)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            if entry.is_expired(self._clock()):
                self._remove(key)
                return False
            return True

    def invalidate(
        self,
        pattern: InvalidationPattern,
        *,
        app_name: str | None = None,
        environment: str | None = None,
        origin: TokenOrigin | None = None,
    ) -> int:
        """Remove matching entries and return how many were removed.

        Raises:
            InvalidationCriteriaError: ``BY_APP``, ``BY_ENVIRONMENT`` or
                ``BY_TOKEN_SOURCE_ORIGIN`` without its criterion.
        """
        if pattern is InvalidationPattern.BY_APP and not app_name:
            raise InvalidationCriteriaError(pattern, "app_name")
        if pattern is InvalidationPattern.BY_ENVIRONMENT and not environment:
            raise InvalidationCriteriaError(pattern, "environment")
        if pattern is InvalidationPattern.BY_TOKEN_SOURCE_ORIGIN and origin is None:
            raise InvalidationCriteriaError(pattern, "origin")

        with self._lock:
            now = self._clock()
            if pattern is InvalidationPattern.ALL:
                doomed = list(self._entries)
            elif pattern is InvalidationPattern.BY_APP:
                doomed = [k for k, e in self._entries.items() if e.app_name == app_name]
            elif pattern is InvalidationPattern.BY_ENVIRONMENT:
                doomed = [k for k, e in self._entries.items() if e.environment == environment]
            elif pattern is InvalidationPattern.BY_TOKEN_SOURCE_ORIGIN:
                doomed = [k for k, e in self._entries.items() if e.token_source.origin is origin]
            else:
                doomed = [k for k, e in self._entries.items() if e.is_expired(now)]

            for key in doomed:
                self._remove(key)

        if doomed:
            logger.debug("Invalidated %d cache entries (%s)", len(doomed), pattern.value)
        return len(doomed)

    def clear(self) -> int:
        return self.invalidate(InvalidationPattern.ALL)

    # -- metrics ------------------------------------------------------------

    def get_metrics(self) -> CacheMetrics:
        with self._lock:
            now = self._clock()
            entries = list(self._entries.values())
            sizes = [len(json.dumps(e.secrets)) * 2 for e in entries]
            total_requests = self._hits + self._misses
            hit_rate = self._hits / total_requests if total_requests else 0.0
            created = [e.created_at for e in entries]

            return CacheMetrics(
                entries=len(entries),
                hits=self._hits,
                misses=self._misses,
                hit_rate=round(hit_rate, 2),
                avg_entry_size=round(sum(sizes) / len(sizes)) if sizes else 0,
                oldest_entry_age=now - min(created) if created else None,
                newest_entry_age=now - max(created) if created else None,
                memory_estimate=sum(sizes),
                evictions=self._evictions,
                sweeps=self._sweeps,
            )

    def get_status(self) -> CacheStatus:
        metrics = self.get_metrics()
        return CacheStatus(
            entries=metrics.entries,
            max_entries=self.max_entries,
            default_ttl=self.default_ttl,
            sweep_running=self._sweeper is not None and self._sweeper.is_alive(),
            closed=self._closed,
            memory_estimate=metrics.memory_estimate,
        )

    def configure(
        self,
        *,
        default_ttl: float | None = None,
        max_entries: int | None = None,
        sweep_interval: float | None = None,
    ) -> None:
        with self._lock:
            if default_ttl is not None:
                self.default_ttl = default_ttl
            if max_entries is not None:
                if max_entries < 1:
                    raise ValueError("max_entries must be at least 1")
                self.max_entries = max_entries
                while len(self._entries) > self.max_entries:
                    self._evict_oldest()
        if sweep_interval is not None and not self._closed:
            self._stop_sweeper()
            self._stop = threading.Event()
            self._start_sweeper(sweep_interval)

    async def warm(
        self,
        app_name: str,
        environment: str,
        token_source: TokenSource,
        loader: Callable[[str, str], Awaitable[dict[str, str]]],
    ) -> bool:
        """Populate an entry ahead of first use. Returns ``False`` if *loader* fails."""
        try:
            secrets = await loader(app_name, environment)
        except Exception:
            logger.exception("Failed to warm cache for %s:%s", app_name, environment)
            return False
        self.set(app_name, environment, secrets, token_source)
        return True

    # -- internals ----------------------------------------------------------

    def _remove(self, key: CacheKey) -> None:
        entry = self._entries.pop(key, None)
        if entry is not None:
            wipe_secrets(entry.secrets)

    def _evict_oldest(self) -> None:
        if not self._entries:
            return
        oldest_key = min(self._entries, key=lambda k: self._entries[k].created_at)
        entry = self._entries[oldest_key]
        self._remove(oldest_key)
        self._evictions += 1
        logger.debug("Evicted oldest cache entry %s:%s", entry.app_name, entry.environment)

    def sweep(self) -> int:
        """Drop expired entries. Called periodically by the sweep thread."""
        removed = self.invalidate(InvalidationPattern.EXPIRED_ONLY)
        with self._lock:
            self._sweeps += 1
        return removed

    def _start_sweeper(self, interval: float) -> None:
        self._sweep_interval = interval
        stop = self._stop

        def _run() -> None:
            while not stop.wait(interval):
                try:
                    self.sweep()
                except Exception:
                    logger.exception("Cache sweep failed")

        self._sweeper = threading.Thread(target=_run, name="envcascade-cache-sweep", daemon=True)
        self._sweeper.start()

    def _stop_sweeper(self) -> None:
        self._stop.set()
        if self._sweeper is not None and self._sweeper is not threading.current_thread():
            self._sweeper.join()
        self._sweeper = None

    # -- shutdown -----------------------------------------------------------

    def install_shutdown_hooks(self) -> None:
        """Wipe the cache at interpreter exit and on SIGINT / SIGTERM.

        Signal handlers can only be installed from the main thread; elsewhere
        only the ``atexit`` hook is registered. Previously installed handlers
        are called after the wipe.
        """
        if not self._atexit_registered:
            atexit.register(self.close)
            self._atexit_registered = True

        if threading.current_thread() is not threading.main_thread():
            return

        for signum in (signal.SIGINT, signal.SIGTERM):
            previous = signal.getsignal(signum)
            self._previous_handlers[signum] = previous

            def _handler(received: int, frame: Any, _previous: Any = previous) -> None:
                logger.info("Signal %s received, wiping secrets cache", received)
                self.close()
                if callable(_previous):
                    _previous(received, frame)
                elif _previous == signal.SIG_DFL:
                    signal.signal(received, signal.SIG_DFL)
                    signal.raise_signal(received)

            signal.signal(signum, _handler)

    def _remove_shutdown_hooks(self) -> None:
        if self._atexit_registered:
            atexit.unregister(self.close)
            self._atexit_registered = False
        if self._previous_handlers and threading.current_thread() is threading.main_thread():
            for signum, previous in self._previous_handlers.items():
                signal.signal(signum, previous if previous is not None else signal.SIG_DFL)
        self._previous_handlers.clear()

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Stop the sweep thread and securely wipe every entry. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._stop_sweeper()
        with self._lock:
            count = len(self._entries)
            for key in list(self._entries):
                self._remove(key)
        self._remove_shutdown_hooks()
        logger.debug("Secrets cache closed (%d entries wiped)", count)
