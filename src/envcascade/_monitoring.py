"""Timing records and a structured log buffer for resolution operations.

The monitor keeps the last 1000 operation records and the last 1000 log
entries in memory. Callers read aggregates with ``get_performance_metrics`` /
``get_error_rates``, recent entries with ``get_recent_logs``, and everything
at once with ``export_monitoring_data``.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from typing import Any, Callable, Iterator

from ._errors import SecretsClientError, fallback_strategy_for, redact
from ._models import ConfigResult, TokenSource
from ._types import ErrorCode, FallbackStrategy

logger = logging.getLogger(__name__)

MAX_RECORDS = 1000
MAX_ENTRY_SIZE = 10_000
_TRUNCATION_MARKER = "... [truncated]"

LOG_LEVELS: dict[str, int] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def sanitize_token_source(token_source: TokenSource | None) -> dict[str, Any] | None:
    if token_source is None:
        return None
    return token_source.describe()


def _check_level(level: str) -> int:
    try:
        return LOG_LEVELS[level]
    except KeyError:
        raise ValueError(f"Unknown log level {level!r}; expected one of {sorted(LOG_LEVELS)}") from None


@dataclass
class OperationRecord:
    operation: str
    started_at: float
    duration: float = 0.0
    success: bool = True
    error_code: ErrorCode | None = None
    retryable: bool = False
    variable_count: int | None = None
    cache_hit: bool = False
    token_source: dict[str, Any] | None = None


@dataclass
class LogEntry:
    timestamp: str
    level: str
    operation: str
    message: str
    token_source: dict[str, Any] | None = None
    performance: dict[str, Any] | None = None
    error: dict[str, Any] | None = None
    metadata: dict[str, Any] | None = None


@dataclass
class _Tracker:
    """Handle yielded by ``OperationMonitor.track``; fill it in before the block exits."""

    record: OperationRecord

    def fail(self, error_code: ErrorCode | None = None, retryable: bool = False) -> None:
        self.record.success = False
        self.record.error_code = error_code
        self.record.retryable = retryable

    def set_variable_count(self, count: int) -> None:
        self.record.variable_count = count

    def set_cache_hit(self, hit: bool = True) -> None:
        self.record.cache_hit = hit

    def set_token_source(self, token_source: TokenSource | None) -> None:
        self.record.token_source = sanitize_token_source(token_source)


class OperationMonitor:
    """Bounded, thread-safe store of operation timings and log entries.

    Usage::

        monitor = OperationMonitor()
        with monitor.track("secret-retrieval") as op:
            secrets = fetch()
            op.set_variable_count(len(secrets))

    Args:
        max_records: Capacity of both the record and the log-entry buffers.
        max_entry_size: Longer log messages are cut and marked ``[truncated]``.
        log_level: Entries below this level are not buffered.
    """

    def __init__(
        self,
        *,
        max_records: int = MAX_RECORDS,
        max_entry_size: int = MAX_ENTRY_SIZE,
        log_level: str = "info",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        _check_level(log_level)
        if max_entry_size <= len(_TRUNCATION_MARKER):
            raise ValueError(f"max_entry_size must exceed {len(_TRUNCATION_MARKER)}")
        self.max_records = max_records
        self.max_entry_size = max_entry_size
        self.log_level = log_level
        self._records: deque[OperationRecord] = deque(maxlen=max_records)
        self._entries: deque[LogEntry] = deque(maxlen=max_records)
        self._lock = threading.Lock()
        self._clock = clock

    # -- operation records ----------------------------------------------------

    def record(self, record: OperationRecord) -> None:
        with self._lock:
            self._records.append(record)

    @contextmanager
    def track(self, operation: str) -> Iterator[_Tracker]:
        tracker = _Tracker(OperationRecord(operation=operation, started_at=self._clock()))
        try:
            yield tracker
        except BaseException:
            tracker.record.success = False
            raise
        finally:
            record = tracker.record
            record.duration = self._clock() - record.started_at
            self.record(record)
            self._log_completion(record)

    def _log_completion(self, record: OperationRecord) -> None:
        if record.success:
            level, message = "info", f"Completed {record.operation} in {record.duration:.3f}s"
        else:
            level, message = "error", f"Failed {record.operation} after {record.duration:.3f}s"

        error = None
        if record.error_code is not None:
            error = {
                "code": record.error_code.value,
                "retryable": record.retryable,
                "fallback_strategy": fallback_strategy_for(record.error_code, record.retryable).value,
            }
        self._append(
            level,
            record.operation,
            message,
            token_source=record.token_source,
            performance={
                "duration": record.duration,
                "success": record.success,
                "variable_count": record.variable_count,
            },
            error=error,
            metadata={"cache_hit": record.cache_hit},
        )
        logger.debug(message)

    # -- log entries ----------------------------------------------------------

    def _truncate(self, message: str) -> str:
        if len(message) <= self.max_entry_size:
            return message
        return message[: self.max_entry_size - len(_TRUNCATION_MARKER)] + _TRUNCATION_MARKER

    def _append(
        self,
        level: str,
        operation: str,
        message: str,
        *,
        token_source: dict[str, Any] | None = None,
        performance: dict[str, Any] | None = None,
        error: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> LogEntry | None:
        if _check_level(level) < LOG_LEVELS[self.log_level]:
            return None
        entry = LogEntry(
            timestamp=datetime.now(UTC).isoformat(),
            level=level,
            operation=operation,
            message=self._truncate(message),
            token_source=token_source,
            performance=performance,
            error=error,
            metadata=metadata,
        )
        with self._lock:
            self._entries.append(entry)
        return entry

    def log(
        self,
        level: str,
        operation: str,
        message: str,
        *,
        token_source: TokenSource | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> LogEntry | None:
        """Buffer an entry and forward it to the module logger."""
        entry = self._append(
            level,
            operation,
            message,
            token_source=sanitize_token_source(token_source),
            metadata=metadata,
        )
        if entry is not None:
            logger.log(LOG_LEVELS[level], "%s: %s", operation, entry.message)
        return entry

    def log_fallback_usage(
        self,
        strategy: FallbackStrategy,
        reason: str,
        *,
        token_source: TokenSource | None = None,
        error: SecretsClientError | None = None,
    ) -> LogEntry | None:
        error_info = None
        if error is not None:
            error_info = {
                "code": error.code.value,
                "message": redact(error.message),
                "retryable": error.retryable,
                "fallback_strategy": strategy.value,
            }
        entry = self._append(
            "warning",
            "fallback-usage",
            f"Fallback triggered: {strategy.value}",
            token_source=sanitize_token_source(token_source),
            error=error_info,
            metadata={"fallback_strategy": strategy.value, "reason": redact(reason)},
        )
        if entry is not None:
            logger.debug("Fallback %s: %s", strategy.value, reason)
        return entry

    def log_configuration_diagnostics(self, result: ConfigResult) -> LogEntry | None:
        """Buffer a token-free summary of how *result* was assembled."""
        remote = result.remote_status
        diagnostics = result.diagnostics
        active = remote.token_source
        classified = diagnostics.classified_error

        metadata = {
            "app_name": result.app_name,
            "environment": result.environment,
            "token_loading": {
                "checked_sources": [
                    {
                        "origin": d.origin.value,
                        "path": d.path,
                        "exists": d.exists,
                        "has_token": d.has_token,
                        "is_active": d.is_active,
                        "check_order": order,
                    }
                    for order, d in enumerate(diagnostics.token_source_diagnostics, start=1)
                ],
                "active_token": sanitize_token_source(active),
            },
            "secret_retrieval": {
                "attempted": remote.available,
                "success": remote.success,
                "variable_count": remote.variable_count,
                "error": remote.error,
            },
            "fallback_usage": {
                "triggered": classified is not None,
                "strategy": classified.fallback_strategy.value if classified is not None else None,
            },
            "loaded_files": len(result.loaded_files),
            "file_errors": len(diagnostics.file_errors),
            "total_variables": result.total_variables,
        }
        return self._append(
            "info",
            "configuration-diagnostics",
            "Configuration diagnostics",
            token_source=sanitize_token_source(active),
            metadata=metadata,
        )

    def get_recent_logs(
        self,
        level: str = "info",
        limit: int = 100,
        operation: str | None = None,
    ) -> list[LogEntry]:
        """Entries at or above *level*, newest first."""
        minimum = _check_level(level)
        with self._lock:
            entries = list(self._entries)
        selected = [
            e
            for e in entries
            if LOG_LEVELS[e.level] >= minimum and (operation is None or e.operation == operation)
        ]
        return selected[-limit:][::-1] if limit > 0 else []

    # -- aggregates -----------------------------------------------------------

    def _select(self, operation: str | None, window: float | None) -> list[OperationRecord]:
        with self._lock:
            records = list(self._records)
        if operation is not None:
            records = [r for r in records if r.operation == operation]
        if window is not None:
            cutoff = self._clock() - window
            records = [r for r in records if r.started_at >= cutoff]
        return records

    def get_performance_metrics(
        self,
        operation: str | None = None,
        window: float | None = None,
    ) -> dict[str, Any]:
        records = self._select(operation, window)
        durations = sorted(r.duration for r in records)
        successes = sum(1 for r in records if r.success)

        errors_by_code: dict[str, int] = {}
        for r in records:
            if r.error_code is not None:
                errors_by_code[r.error_code.value] = errors_by_code.get(r.error_code.value, 0) + 1

        p95 = 0.0
        if durations:
            index = int(len(durations) * 0.95)
            p95 = durations[min(index, len(durations) - 1)]

        return {
            "total_operations": len(records),
            "success_rate": successes / len(records) if records else 0.0,
            "average_duration": sum(durations) / len(durations) if durations else 0.0,
            "p95_duration": p95,
            "errors_by_code": errors_by_code,
        }

    def get_error_rates(self, window: float = 3600.0) -> dict[str, Any]:
        records = self._select(None, window)
        failed = [r for r in records if not r.success]

        errors_by_code: dict[str, int] = {}
        fallback_usage: dict[str, int] = {}
        for r in failed:
            if r.error_code is None:
                continue
            errors_by_code[r.error_code.value] = errors_by_code.get(r.error_code.value, 0) + 1
            strategy = fallback_strategy_for(r.error_code, r.retryable).value
            fallback_usage[strategy] = fallback_usage.get(strategy, 0) + 1

        return {
            "total_operations": len(records),
            "error_count": len(failed),
            "error_rate": len(failed) / len(records) if records else 0.0,
            "errors_by_code": errors_by_code,
            "fallback_usage": fallback_usage,
        }

    def export_monitoring_data(self, include_raw: bool = False) -> dict[str, Any]:
        """Snapshot of aggregates, recent logs and settings for external analysis."""
        performance = self.get_performance_metrics()
        export: dict[str, Any] = {
            "summary": {
                "total_operations": performance["total_operations"],
                "success_rate": performance["success_rate"],
                "average_duration": performance["average_duration"],
                "error_rates": {
                    "last-hour": self.get_error_rates(3600.0),
                    "last-day": self.get_error_rates(86400.0),
                },
            },
            "recent_logs": [asdict(e) for e in self.get_recent_logs("info", 50)],
            "configuration": {
                "log_level": self.log_level,
                "max_entry_size": self.max_entry_size,
                "max_records": self.max_records,
            },
        }
        if include_raw:
            records = self._select(None, None)
            export["performance_records"] = [
                {**asdict(r), "error_code": r.error_code.value if r.error_code else None}
                for r in records
            ]
        return export

    def clear(self) -> None:
        with self._lock:
            self._records.clear()
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
