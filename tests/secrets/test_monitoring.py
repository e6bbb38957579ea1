"""Tests for _monitoring.py: operation records, log entries and aggregates."""

import json

import pytest

from envcascade._errors import SecretsClientError, redact
from envcascade._models import ConfigResult, Diagnostics, RemoteStatus, TokenSource, TokenSourceDiagnostic
from envcascade._monitoring import OperationMonitor
from envcascade._types import ErrorCode, FallbackStrategy, Secret, TokenOrigin

TOKEN = "svc_token_0123456789"


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


class TestTrack:
    def test_records_duration_and_success(self, clock):
        monitor = OperationMonitor(clock=clock)
        with monitor.track("secret-retrieval") as op:
            clock.now += 0.25
            op.set_variable_count(3)

        metrics = monitor.get_performance_metrics("secret-retrieval")
        assert metrics["total_operations"] == 1
        assert metrics["success_rate"] == 1.0
        assert metrics["average_duration"] == pytest.approx(0.25)

    def test_exception_marks_failure_and_propagates(self, clock):
        monitor = OperationMonitor(clock=clock)
        with pytest.raises(RuntimeError):
            with monitor.track("resolve"):
                raise RuntimeError("boom")
        assert monitor.get_performance_metrics()["success_rate"] == 0.0

    def test_token_source_is_sanitized(self, clock):
        monitor = OperationMonitor(clock=clock)
        source = TokenSource(origin=TokenOrigin.local_env, token=Secret("svc_token_0123456789"), path="/a/.env")
        with monitor.track("token-loading") as op:
            op.set_token_source(source)
        record = monitor._records[0]
        assert record.token_source == {"origin": "local_env", "path": "/a/.env", "token_length": 20}

    def test_bounded(self, clock):
        monitor = OperationMonitor(max_records=3, clock=clock)
        for _ in range(5):
            with monitor.track("resolve"):
                pass
        assert len(monitor) == 3


class TestAggregates:
    def test_p95_and_errors_by_code(self, clock):
        monitor = OperationMonitor(clock=clock)
        for duration in range(1, 21):
            with monitor.track("secret-retrieval") as op:
                clock.now += duration
                if duration % 5 == 0:
                    op.fail(ErrorCode.NETWORK_ERROR)

        metrics = monitor.get_performance_metrics("secret-retrieval")
        assert metrics["p95_duration"] == 20
        assert metrics["errors_by_code"] == {"NETWORK_ERROR": 4}
        assert metrics["success_rate"] == pytest.approx(0.8)

    def test_error_rates_infer_fallback_usage(self, clock):
        monitor = OperationMonitor(clock=clock)
        with monitor.track("sdk-initialization") as op:
            op.fail(ErrorCode.AUTHENTICATION_FAILED)
        with monitor.track("secret-retrieval") as op:
            op.fail(ErrorCode.RATE_LIMIT_EXCEEDED)
        with monitor.track("secret-retrieval"):
            pass

        rates = monitor.get_error_rates()
        assert rates["error_count"] == 2
        assert rates["error_rate"] == pytest.approx(2 / 3)
        assert rates["fallback_usage"] == {"LOCAL_ENV_ONLY": 1, "RETRY_WITH_BACKOFF": 1}

    def test_retryable_sdk_error_counts_as_retry(self, clock):
        monitor = OperationMonitor(clock=clock)
        with monitor.track("secret-retrieval") as op:
            op.fail(ErrorCode.SDK_ERROR, True)
        with monitor.track("secret-retrieval") as op:
            op.fail(ErrorCode.SDK_ERROR)

        rates = monitor.get_error_rates()
        assert rates["fallback_usage"] == {"RETRY_WITH_BACKOFF": 1, "LOCAL_ENV_ONLY": 1}

    def test_window_excludes_old_records(self, clock):
        monitor = OperationMonitor(clock=clock)
        with monitor.track("resolve"):
            pass
        clock.now += 7200
        assert monitor.get_error_rates(window=3600)["total_operations"] == 0

    def test_clear(self, clock):
        monitor = OperationMonitor(clock=clock)
        with monitor.track("resolve"):
            pass
        monitor.clear()
        assert len(monitor) == 0



class TestLogEntries:
    def test_track_writes_completion_entry(self, clock):
        monitor = OperationMonitor(clock=clock)
        with monitor.track("secret-retrieval") as op:
            clock.now += 1.5
            op.fail(ErrorCode.SDK_ERROR, True)

        (entry,) = monitor.get_recent_logs()
        assert entry.level == "error"
        assert entry.operation == "secret-retrieval"
        assert entry.message == "Failed secret-retrieval after 1.500s"
        assert entry.performance["success"] is False
        assert entry.error == {
            "code": "SDK_ERROR",
            "retryable": True,
            "fallback_strategy": "RETRY_WITH_BACKOFF",
        }

    def test_recent_logs_newest_first_and_filtered(self, clock):
        monitor = OperationMonitor(clock=clock)
        monitor.log("info", "token-loading", "first")
        monitor.log("warning", "secret-retrieval", "second")
        monitor.log("error", "token-loading", "third")

        assert [e.message for e in monitor.get_recent_logs()] == ["third", "second", "first"]
        assert [e.message for e in monitor.get_recent_logs("warning")] == ["third", "second"]
        assert [e.message for e in monitor.get_recent_logs(operation="token-loading")] == ["third", "first"]
        assert [e.message for e in monitor.get_recent_logs(limit=1)] == ["third"]

    def test_entries_below_log_level_are_dropped(self, clock):
        monitor = OperationMonitor(log_level="warning", clock=clock)
        assert monitor.log("info", "resolve", "quiet") is None
        assert monitor.log("warning", "resolve", "loud") is not None
        assert [e.message for e in monitor.get_recent_logs("debug")] == ["loud"]

    def test_unknown_level_rejected(self, clock):
        with pytest.raises(ValueError):
            OperationMonitor(log_level="verbose", clock=clock)
        with pytest.raises(ValueError):
            OperationMonitor(clock=clock).get_recent_logs("verbose")

    def test_long_messages_truncated(self, clock):
        monitor = OperationMonitor(max_entry_size=40, clock=clock)
        entry = monitor.log("info", "resolve", "x" * 500)
        assert len(entry.message) == 40
        assert entry.message.endswith("... [truncated]")

    def test_entry_buffer_bounded(self, clock):
        monitor = OperationMonitor(max_records=2, clock=clock)
        for i in range(5):
            monitor.log("info", "resolve", f"entry {i}")
        assert [e.message for e in monitor.get_recent_logs()] == ["entry 4", "entry 3"]

    def test_fallback_usage_masks_credentials(self, clock):
        monitor = OperationMonitor(clock=clock)
        error = SecretsClientError(
            ErrorCode.NETWORK_ERROR, "connect failed token=abc123xyz", retryable=True
        )
        entry = monitor.log_fallback_usage(
            FallbackStrategy.RETRY_WITH_BACKOFF, error.message, error=error
        )

        assert entry.level == "warning"
        assert entry.operation == "fallback-usage"
        assert entry.message == "Fallback triggered: RETRY_WITH_BACKOFF"
        assert entry.error["code"] == "NETWORK_ERROR"
        assert entry.metadata["fallback_strategy"] == "RETRY_WITH_BACKOFF"
        assert "abc123xyz" not in json.dumps(entry.error)
        assert "abc123xyz" not in json.dumps(entry.metadata)


class TestConfigurationDiagnostics:
    def test_summarizes_without_token(self, clock):
        source = TokenSource(origin=TokenOrigin.local_env, token=Secret(TOKEN), path="/app/.env.local")
        result = ConfigResult(
            app_name="Shop",
            environment="development",
            variables={"A": "1", "B": "2"},
            loaded_files=["/app/.env"],
            total_variables=2,
            remote_status=RemoteStatus(available=True, success=False, error="down", token_source=source),
            diagnostics=Diagnostics(
                token_source_diagnostics=[
                    TokenSourceDiagnostic(
                        origin=TokenOrigin.process_env, exists=False, has_token=False, is_active=False
                    ),
                    TokenSourceDiagnostic(
                        origin=TokenOrigin.local_env,
                        path="/app/.env.local",
                        exists=True,
                        has_token=True,
                        is_active=True,
                    ),
                ]
            ),
        )

        entry = OperationMonitor(clock=clock).log_configuration_diagnostics(result)

        assert entry.operation == "configuration-diagnostics"
        loading = entry.metadata["token_loading"]
        assert [s["check_order"] for s in loading["checked_sources"]] == [1, 2]
        assert loading["active_token"] == {"origin": "local_env", "path": "/app/.env.local", "token_length": 20}
        assert entry.metadata["secret_retrieval"] == {
            "attempted": True,
            "success": False,
            "variable_count": 0,
            "error": "down",
        }
        assert entry.metadata["fallback_usage"] == {"triggered": False, "strategy": None}
        assert entry.metadata["total_variables"] == 2
        assert TOKEN not in json.dumps(entry.metadata)


class TestExport:
    def test_export_shape(self, clock):
        monitor = OperationMonitor(clock=clock)
        with monitor.track("secret-retrieval") as op:
            op.fail(ErrorCode.RATE_LIMIT_EXCEEDED)
        with monitor.track("secret-retrieval"):
            pass

        data = monitor.export_monitoring_data()

        assert data["summary"]["total_operations"] == 2
        assert data["summary"]["success_rate"] == 0.5
        assert data["summary"]["error_rates"]["last-hour"]["error_count"] == 1
        assert data["summary"]["error_rates"]["last-day"]["error_count"] == 1
        assert len(data["recent_logs"]) == 2
        assert data["configuration"] == {"log_level": "info", "max_entry_size": 10_000, "max_records": 1000}
        assert "performance_records" not in data
        json.dumps(data)

    def test_export_with_raw_records(self, clock):
        monitor = OperationMonitor(clock=clock)
        with monitor.track("secret-retrieval") as op:
            op.fail(ErrorCode.RATE_LIMIT_EXCEEDED)

        data = monitor.export_monitoring_data(include_raw=True)

        (record,) = data["performance_records"]
        assert record["operation"] == "secret-retrieval"
        assert record["error_code"] == "RATE_LIMIT_EXCEEDED"
        json.dumps(data)
