"""Tests for _client.py: SecretsClient against the fake SDK."""

import logging

import pytest

from envcascade._cache import SecretsCache
from envcascade._client import SecretsClient
from envcascade._errors import SecretsClientError
from envcascade._monitoring import OperationMonitor
from envcascade._repository import FakeEnvironmentRepository
from envcascade._sdk import SecretsServiceHTTPError
from envcascade._testing import FakeSecretsSDK, fake_sdk_factory
from envcascade._token import TOKEN_ENV_VAR, TokenResolver
from envcascade._types import ErrorCode, SecretsOrigin, TokenOrigin

TOKEN = "svc_token_0123456789"


@pytest.fixture
def project(tmp_path):
    (tmp_path / ".git").mkdir()
    return tmp_path


@pytest.fixture
def cache():
    with SecretsCache(sweep_interval=None) as c:
        yield c


def _client(project, sdk, *, cache=None, token=TOKEN, timeout=1.0, monitor=None) -> SecretsClient:
    env = {TOKEN_ENV_VAR: token} if token else {}
    return SecretsClient(
        token_resolver=TokenResolver(FakeEnvironmentRepository(env=env, cwd=project)),
        cache=cache,
        sdk_factory=fake_sdk_factory(sdk),
        timeout=timeout,
        monitor=monitor,
    )


class TestInitialize:
    async def test_success(self, project):
        sdk = FakeSecretsSDK()
        client = _client(project, sdk)

        assert await client.initialize("Shop", "dev") is True
        assert client.initialized is True
        assert client.token_source.origin is TokenOrigin.process_env
        assert sdk.token == TOKEN
        assert sdk.init_calls == 1

    async def test_no_token(self, project):
        client = _client(project, FakeSecretsSDK(), token=None)
        with pytest.raises(SecretsClientError) as excinfo:
            await client.initialize("Shop", "dev")
        assert excinfo.value.code is ErrorCode.TOKEN_NOT_FOUND
        assert client.initialized is False

    async def test_no_token_log_names_variable(self, project, caplog):
        client = _client(project, FakeSecretsSDK(), token=None)
        with caplog.at_level(logging.WARNING, logger="envcascade._client"):
            with pytest.raises(SecretsClientError):
                await client.initialize("Shop", "dev")
        assert f"No valid {TOKEN_ENV_VAR} found" in caplog.text
        assert "[REDACTED]" not in caplog.text

    async def test_malformed_token_is_not_found(self, project):
        client = _client(project, FakeSecretsSDK(), token="short")
        with pytest.raises(SecretsClientError) as excinfo:
            await client.initialize("Shop", "dev")
        assert excinfo.value.code is ErrorCode.TOKEN_NOT_FOUND

    @pytest.mark.parametrize("app, env", [("", "dev"), ("Shop", "   ")])
    async def test_blank_app_or_environment(self, project, app, env):
        client = _client(project, FakeSecretsSDK())
        with pytest.raises(SecretsClientError) as excinfo:
            await client.initialize(app, env)
        assert excinfo.value.code is ErrorCode.SDK_ERROR
        assert excinfo.value.token_source is not None

    async def test_no_sdk_factory(self, project):
        client = SecretsClient(
            token_resolver=TokenResolver(FakeEnvironmentRepository(env={TOKEN_ENV_VAR: TOKEN}, cwd=project))
        )
        with pytest.raises(SecretsClientError) as excinfo:
            await client.initialize("Shop", "dev")
        assert excinfo.value.code is ErrorCode.SDK_ERROR

    async def test_authentication_failure(self, project, caplog):
        sdk = FakeSecretsSDK()
        sdk.fail_init(SecretsServiceHTTPError(401, "Unauthorized"))
        client = _client(project, sdk)

        with caplog.at_level(logging.WARNING, logger="envcascade._client"):
            with pytest.raises(SecretsClientError) as excinfo:
                await client.initialize("Shop", "dev")

        assert excinfo.value.code is ErrorCode.AUTHENTICATION_FAILED
        assert excinfo.value.token_source.origin is TokenOrigin.process_env
        assert sdk.closed is True
        assert TOKEN not in caplog.text

    async def test_init_timeout_is_network_error(self, project):
        sdk = FakeSecretsSDK(delay=0.5)
        client = _client(project, sdk, timeout=0.05)
        with pytest.raises(SecretsClientError) as excinfo:
            await client.initialize("Shop", "dev")
        assert excinfo.value.code is ErrorCode.NETWORK_ERROR
        assert excinfo.value.retryable is True


class TestGetSecrets:
    async def test_uninitialized_returns_failure(self, project):
        result = await _client(project, FakeSecretsSDK()).get_secrets()
        assert result.success is False
        assert result.origin is SecretsOrigin.fallback

    async def test_fetches_and_normalizes(self, project):
        sdk = FakeSecretsSDK({("Shop", "dev"): [{"key": "A", "value": "1"}, {"key": "", "value": "x"}]})
        client = _client(project, sdk)
        await client.initialize("Shop", "dev")

        result = await client.get_secrets()

        assert result.success is True
        assert result.secrets == {"A": "1"}
        assert result.origin is SecretsOrigin.sdk
        assert result.token_source.origin is TokenOrigin.process_env

    async def test_cache_hit_skips_sdk(self, project, cache):
        sdk = FakeSecretsSDK({("Shop", "dev"): {"A": "1"}})
        client = _client(project, sdk, cache=cache)
        await client.initialize("Shop", "dev")

        first = await client.get_secrets()
        second = await client.get_secrets()

        assert first.origin is SecretsOrigin.sdk
        assert second.origin is SecretsOrigin.cache
        assert second.secrets == {"A": "1"}
        assert sdk.get_calls == [("Shop", "dev")]

    async def test_failure_never_raises(self, project):
        sdk = FakeSecretsSDK()
        sdk.fail_get(SecretsServiceHTTPError(404, "Not Found (environment)"))
        client = _client(project, sdk)
        await client.initialize("Shop", "qa")

        result = await client.get_secrets()

        assert result.success is False
        assert result.error_code is ErrorCode.ENVIRONMENT_NOT_FOUND
        assert result.retryable is False
        assert result.token_source is not None

    async def test_failure_carries_details(self, project):
        sdk = FakeSecretsSDK()
        sdk.fail_get(SecretsServiceHTTPError(429, "Too Many Requests", retry_after="30"))
        client = _client(project, sdk)
        await client.initialize("Shop", "dev")

        result = await client.get_secrets()

        assert result.error_code is ErrorCode.RATE_LIMIT_EXCEEDED
        assert result.details["retry_after"] == 30

    async def test_get_timeout(self, project):
        sdk = FakeSecretsSDK({("Shop", "dev"): {"A": "1"}})
        client = _client(project, sdk, timeout=0.05)
        await client.initialize("Shop", "dev")
        sdk.delay = 0.5

        result = await client.get_secrets()

        assert result.error_code is ErrorCode.NETWORK_ERROR
        assert result.retryable is True

    async def test_unexpected_payload_is_sdk_error(self, project):
        sdk = FakeSecretsSDK()
        sdk.queue_get(12345)
        client = _client(project, sdk)
        await client.initialize("Shop", "dev")

        result = await client.get_secrets()
        assert result.error_code is ErrorCode.SDK_ERROR


class TestLifecycle:
    async def test_test_connection(self, project):
        sdk = FakeSecretsSDK({("Shop", "dev"): {}})
        client = _client(project, sdk)
        assert await client.test_connection() is False
        await client.initialize("Shop", "dev")
        assert await client.test_connection() is True

    async def test_close_releases_sdk(self, project):
        sdk = FakeSecretsSDK()
        client = _client(project, sdk)
        await client.initialize("Shop", "dev")
        await client.close()
        assert sdk.closed is True
        assert client.initialized is False

    async def test_diagnostics(self, project):
        client = _client(project, FakeSecretsSDK())
        await client.initialize("Shop", "dev")
        diagnostics = client.get_diagnostics()
        assert diagnostics["initialized"] is True
        assert diagnostics["app_name"] == "Shop"
        assert diagnostics["token_source"]["origin"] == "process_env"
        assert TOKEN not in str(diagnostics)

    async def test_operations_are_monitored(self, project):
        monitor = OperationMonitor()
        client = _client(project, FakeSecretsSDK({("Shop", "dev"): {"A": "1"}}), monitor=monitor)
        await client.initialize("Shop", "dev")
        await client.get_secrets()

        assert client.monitor is monitor
        assert monitor.get_performance_metrics("token-loading")["total_operations"] == 1
        assert monitor.get_performance_metrics("sdk-initialization")["success_rate"] == 1.0
        assert monitor.get_performance_metrics("secret-retrieval")["total_operations"] == 1
