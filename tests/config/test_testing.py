"""Tests for _testing.py: override_config and the fake SDK."""

import pytest

from envcascade._app_config import AppConfig
from envcascade._reader import config, get_source, set_source
from envcascade._testing import FakeSecretsSDK, fake_sdk_factory, override_config


@pytest.fixture(autouse=True)
def _reset_module_source():
    set_source(None)
    yield
    set_source(None)


class TestOverrideConfig:
    def test_replaces_config_source(self):
        with override_config(KEY="overridden"):
            assert config("KEY") == "overridden"

    def test_restores_original_source(self):
        original = {"KEY": "original"}
        set_source(original)

        with override_config(KEY="temp"):
            assert config("KEY") == "temp"

        assert get_source() is original

    def test_app_config_respects_override(self):
        class AppFlags(AppConfig):
            class Meta:
                env_prefix = "APP"

            debug: bool = False

        with override_config(APP_DEBUG="1"):
            assert AppFlags.load().debug is True

    def test_nested_overrides(self):
        with override_config(KEY="outer"):
            with override_config(KEY="inner"):
                assert config("KEY") == "inner"
            assert config("KEY") == "outer"

    def test_accepts_explicit_source(self):
        with override_config({"A": "1"}) as active:
            assert active == {"A": "1"}
            assert config("A") == "1"


class TestFakeSecretsSDK:
    async def test_returns_configured_secrets(self):
        sdk = FakeSecretsSDK({("App", "dev"): {"A": "1"}})
        await sdk.init()
        assert await sdk.get("App", "dev") == {"A": "1"}
        assert sdk.init_calls == 1
        assert sdk.get_calls == [("App", "dev")]

    async def test_unknown_app_raises_not_found(self):
        sdk = FakeSecretsSDK()
        with pytest.raises(LookupError, match="Not Found"):
            await sdk.get("Nope", "dev")

    async def test_scripted_failures_then_payload(self):
        sdk = FakeSecretsSDK({("App", "dev"): {"A": "1"}})
        sdk.fail_get(TimeoutError("timed out"))
        sdk.queue_get([{"key": "B", "value": "2"}])

        with pytest.raises(TimeoutError):
            await sdk.get("App", "dev")
        assert await sdk.get("App", "dev") == [{"key": "B", "value": "2"}]
        assert await sdk.get("App", "dev") == {"A": "1"}

    async def test_factory_records_token(self):
        sdk = FakeSecretsSDK()
        factory = fake_sdk_factory(sdk)
        assert factory("svc_token_0123456789") is sdk
        assert sdk.token == "svc_token_0123456789"
