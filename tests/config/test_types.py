"""Tests for _types.py: Secret, UNDEFINED, enums and exception classes."""

import copy

import pytest
from pydantic import BaseModel, ConfigDict, ValidationError

from envcascade._types import (
    UNDEFINED,
    ConfigError,
    InvalidationCriteriaError,
    InvalidationPattern,
    Secret,
    SecretsPayloadError,
    TokenOrigin,
    UndefinedValueError,
    _Undefined,
)


class TestUndefined:
    def test_singleton(self):
        assert _Undefined() is _Undefined()
        assert _Undefined() is UNDEFINED

    def test_falsy(self):
        assert bool(UNDEFINED) is False

    def test_repr(self):
        assert repr(UNDEFINED) == "UNDEFINED"


class TestExceptions:
    def test_undefined_value_error_message(self):
        err = UndefinedValueError("DATABASE_URL")
        assert isinstance(err, ConfigError)
        assert "DATABASE_URL" in str(err)
        assert err.key == "DATABASE_URL"

    def test_invalidation_criteria_error_is_value_error(self):
        err = InvalidationCriteriaError(InvalidationPattern.BY_APP, "app_name")
        assert isinstance(err, ConfigError)
        assert isinstance(err, ValueError)
        assert "app_name" in str(err)
        assert "by_app" in str(err)

    def test_payload_error_is_config_error(self):
        assert issubclass(SecretsPayloadError, ConfigError)


class TestTokenOrigin:
    def test_precedence_order(self):
        assert [o.value for o in TokenOrigin] == [
            "process_env",
            "local_env_local",
            "local_env",
            "root_env_local",
            "root_env",
        ]


class TestSecret:
    def test_repr_and_str_redact(self):
        s = Secret("hunter2-token")
        assert "hunter2" not in repr(s)
        assert str(s) == "***"

    def test_secret_value_returns_original(self):
        assert Secret("hunter2").secret_value == "hunter2"

    def test_equality(self):
        assert Secret("a") == Secret("a")
        assert Secret("a") != Secret("b")
        assert Secret("a") != "a"

    def test_len(self):
        assert len(Secret("abcdef")) == 6

    def test_bool(self):
        assert bool(Secret("x")) is True
        assert bool(Secret("")) is False

    def test_copies_share_instance(self):
        s = Secret("value")
        assert copy.copy(s) is s
        assert copy.deepcopy({"k": s})["k"] is s


class _SecretModel(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)
    api_key: Secret[str]


class TestSecretPydantic:
    def test_as_pydantic_field(self):
        m = _SecretModel(api_key="raw-value")
        assert isinstance(m.api_key, Secret)
        assert m.api_key.secret_value == "raw-value"

    def test_passthrough_if_already_secret(self):
        s = Secret("wrapped")
        assert _SecretModel(api_key=s).api_key is s

    def test_model_dump_redacts(self):
        assert _SecretModel(api_key="my-secret").model_dump()["api_key"] == "***"
        assert "my-secret" not in _SecretModel(api_key="my-secret").model_dump_json()

    def test_required_secret_missing_raises(self):
        with pytest.raises(ValidationError):
            _SecretModel()
