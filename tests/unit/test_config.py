"""
Unit tests for connection settings.

Tests cover:
- Defaults
- Environment variable loading
- Validation
- Pool size defaults
"""

import pytest
from pydantic import ValidationError

from sdk.arango_sdk.config import ConnectionSettings
from sdk.arango_sdk.hosts import LoadBalancingStrategy


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep ARANGO_ variables of the host environment out of the tests."""
    for name in (
        "ARANGO_URLS",
        "ARANGO_DATABASE_NAME",
        "ARANGO_LOAD_BALANCING_STRATEGY",
        "ARANGO_MAX_RETRIES",
        "ARANGO_PASSWORD",
        "ARANGO_TOKEN",
    ):
        monkeypatch.delenv(name, raising=False)


class TestDefaults:
    """Tests for default values."""

    def test_defaults(self):
        settings = ConnectionSettings()

        assert settings.urls == ["http://127.0.0.1:8529"]
        assert settings.database_name == "_system"
        assert settings.load_balancing_strategy is LoadBalancingStrategy.NONE
        assert settings.max_retries is None
        assert settings.retry_on_conflict == 0
        assert settings.response_queue_time_samples == 10
        assert settings.arango_version == 31100
        assert settings.username == "root"
        assert settings.password.get_secret_value() == ""
        assert settings.token is None

    def test_secrets_hidden_in_repr(self):
        settings = ConnectionSettings(password="hunter2")

        assert "hunter2" not in repr(settings)


class TestEnvironment:
    """Tests for ARANGO_ environment variables."""

    def test_comma_separated_urls(self, monkeypatch):
        monkeypatch.setenv("ARANGO_URLS", "http://a:8529, http://b:8529")

        assert ConnectionSettings().urls == ["http://a:8529", "http://b:8529"]

    def test_strategy_and_retries(self, monkeypatch):
        monkeypatch.setenv("ARANGO_LOAD_BALANCING_STRATEGY", "ROUND_ROBIN")
        monkeypatch.setenv("ARANGO_MAX_RETRIES", "0")

        settings = ConnectionSettings()

        assert settings.load_balancing_strategy is LoadBalancingStrategy.ROUND_ROBIN
        assert settings.max_retries == 0

    def test_arguments_win(self, monkeypatch):
        monkeypatch.setenv("ARANGO_DATABASE_NAME", "from_env")

        assert ConnectionSettings(database_name="explicit").database_name == "explicit"


class TestValidation:
    """Tests for validators."""

    def test_single_url_string(self):
        assert ConnectionSettings(urls="http://a:8529").urls == ["http://a:8529"]

    def test_empty_urls_rejected(self):
        with pytest.raises(ValidationError):
            ConnectionSettings(urls=[])

    def test_negative_retries_rejected(self):
        with pytest.raises(ValidationError):
            ConnectionSettings(max_retries=-1)

    def test_zero_pool_rejected(self):
        with pytest.raises(ValidationError):
            ConnectionSettings(pool_size=0)


class TestPoolSize:
    """Tests for effective_pool_size."""

    def test_default(self):
        assert ConnectionSettings(urls=["http://a", "http://b"]).effective_pool_size == 3

    def test_round_robin_scales_with_hosts(self):
        settings = ConnectionSettings(
            urls=["http://a", "http://b"], load_balancing_strategy="ROUND_ROBIN"
        )

        assert settings.effective_pool_size == 6

    def test_explicit(self):
        assert ConnectionSettings(pool_size=7).effective_pool_size == 7
