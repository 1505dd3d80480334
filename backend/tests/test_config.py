from __future__ import annotations

import pytest
from pydantic import ValidationError

from app.core.config import Settings


def test_defaults():
    settings = Settings(_env_file=None)

    assert settings.upstream_timeout_ms == 30000
    assert settings.upstream_max_attempts == 4
    assert settings.upstream_concurrency == 6
    assert settings.upstream_backoff_base_ms == 700
    assert settings.upstream_backoff_cap_ms == 10000
    assert settings.batch_max_accounts == 500
    assert settings.upstream_timeout_seconds == 30.0


@pytest.mark.parametrize("raw", [0, -3, "abc", None])
def test_concurrency_below_one_is_clamped(raw):
    assert Settings(_env_file=None, upstream_concurrency=raw).upstream_concurrency == 1


def test_api_tokens_accept_comma_separated_string():
    settings = Settings(_env_file=None, api_tokens=" one, two ,,three ")

    assert settings.api_tokens == ["one", "two", "three"]


def test_api_tokens_from_environment(monkeypatch):
    monkeypatch.setenv("API_TOKENS", "alpha,beta")

    assert Settings(_env_file=None).api_tokens == ["alpha", "beta"]


def test_log_level_is_normalized():
    assert Settings(_env_file=None, log_level="warn").log_level == "WARNING"
    with pytest.raises(ValidationError):
        Settings(_env_file=None, log_level="loud")


def test_postgres_url_uses_psycopg_driver():
    settings = Settings(_env_file=None, database_url="postgres://user:pw@db:5432/bills")

    assert settings.resolved_database_url.startswith("postgresql+psycopg://")
