"""Tests for settings defaults and startup validation."""

import pytest

from kiosk_pairing.core.config import Settings, validate_settings


def _settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


class TestDatabaseUrl:
    @pytest.mark.parametrize(
        "url,expected",
        [
            ("postgres://u:p@db/x", "postgresql+psycopg://u:p@db/x"),
            ("postgresql://u:p@db/x", "postgresql+psycopg://u:p@db/x"),
            ("postgresql+psycopg://u:p@db/x", "postgresql+psycopg://u:p@db/x"),
            ("sqlite:///./pairing.db", "sqlite:///./pairing.db"),
        ],
    )
    def test_sync_url_uses_psycopg(self, url, expected):
        assert _settings(database_url=url).database_url_sync == expected


class TestAutoFlags:
    def test_disabled_in_development(self):
        settings = _settings(env="development")
        assert not settings.is_rate_limit_enabled
        assert not settings.is_lockout_enabled

    def test_enabled_in_production(self):
        settings = _settings(env="production")
        assert settings.is_rate_limit_enabled
        assert settings.is_lockout_enabled

    def test_explicit_value_wins(self):
        settings = _settings(env="production", rate_limit_enabled=False, lockout_enabled=False)
        assert not settings.is_rate_limit_enabled
        assert not settings.is_lockout_enabled


class TestValidateSettings:
    def test_development_defaults_are_accepted(self):
        validate_settings(_settings(env="development"))

    def test_production_defaults_are_rejected(self):
        with pytest.raises(SystemExit):
            validate_settings(_settings(env="production"))

    def test_configured_production_is_accepted(self):
        validate_settings(
            _settings(
                env="production",
                jwt_secret="a-long-random-secret-value",
                cors_origins="https://admin.example.com",
                public_url="https://admin.example.com",
            )
        )

    def test_too_few_code_bytes_rejected(self):
        with pytest.raises(SystemExit):
            validate_settings(_settings(activation_code_bytes=2))
