"""Tests for shared configuration helpers."""

from shared import config


def test_cors_allow_origins_defaults_in_dev(monkeypatch) -> None:
    monkeypatch.setenv("APP_ENV", "dev")
    monkeypatch.delenv("CORS_ALLOW_ORIGINS", raising=False)

    assert config.cors_allow_origins() == ["http://localhost:5000", "http://127.0.0.1:5000"]


def test_cors_allow_origins_parses_comma_separated_list(monkeypatch) -> None:
    monkeypatch.setenv("APP_ENV", "prod")
    monkeypatch.setenv("CORS_ALLOW_ORIGINS", "https://a.com, https://b.com")

    assert config.cors_allow_origins() == ["https://a.com", "https://b.com"]


def test_cors_allow_origins_uses_ui_origin_in_prod(monkeypatch) -> None:
    monkeypatch.setenv("APP_ENV", "prod")
    monkeypatch.delenv("CORS_ALLOW_ORIGINS", raising=False)
    monkeypatch.setenv("UI_ORIGIN", "https://otc-desk.example.com")

    assert config.cors_allow_origins() == ["https://otc-desk.example.com"]


def test_cors_allow_origins_warns_and_defaults_to_empty_in_prod(monkeypatch, caplog) -> None:
    monkeypatch.setenv("APP_ENV", "prod")
    monkeypatch.delenv("CORS_ALLOW_ORIGINS", raising=False)
    monkeypatch.delenv("UI_ORIGIN", raising=False)

    assert config.cors_allow_origins() == []
    assert "cors_allow_origins_empty_in_prod" in caplog.text


def test_store_timeout_defaults_and_rejects_invalid_values(monkeypatch, caplog) -> None:
    monkeypatch.delenv("STORE_TIMEOUT_SECONDS", raising=False)
    assert config.store_timeout_seconds() == 10.0

    monkeypatch.setenv("STORE_TIMEOUT_SECONDS", "2.5")
    assert config.store_timeout_seconds() == 2.5

    monkeypatch.setenv("STORE_TIMEOUT_SECONDS", "-1")
    assert config.store_timeout_seconds() == 10.0

    monkeypatch.setenv("STORE_TIMEOUT_SECONDS", "soon")
    assert config.store_timeout_seconds() == 10.0
    assert "config_invalid_number" in caplog.text


def test_app_base_url_strips_trailing_slash(monkeypatch) -> None:
    monkeypatch.setenv("APP_BASE_URL", "https://desk.example.com/")
    assert config.app_base_url() == "https://desk.example.com"

    monkeypatch.setenv("APP_BASE_URL", "  ")
    assert config.app_base_url() is None


def test_presence_mode_falls_back_to_static_for_unknown_values(monkeypatch, caplog) -> None:
    monkeypatch.delenv("PRESENCE_MODE", raising=False)
    assert config.presence_mode() == "live"

    monkeypatch.setenv("PRESENCE_MODE", "Static")
    assert config.presence_mode() == "static"

    monkeypatch.setenv("PRESENCE_MODE", "websocket")
    assert config.presence_mode() == "static"
    assert "presence_mode_unknown" in caplog.text


def test_notifications_list_limit_and_api_key_prefix_defaults(monkeypatch) -> None:
    monkeypatch.delenv("NOTIFICATIONS_LIST_LIMIT", raising=False)
    monkeypatch.delenv("API_KEY_PREFIX", raising=False)

    assert config.notifications_list_limit() == 100
    assert config.api_key_prefix() == "vdy_"


def test_supabase_disabled_in_test_env(monkeypatch) -> None:
    monkeypatch.setenv("SUPABASE_URL", "https://example.supabase.co")
    monkeypatch.setenv("SUPABASE_SERVICE_ROLE_KEY", "service-role")

    monkeypatch.setenv("APP_ENV", "test")
    assert config.supabase_enabled() is False

    monkeypatch.setenv("APP_ENV", "prod")
    assert config.supabase_enabled() is True

    monkeypatch.delenv("SUPABASE_SERVICE_ROLE_KEY")
    assert config.supabase_enabled() is False


def test_presence_ttl_defaults_to_one_minute(monkeypatch) -> None:
    monkeypatch.delenv("PRESENCE_TTL_SECONDS", raising=False)
    assert config.presence_ttl_seconds() == 60.0

    monkeypatch.setenv("PRESENCE_TTL_SECONDS", "15")
    assert config.presence_ttl_seconds() == 15.0
