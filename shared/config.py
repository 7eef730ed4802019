"""Configuration helpers for environment variables."""

from __future__ import annotations

import os
import logging

from dotenv import load_dotenv


logger = logging.getLogger(__name__)


_TRUE_VALUES = {"1", "true"}
_PRESENCE_MODES = {"live", "static"}


def _should_load_dotenv() -> bool:
    """Return whether local dotenv loading should run."""
    app_env = os.getenv("APP_ENV", "dev").strip().lower()
    return app_env in {"dev", "local"}


if _should_load_dotenv():
    load_dotenv()


def get_env(name: str, default: str | None = None) -> str | None:
    """Return a raw environment value or default."""
    return os.getenv(name, default)


def _positive_number(name: str, default: float) -> float:
    raw_value = (get_env(name, "") or "").strip()
    if not raw_value:
        return default
    try:
        value = float(raw_value)
    except ValueError:
        logger.warning("config_invalid_number name=%s value=%s default=%s", name, raw_value, default)
        return default
    if value <= 0:
        logger.warning("config_non_positive_number name=%s value=%s default=%s", name, raw_value, default)
        return default
    return value


def app_env() -> str:
    """Return the current application environment."""
    return (get_env("APP_ENV", "dev") or "dev").strip() or "dev"


def is_test_env() -> bool:
    return app_env().strip().lower() in {"test", "ci"}


def cors_allow_origins() -> list[str]:
    """Return CORS allowed origins from env with safe environment defaults."""
    raw_origins = get_env("CORS_ALLOW_ORIGINS", "") or ""
    parsed_origins = [origin.strip() for origin in raw_origins.split(",") if origin.strip()]

    if parsed_origins:
        return parsed_origins

    if app_env().strip().lower() in {"dev", "local"}:
        return ["http://localhost:5000", "http://127.0.0.1:5000"]

    ui_origin = (get_env("UI_ORIGIN", "") or "").strip()
    if ui_origin:
        return [ui_origin]

    logger.warning(
        "cors_allow_origins_empty_in_prod app_env=%s; define CORS_ALLOW_ORIGINS or UI_ORIGIN",
        app_env(),
    )

    return []


def store_timeout_seconds() -> float:
    """Return the timeout applied to every store/channel HTTP call."""
    return _positive_number("STORE_TIMEOUT_SECONDS", 10.0)


def app_base_url() -> str | None:
    """Return the dashboard base URL used to build notification deep links."""
    raw_value = (get_env("APP_BASE_URL", "") or "").strip().rstrip("/")
    return raw_value or None


def presence_mode() -> str:
    """Return `live` for channel-based presence or `static` for the fixed list."""
    raw_value = (get_env("PRESENCE_MODE", "live") or "live").strip().lower()
    if raw_value not in _PRESENCE_MODES:
        logger.warning("presence_mode_unknown value=%s; falling back to static", raw_value)
        return "static"
    return raw_value


def presence_ttl_seconds() -> float:
    """Return how long a live viewer stays online without a heartbeat."""
    return _positive_number("PRESENCE_TTL_SECONDS", 60.0)


def notifications_list_limit() -> int:
    """Return how many notifications the drawer listing returns at most."""
    return int(_positive_number("NOTIFICATIONS_LIST_LIMIT", 100))


def api_key_prefix() -> str:
    """Return the prefix every external API key must carry."""
    return (get_env("API_KEY_PREFIX", "vdy_") or "vdy_").strip() or "vdy_"


def supabase_url() -> str | None:
    """Return Supabase URL when configured."""
    return get_env("SUPABASE_URL")


def supabase_service_role_key() -> str | None:
    """Return Supabase service role key when configured."""
    return get_env("SUPABASE_SERVICE_ROLE_KEY")


def supabase_anon_key() -> str | None:
    """Return Supabase anon key when configured."""
    return get_env("SUPABASE_ANON_KEY")


def supabase_enabled() -> bool:
    """Return whether the Supabase adapters should replace in-memory stores."""
    if is_test_env():
        return False
    return bool(supabase_url() and supabase_service_role_key())
