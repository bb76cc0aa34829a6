from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

SUPPORTED_PLATFORMS: tuple[str, ...] = ("olx", "imovirtual", "idealista", "custojusto", "casasapo")


@dataclass(frozen=True)
class Settings:
    cache_dir: str = "data"
    log_level: str = "INFO"
    cache_retention_days: int = 30
    fingerprint_min_combo_signals: int = 1
    lobstr_api_key: str = ""
    lobstr_api_base: str = "https://api.lobstr.io/v1"
    lobstr_squid_id: str = ""
    lobstr_squid_keyword: str = "idealista"
    lobstr_poll_interval_seconds: float = 5.0
    lobstr_max_wait_seconds: float = 300.0
    lobstr_page_size: int = 100
    lobstr_page_delay_seconds: float = 1.0
    lobstr_page_retries: int = 2
    http_timeout_seconds: int = 30
    http_max_retries: int = 2
    derive_signals: bool = True


def _get_int(name: str, default: int, minimum: int, maximum: int | None = None) -> int:
    raw_value = os.getenv(name, str(default)).strip()
    value = int(raw_value)
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}")
    if maximum is not None and value > maximum:
        raise ValueError(f"{name} must be <= {maximum}")
    return value


def _get_float(name: str, default: float, minimum: float) -> float:
    raw_value = os.getenv(name, str(default)).strip()
    value = float(raw_value)
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}")
    return value


def _get_str(name: str, default: str = "") -> str:
    return os.getenv(name, default).strip()


def _get_bool(name: str, default: bool) -> bool:
    raw_value = os.getenv(name, "true" if default else "false").strip().lower()
    if raw_value in {"1", "true", "yes", "on"}:
        return True
    if raw_value in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"{name} must be a boolean value")


def load_settings() -> Settings:
    load_dotenv()

    return Settings(
        cache_dir=_get_str("CACHE_DIR", "data") or "data",
        log_level=_get_str("LOG_LEVEL", "INFO").upper(),
        cache_retention_days=_get_int("CACHE_RETENTION_DAYS", default=30, minimum=1),
        fingerprint_min_combo_signals=_get_int(
            "FINGERPRINT_MIN_COMBO_SIGNALS", default=1, minimum=1, maximum=4
        ),
        lobstr_api_key=_get_str("LOBSTR_API_KEY"),
        lobstr_api_base=_get_str("LOBSTR_API_BASE", "https://api.lobstr.io/v1").rstrip("/"),
        lobstr_squid_id=_get_str("LOBSTR_SQUID_ID"),
        lobstr_squid_keyword=_get_str("LOBSTR_SQUID_KEYWORD", "idealista").lower(),
        lobstr_poll_interval_seconds=_get_float("LOBSTR_POLL_INTERVAL_SECONDS", default=5.0, minimum=0.5),
        lobstr_max_wait_seconds=_get_float("LOBSTR_MAX_WAIT_SECONDS", default=300.0, minimum=1.0),
        lobstr_page_size=_get_int("LOBSTR_PAGE_SIZE", default=100, minimum=1),
        lobstr_page_delay_seconds=_get_float("LOBSTR_PAGE_DELAY_SECONDS", default=1.0, minimum=0.0),
        lobstr_page_retries=_get_int("LOBSTR_PAGE_RETRIES", default=2, minimum=0),
        http_timeout_seconds=_get_int("HTTP_TIMEOUT_SECONDS", default=30, minimum=5),
        http_max_retries=_get_int("HTTP_MAX_RETRIES", default=2, minimum=0),
        derive_signals=_get_bool("DERIVE_SIGNALS", default=True),
    )


def require_lobstr_api_key(settings: Settings) -> str:
    if not settings.lobstr_api_key:
        raise ValueError("Missing required environment variable: LOBSTR_API_KEY")
    return settings.lobstr_api_key
