"""Lightweight configuration helpers for the WhatsApp gateway."""
from __future__ import annotations

import os
from dataclasses import dataclass


DEFAULT_WA_WEB_URL = "http://waweb:9001"
DEFAULT_COUNTRY_CODE = "62"
DEFAULT_PORT = 3000


def _coerce_int(value: str | None, default: int = 0) -> int:
    if value is None:
        return default
    try:
        return int(str(value).strip() or default)
    except ValueError:
        return default


def _coerce_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    cleaned = value.strip().lower()
    if not cleaned:
        return default
    return cleaned in {"1", "true", "yes", "on"}


def _normalize_wa_url(raw: str | None) -> str:
    if not raw:
        return DEFAULT_WA_WEB_URL
    cleaned = raw.strip()
    if not cleaned:
        return DEFAULT_WA_WEB_URL
    return cleaned.rstrip("/") or DEFAULT_WA_WEB_URL


def _parse_duration(raw: str | None, *, default: float) -> float:
    if not raw:
        return default
    cleaned = raw.strip().lower()
    if not cleaned:
        return default
    if cleaned.endswith("s"):
        cleaned = cleaned[:-1]
    try:
        value = float(cleaned)
    except ValueError:
        return default
    if value < 0:
        return default
    return value


def _normalize_country_code(raw: str | None) -> str:
    digits = "".join(ch for ch in (raw or "") if ch.isdigit())
    return digits or DEFAULT_COUNTRY_CODE


@dataclass(frozen=True, slots=True)
class GatewayConfig:
    secret_key: str
    host: str
    port: int
    waweb_url: str
    waweb_token: str | None
    country_code: str
    auth_grace: float
    loading_grace: float
    restart_delay: float
    send_pacing: float
    serialize_sends: bool
    http_timeout: float
    log_level: str


def gateway_config() -> GatewayConfig:
    secret_key = (os.getenv("SECRET_KEY") or "").strip()
    host = (os.getenv("HOST") or "").strip() or "0.0.0.0"
    port = _coerce_int(os.getenv("PORT"), DEFAULT_PORT) or DEFAULT_PORT
    waweb_url = _normalize_wa_url(os.getenv("WA_WEB_URL"))
    waweb_token = (os.getenv("WA_INTERNAL_TOKEN") or "").strip() or None

    return GatewayConfig(
        secret_key=secret_key,
        host=host,
        port=port,
        waweb_url=waweb_url,
        waweb_token=waweb_token,
        country_code=_normalize_country_code(os.getenv("WA_COUNTRY_CODE")),
        auth_grace=_parse_duration(os.getenv("WA_AUTH_GRACE"), default=5.0),
        loading_grace=_parse_duration(os.getenv("WA_LOADING_GRACE"), default=3.0),
        restart_delay=_parse_duration(os.getenv("WA_RESTART_DELAY"), default=2.0),
        send_pacing=_parse_duration(os.getenv("WA_SEND_PACING"), default=2.0),
        serialize_sends=_coerce_bool(os.getenv("WA_SERIALIZE_SENDS")),
        http_timeout=_parse_duration(os.getenv("WA_HTTP_TIMEOUT"), default=30.0),
        log_level=(os.getenv("LOG_LEVEL") or "INFO").strip().upper() or "INFO",
    )


__all__ = [
    "GatewayConfig",
    "DEFAULT_WA_WEB_URL",
    "DEFAULT_COUNTRY_CODE",
    "gateway_config",
]
