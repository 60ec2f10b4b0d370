from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Mapping


def _bool_env(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _int_env(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


class Config:
    BASE_DIR = os.path.dirname(os.path.dirname(__file__))
    DATABASE_URL = os.environ.get("DATABASE_URL")
    DATABASE_DIR = None if DATABASE_URL else os.path.join(BASE_DIR, "database")
    DB_PATH = DATABASE_URL or os.path.join(DATABASE_DIR, "siesa_bridge.db")
    DB_AUTO_INIT = _bool_env("DB_AUTO_INIT", False)

    LOG_JSON = _bool_env("LOG_JSON", True)
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    INTEGRATION_MODE = os.environ.get("INTEGRATION_MODE", "mock")
    STOREFRONT_GATEWAY_FACTORY = os.environ.get("STOREFRONT_GATEWAY_FACTORY")
    ERP_GATEWAY_FACTORY = os.environ.get("ERP_GATEWAY_FACTORY")
    FLAT_FILE_EXPORTER_FACTORY = os.environ.get("FLAT_FILE_EXPORTER_FACTORY")

    SHOPIFY_SHOP_DOMAIN = os.environ.get("SHOPIFY_SHOP_DOMAIN")
    SHOPIFY_ACCESS_TOKEN = os.environ.get("SHOPIFY_ACCESS_TOKEN")
    SHOPIFY_API_VERSION = os.environ.get("SHOPIFY_API_VERSION", "2024-01")
    SHOPIFY_WEBHOOK_SECRET = os.environ.get("SHOPIFY_WEBHOOK_SECRET")
    SHOPIFY_INVENTORY_LOCATION_ID = os.environ.get("SHOPIFY_INVENTORY_LOCATION_ID")
    SHOPIFY_CUSTOMER_NIT_METAFIELD = os.environ.get("SHOPIFY_CUSTOMER_NIT_METAFIELD", "custom.nit")
    SHOPIFY_API_TIMEOUT = _int_env("SHOPIFY_API_TIMEOUT", 30)
    SHOPIFY_RATE_LIMIT_DELAY = _int_env("SHOPIFY_RATE_LIMIT_DELAY", 500)  # milisegundos
    SHOPIFY_MAX_RETRIES = _int_env("SHOPIFY_MAX_RETRIES", 3)

    SIESA_API_URL = os.environ.get("SIESA_API_URL", "http://localhost:8000")
    SIESA_USERNAME = os.environ.get("SIESA_USERNAME")
    SIESA_PASSWORD = os.environ.get("SIESA_PASSWORD")
    SIESA_TOKEN_ENDPOINT = os.environ.get("SIESA_TOKEN_ENDPOINT", "/token")
    SIESA_INVENTORY_ENDPOINT = os.environ.get("SIESA_INVENTORY_ENDPOINT", "/api/CONSINV1")
    SIESA_API_TIMEOUT = _int_env("SIESA_API_TIMEOUT", 30)
    SIESA_MAX_RETRIES = _int_env("SIESA_MAX_RETRIES", 3)
    SIESA_TOKEN_CACHE_TTL = _int_env("SIESA_TOKEN_CACHE_TTL", 3600)  # segundos
    SIESA_FLAT_FILES_PATH = os.environ.get("SIESA_FLAT_FILES_PATH", "/siesa/pedidos")
    SIESA_FILE_PREFIX = os.environ.get("SIESA_FILE_PREFIX", "PEDIDO_")
    SIESA_DEFAULT_WAREHOUSE = os.environ.get("SIESA_DEFAULT_WAREHOUSE", "001")
    SIESA_DEFAULT_UNIT_CODE = os.environ.get("SIESA_DEFAULT_UNIT_CODE", "UND")
    SIESA_DEFAULT_CURRENCY = os.environ.get("SIESA_DEFAULT_CURRENCY", "COP")

    ORDER_EXPORT_MAX_ATTEMPTS = _int_env("ORDER_EXPORT_MAX_ATTEMPTS", 3)
    ORDER_EXPORT_BATCH_SIZE = _int_env("ORDER_EXPORT_BATCH_SIZE", 25)
    ORDER_STALLED_MINUTES = _int_env("ORDER_STALLED_MINUTES", 30)
    INVENTORY_SYNC_CONCURRENCY = _int_env("INVENTORY_SYNC_CONCURRENCY", 4)
    WORKER_INTERVAL_SECONDS = _int_env("WORKER_INTERVAL_SECONDS", 60)

    def __init__(self):
        env = os.environ.get("FLASK_ENV", "development").lower()
        if env == "production" and not self.DATABASE_URL:
            raise RuntimeError("DATABASE_URL no definida para el ambiente de produccion.")


def _clamp(value: Any, default: int, min_value: int, max_value: int) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        parsed = default
    return max(min_value, min(parsed, max_value))


@dataclass(frozen=True)
class SyncSettings:
    """Parametros de una ejecucion de job, resueltos una sola vez al iniciar."""

    max_attempts: int = 3
    export_batch_size: int = 25
    stalled_minutes: int = 30
    sync_concurrency: int = 4
    storefront_timeout_seconds: int = 30
    storefront_rate_limit_delay_ms: int = 500
    storefront_max_retries: int = 3
    erp_timeout_seconds: int = 30
    erp_max_retries: int = 3
    erp_token_cache_ttl_seconds: int = 3600
    customer_nit_metafield: str = "custom.nit"
    inventory_location_id: str | None = None
    flat_files_path: str = "/siesa/pedidos"
    file_prefix: str = "PEDIDO_"

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "SyncSettings":
        return cls(
            max_attempts=_clamp(config.get("ORDER_EXPORT_MAX_ATTEMPTS"), 3, 1, 100),
            export_batch_size=_clamp(config.get("ORDER_EXPORT_BATCH_SIZE"), 25, 1, 1000),
            stalled_minutes=_clamp(config.get("ORDER_STALLED_MINUTES"), 30, 1, 24 * 60),
            sync_concurrency=_clamp(config.get("INVENTORY_SYNC_CONCURRENCY"), 4, 1, 32),
            storefront_timeout_seconds=_clamp(config.get("SHOPIFY_API_TIMEOUT"), 30, 1, 600),
            storefront_rate_limit_delay_ms=_clamp(config.get("SHOPIFY_RATE_LIMIT_DELAY"), 500, 0, 60_000),
            storefront_max_retries=_clamp(config.get("SHOPIFY_MAX_RETRIES"), 3, 0, 20),
            erp_timeout_seconds=_clamp(config.get("SIESA_API_TIMEOUT"), 30, 1, 600),
            erp_max_retries=_clamp(config.get("SIESA_MAX_RETRIES"), 3, 0, 20),
            erp_token_cache_ttl_seconds=_clamp(config.get("SIESA_TOKEN_CACHE_TTL"), 3600, 0, 86_400),
            customer_nit_metafield=str(config.get("SHOPIFY_CUSTOMER_NIT_METAFIELD") or "custom.nit"),
            inventory_location_id=str(config.get("SHOPIFY_INVENTORY_LOCATION_ID") or "").strip() or None,
            flat_files_path=str(config.get("SIESA_FLAT_FILES_PATH") or "/siesa/pedidos"),
            file_prefix=str(config.get("SIESA_FILE_PREFIX") or "PEDIDO_"),
        )
