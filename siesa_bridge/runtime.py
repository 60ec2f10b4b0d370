from __future__ import annotations

import importlib
from typing import Any, Callable, Mapping

from siesa_bridge.config import SyncSettings
from siesa_bridge.db import Database, connect_database
from siesa_bridge.domain.gateways import ErpInventoryGateway, FlatFileExporter, StorefrontGateway
from siesa_bridge.simulator import (
    DEFAULT_LOCATION_ID,
    SimulatedErp,
    SimulatedFlatFileExporter,
    SimulatedStorefront,
)


def _integration_mode(config: Mapping[str, Any]) -> str:
    return str(config.get("INTEGRATION_MODE") or "mock").strip().lower()


def load_factory(dotted_path: str) -> Callable[[Mapping[str, Any]], Any]:
    """Resolves ``package.module:callable`` (or ``package.module.callable``)."""
    raw = str(dotted_path or "").strip()
    if ":" in raw:
        module_name, _, attr = raw.partition(":")
    else:
        module_name, _, attr = raw.rpartition(".")
    if not module_name or not attr:
        raise RuntimeError(f"Fabrica invalida: '{raw}'. Use 'paquete.modulo:funcion'.")
    module = importlib.import_module(module_name)
    factory = getattr(module, attr, None)
    if not callable(factory):
        raise RuntimeError(f"Fabrica '{raw}' no es invocable.")
    return factory


def _build_live(config: Mapping[str, Any], key: str, expected: type):
    dotted_path = str(config.get(key) or "").strip()
    if not dotted_path:
        raise RuntimeError(f"{key} es obligatorio cuando INTEGRATION_MODE no es 'mock'.")
    gateway = load_factory(dotted_path)(config)
    if not isinstance(gateway, expected):
        raise RuntimeError(f"{key} debe construir un {expected.__name__}.")
    return gateway


def build_storefront_gateway(config: Mapping[str, Any]) -> StorefrontGateway:
    if _integration_mode(config) == "mock":
        return SimulatedStorefront(location_id=config.get("SHOPIFY_INVENTORY_LOCATION_ID") or DEFAULT_LOCATION_ID)
    return _build_live(config, "STOREFRONT_GATEWAY_FACTORY", StorefrontGateway)


def build_erp_gateway(config: Mapping[str, Any]) -> ErpInventoryGateway:
    if _integration_mode(config) == "mock":
        return SimulatedErp()
    return _build_live(config, "ERP_GATEWAY_FACTORY", ErpInventoryGateway)


def build_flat_file_exporter(config: Mapping[str, Any]) -> FlatFileExporter:
    if _integration_mode(config) == "mock":
        settings = SyncSettings.from_config(config)
        return SimulatedFlatFileExporter(settings.flat_files_path, settings.file_prefix)
    return _build_live(config, "FLAT_FILE_EXPORTER_FACTORY", FlatFileExporter)


def build_connect_fn(config: Mapping[str, Any]) -> Callable[[], Database]:
    db_path = str(config["DB_PATH"])

    def _connect() -> Database:
        return connect_database(db_path)

    return _connect
