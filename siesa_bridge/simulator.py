from __future__ import annotations

import copy
import posixpath
import threading
from typing import Dict, Iterable, List, Mapping

from siesa_bridge.domain.gateways import (
    ErpInventoryGateway,
    ErpStockLevel,
    ExportArtifact,
    FlatFileExporter,
    GatewayError,
    StorefrontGateway,
    StorefrontIds,
    StorefrontVariant,
)
from siesa_bridge.domain.records import Order


STOREFRONT_ORDERS: List[dict] = [
    {
        "id": 5550001001,
        "name": "#1001",
        "order_number": 1001,
        "currency": "COP",
        "total_price": "189900.00",
        "customer": {
            "first_name": "Camila",
            "last_name": "Restrepo",
            "email": "camila.restrepo@example.com",
            "metafields": [{"namespace": "custom", "key": "nit", "value": "900123456-7"}],
        },
        "line_items": [
            {"sku": "CAM-001", "title": "Camiseta basica", "quantity": 2, "price": "49950.00"},
            {"sku": "PAN-010", "title": "Pantalon dril", "quantity": 1, "price": "90000.00"},
        ],
        "created_at": "2026-02-10T14:05:00Z",
    },
    {
        "id": 5550001002,
        "name": "#1002",
        "order_number": 1002,
        "currency": "COP",
        "total_price": "74500.00",
        "customer": {
            "first_name": "Andres",
            "last_name": "Gomez",
            "email": "andres.gomez@example.com",
            "metafields": [{"namespace": "custom", "key": "nit", "value": "1020304050"}],
        },
        "line_items": [
            {"sku": "GOR-200", "title": "Gorra bordada", "quantity": 1, "price": "74500.00"},
        ],
        "created_at": "2026-02-11T09:40:00Z",
    },
]

STOREFRONT_VARIANTS: Dict[str, dict] = {
    "CAM-001": {
        "product_id": "gid://shopify/Product/7001",
        "variant_id": "gid://shopify/ProductVariant/8001",
        "inventory_item_id": "gid://shopify/InventoryItem/9001",
        "available": 12,
    },
    "PAN-010": {
        "product_id": "gid://shopify/Product/7002",
        "variant_id": "gid://shopify/ProductVariant/8002",
        "inventory_item_id": "gid://shopify/InventoryItem/9002",
        "available": 4,
    },
    "GOR-200": {
        "product_id": "gid://shopify/Product/7003",
        "variant_id": "gid://shopify/ProductVariant/8003",
        "inventory_item_id": "gid://shopify/InventoryItem/9003",
        "available": 30,
    },
}

ERP_STOCK: List[dict] = [
    {"sku": "CAM-001", "product_name": "Camiseta basica", "quantity": 10},
    {"sku": "PAN-010", "product_name": "Pantalon dril", "quantity": 4},
    {"sku": "GOR-200", "product_name": "Gorra bordada", "quantity": 25},
    {"sku": "MED-300", "product_name": "Medias deportivas", "quantity": 40},
]

DEFAULT_LOCATION_ID = "gid://shopify/Location/6001"


class SimulatedStorefront(StorefrontGateway):
    """In-memory storefront: fixed orders and a mutable variant catalog."""

    def __init__(
        self,
        orders: Iterable[dict] | None = None,
        variants: Mapping[str, dict] | None = None,
        *,
        location_id: str | None = DEFAULT_LOCATION_ID,
        failing_skus: Iterable[str] = (),
    ) -> None:
        self._orders = [copy.deepcopy(order) for order in (STOREFRONT_ORDERS if orders is None else orders)]
        self._variants = copy.deepcopy(dict(STOREFRONT_VARIANTS if variants is None else variants))
        self._location_id = location_id
        self._failing_skus = {str(sku) for sku in failing_skus}
        self._lock = threading.Lock()
        self.pushes: List[tuple[str, int]] = []

    def fetch_orders(self, limit: int = 50) -> List[dict]:
        return [copy.deepcopy(order) for order in self._orders[: max(0, int(limit))]]

    def find_variant(self, sku: str) -> StorefrontVariant | None:
        with self._lock:
            data = self._variants.get(str(sku))
            if data is None:
                return None
            return StorefrontVariant(
                sku=str(sku),
                ids=StorefrontIds(
                    product_id=data.get("product_id"),
                    variant_id=data.get("variant_id"),
                    inventory_item_id=data.get("inventory_item_id"),
                    location_id=data.get("location_id") or self._location_id,
                ),
                available=int(data.get("available") or 0),
            )

    def set_inventory_quantity(self, variant: StorefrontVariant, quantity: int) -> int:
        if variant.sku in self._failing_skus:
            raise GatewayError(f"HTTP 503 al actualizar inventario de {variant.sku}", code="storefront_unavailable")
        with self._lock:
            data = self._variants.get(variant.sku)
            if data is None:
                raise GatewayError(f"HTTP 404 variante {variant.sku} no existe", code="variant_not_found", definitive=True)
            data["available"] = int(quantity)
            self.pushes.append((variant.sku, int(quantity)))
            return int(data["available"])

    def available(self, sku: str) -> int | None:
        with self._lock:
            data = self._variants.get(str(sku))
            return None if data is None else int(data.get("available") or 0)


class SimulatedErp(ErpInventoryGateway):
    def __init__(self, stock: Iterable[dict] | None = None, *, unavailable: bool = False) -> None:
        self._stock = [dict(row) for row in (ERP_STOCK if stock is None else stock)]
        self.unavailable = unavailable

    def fetch_stock_levels(self) -> Dict[str, ErpStockLevel]:
        if self.unavailable:
            raise GatewayError("HTTP 503 servicio de inventario SIESA no disponible", code="erp_unavailable")
        levels: Dict[str, ErpStockLevel] = {}
        for row in self._stock:
            sku = str(row.get("sku") or "").strip()
            if not sku or sku in levels:
                continue
            levels[sku] = ErpStockLevel(
                sku=sku,
                product_name=str(row.get("product_name") or sku),
                quantity=int(row.get("quantity") or 0),
            )
        return levels


class SimulatedFlatFileExporter(FlatFileExporter):
    """Names the artifact the way the SIESA drop folder expects; nothing is written to disk."""

    def __init__(
        self,
        flat_files_path: str = "/siesa/pedidos",
        file_prefix: str = "PEDIDO_",
        *,
        failing_orders: Iterable[str] = (),
    ) -> None:
        self.flat_files_path = flat_files_path
        self.file_prefix = file_prefix
        self._failing_orders = {str(number).lstrip("#") for number in failing_orders}
        self.exported: List[ExportArtifact] = []

    def export(self, order: Order) -> ExportArtifact:
        number = str(order.shopify_order_number).lstrip("#")
        if number in self._failing_orders:
            raise GatewayError(f"HTTP 503 SIESA no acepto el pedido {number}", code="siesa_unavailable")
        file_name = f"{self.file_prefix}{number}.txt"
        artifact = ExportArtifact(file_name=file_name, file_path=posixpath.join(self.flat_files_path, file_name))
        self.exported.append(artifact)
        return artifact
