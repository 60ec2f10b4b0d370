from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, List

if TYPE_CHECKING:
    from siesa_bridge.domain.records import Order


class GatewayError(RuntimeError):
    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        definitive: bool = False,
    ) -> None:
        super().__init__(message)
        self.code = str(code or "").strip() or None
        self.definitive = bool(definitive)


@dataclass(frozen=True)
class StorefrontIds:
    product_id: str | None = None
    variant_id: str | None = None
    inventory_item_id: str | None = None
    location_id: str | None = None


@dataclass(frozen=True)
class StorefrontVariant:
    sku: str
    ids: StorefrontIds
    available: int


@dataclass(frozen=True)
class ErpStockLevel:
    sku: str
    product_name: str
    quantity: int


@dataclass(frozen=True)
class ExportArtifact:
    file_name: str
    file_path: str


class StorefrontGateway(ABC):
    @abstractmethod
    def fetch_orders(self, limit: int = 50) -> List[dict]:
        raise NotImplementedError

    @abstractmethod
    def find_variant(self, sku: str) -> StorefrontVariant | None:
        raise NotImplementedError

    @abstractmethod
    def set_inventory_quantity(self, variant: StorefrontVariant, quantity: int) -> int:
        """Writes the absolute available quantity and returns the value the storefront reports back."""
        raise NotImplementedError


class ErpInventoryGateway(ABC):
    @abstractmethod
    def fetch_stock_levels(self) -> Dict[str, ErpStockLevel]:
        raise NotImplementedError


class FlatFileExporter(ABC):
    @abstractmethod
    def export(self, order: "Order") -> ExportArtifact:
        raise NotImplementedError
