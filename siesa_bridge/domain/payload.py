"""Typed snapshot of a storefront order, parsed once at ingestion.

Storefront payloads are not schema-guaranteed: every accessor falls back to an
empty/zero value instead of raising.
"""

from __future__ import annotations

import copy
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping

from siesa_bridge.errors import ValidationError


def _safe_str(value: object | None) -> str | None:
    if value is None:
        return None
    raw = str(value).strip()
    return raw or None


def _safe_float(value: object | None, default: float = 0.0) -> float:
    if value is None or value == "":
        return float(default)
    try:
        return float(value)
    except (TypeError, ValueError):
        return float(default)


def _safe_int(value: object | None, default: int = 0) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return int(default)


def _as_dict(value: object) -> Dict[str, Any]:
    return dict(value) if isinstance(value, Mapping) else {}


@dataclass(frozen=True)
class LineItem:
    sku: str | None
    title: str
    quantity: int = 0
    price: float = 0.0

    @staticmethod
    def from_dict(payload: Mapping[str, Any]) -> "LineItem":
        data = _as_dict(payload)
        return LineItem(
            sku=_safe_str(data.get("sku")),
            title=_safe_str(data.get("title")) or _safe_str(data.get("name")) or "",
            quantity=_safe_int(data.get("quantity"), 0),
            price=_safe_float(data.get("price"), 0.0),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"sku": self.sku, "title": self.title, "quantity": self.quantity, "price": self.price}


@dataclass(frozen=True)
class CustomerSnapshot:
    first_name: str = ""
    last_name: str = ""
    email: str | None = None
    metafields: Dict[str, str] = field(default_factory=dict)

    @staticmethod
    def from_dict(payload: Mapping[str, Any]) -> "CustomerSnapshot":
        data = _as_dict(payload)
        return CustomerSnapshot(
            first_name=_safe_str(data.get("first_name")) or "",
            last_name=_safe_str(data.get("last_name")) or "",
            email=_safe_str(data.get("email")),
            metafields=_parse_metafields(data.get("metafields")),
        )


def _parse_metafields(raw: object) -> Dict[str, str]:
    # Shopify entrega metafields como lista {namespace, key, value} o ya aplanados.
    result: Dict[str, str] = {}
    if isinstance(raw, Mapping):
        for key, value in raw.items():
            text = _safe_str(value)
            if text is not None:
                result[str(key)] = text
    elif isinstance(raw, list):
        for entry in raw:
            data = _as_dict(entry)
            namespace = _safe_str(data.get("namespace"))
            key = _safe_str(data.get("key"))
            value = _safe_str(data.get("value"))
            if namespace and key and value is not None:
                result[f"{namespace}.{key}"] = value
    return result


@dataclass(frozen=True)
class OrderSnapshot:
    raw: Dict[str, Any]
    customer: CustomerSnapshot
    line_items: List[LineItem]
    total_price: float = 0.0
    currency: str | None = None

    @staticmethod
    def parse(payload: object) -> "OrderSnapshot":
        if not isinstance(payload, Mapping):
            raise ValidationError(
                message_key="order_payload_invalid",
                details="El payload del pedido debe ser un objeto JSON.",
            )
        raw = copy.deepcopy(dict(payload))
        items_raw = raw.get("line_items")
        items = [LineItem.from_dict(item) for item in items_raw if isinstance(item, Mapping)] if isinstance(items_raw, list) else []
        return OrderSnapshot(
            raw=raw,
            customer=CustomerSnapshot.from_dict(raw.get("customer")),
            line_items=items,
            total_price=_safe_float(raw.get("total_price"), 0.0),
            currency=_safe_str(raw.get("currency")),
        )

    @staticmethod
    def from_json(value: str | None) -> "OrderSnapshot":
        raw = str(value or "").strip()
        try:
            parsed = json.loads(raw) if raw else {}
        except json.JSONDecodeError:
            parsed = {}
        return OrderSnapshot.parse(parsed if isinstance(parsed, Mapping) else {})

    def to_json(self) -> str:
        return json.dumps(self.raw, separators=(",", ":"), ensure_ascii=False)

    @property
    def customer_name(self) -> str:
        return f"{self.customer.first_name} {self.customer.last_name}".strip()

    @property
    def customer_email(self) -> str | None:
        return self.customer.email

    def customer_document(self, metafield_key: str = "custom.nit") -> str | None:
        return self.customer.metafields.get(str(metafield_key or "").strip())


def extract_order_identity(payload: Mapping[str, Any]) -> tuple[str, str]:
    """Returns (storefront order id, order number) or raises ValidationError."""
    data = _as_dict(payload)
    external_id = _safe_str(data.get("id"))
    order_number = _safe_str(data.get("name")) or _safe_str(data.get("order_number"))
    missing = [name for name, value in (("id", external_id), ("name", order_number)) if not value]
    if missing:
        raise ValidationError(
            message_key="order_payload_invalid",
            details=f"Campos obligatorios ausentes: {', '.join(missing)}",
            payload={"missing_fields": missing},
        )
    return external_id, order_number
