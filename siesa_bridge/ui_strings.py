from __future__ import annotations

from typing import Dict


MESSAGES: Dict[str, Dict[str, str]] = {
    "error": {
        "unexpected_error": "No fue posible completar la operacion.",
        "validation_error": "Los datos recibidos no son validos.",
        "order_payload_invalid": "El pedido recibido no tiene los campos obligatorios.",
        "invalid_transition": "La operacion no es valida para el estado actual del registro.",
        "order_not_found": "El pedido no existe.",
        "batch_not_found": "El lote de sincronizacion no existe.",
        "sync_item_not_found": "El registro de sincronizacion no existe.",
        "external_rejected": "El sistema externo rechazo la solicitud.",
        "external_temporarily_unavailable": "El sistema externo no esta disponible. Se reintentara.",
        "inventory_source_unavailable": "No fue posible consultar el inventario en SIESA.",
    },
    "success": {
        "order_ingested": "Pedido registrado para exportacion.",
        "order_already_ingested": "El pedido ya estaba registrado.",
        "order_requeued": "Pedido reencolado para exportacion.",
        "inventory_sync_finished": "Sincronizacion de inventario finalizada.",
    },
}

ORDER_LOG_MESSAGES: Dict[str, str] = {
    "export_started": "Inicio de intento de exportacion",
    "export_completed": "Archivo plano generado",
    "export_failed": "Fallo la exportacion del pedido",
    "export_reset": "Pedido reencolado manualmente",
    "export_stalled": "Pedido bloqueado en procesamiento; marcado como fallido",
}


def get_message(category: str, key: str, default: str | None = None) -> str:
    message = MESSAGES.get(category, {}).get(key)
    if message:
        return message
    if default is not None:
        return default
    return key


def error_message(key: str, default: str | None = None) -> str:
    return get_message("error", key, default)


def success_message(key: str, default: str | None = None) -> str:
    return get_message("success", key, default)


def order_log_message(key: str) -> str:
    return ORDER_LOG_MESSAGES.get(key, key)
