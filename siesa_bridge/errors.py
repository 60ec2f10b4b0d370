from __future__ import annotations

import re
from typing import Any, Dict

from siesa_bridge.ui_strings import error_message


class AppError(Exception):
    default_code = "system_error"
    default_message_key = "unexpected_error"
    default_http_status = 500
    default_critical = True

    def __init__(
        self,
        code: str | None = None,
        message_key: str | None = None,
        http_status: int | None = None,
        critical: bool | None = None,
        details: str | None = None,
        payload: Dict[str, Any] | None = None,
    ) -> None:
        self.code = (code or self.default_code).strip()
        self.message_key = (message_key or self.default_message_key).strip()
        self.http_status = int(http_status or self.default_http_status)
        self.critical = bool(self.default_critical if critical is None else critical)
        self.details = (details or "").strip() or None
        self.payload = dict(payload or {})
        super().__init__(self.details or self.code)

    def user_message(self) -> str:
        fallback = error_message("unexpected_error", "No fue posible completar la operacion.")
        return error_message(self.message_key, fallback)

    def to_response_payload(self, request_id: str) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "error": self.code,
            "message": self.user_message(),
            "request_id": request_id,
        }
        if self.payload:
            payload.update(self.payload)
        return payload


class ValidationError(AppError):
    default_code = "validation_error"
    default_message_key = "validation_error"
    default_http_status = 400
    default_critical = False


class InvalidTransitionError(AppError):
    """A state change the state machine does not allow.

    Correct callers never trigger it, except when a concurrent runner wins a
    conditional update first. It is logged as ERROR.
    """

    default_code = "invalid_transition"
    default_message_key = "invalid_transition"
    default_http_status = 409
    default_critical = True

    def __init__(self, entity: str, entity_id: int, from_status: str | None, action: str) -> None:
        self.entity = entity
        self.entity_id = int(entity_id)
        self.from_status = from_status
        self.action = action
        super().__init__(
            details=f"{entity} {entity_id}: {action} no permitido desde '{from_status}'",
            payload={"entity": entity, "entity_id": int(entity_id), "status": from_status, "action": action},
        )


class ReferentialIntegrityError(AppError):
    default_code = "referential_integrity"
    default_message_key = "order_not_found"
    default_http_status = 404
    default_critical = True

    def __init__(self, entity: str, entity_id: int, message_key: str | None = None) -> None:
        self.entity = entity
        self.entity_id = int(entity_id)
        super().__init__(
            message_key=message_key or f"{entity}_not_found",
            details=f"{entity} {entity_id} no existe",
            payload={"entity": entity, "entity_id": int(entity_id)},
        )


class ExternalFailure(AppError):
    default_code = "external_failure"
    default_message_key = "external_temporarily_unavailable"
    default_http_status = 502
    default_critical = False


class FatalBatchError(AppError):
    default_code = "fatal_batch_error"
    default_message_key = "inventory_source_unavailable"
    default_http_status = 503
    default_critical = True


_HTTP_CODE_PATTERN = re.compile(r"http\s+(\d{3})", re.IGNORECASE)


def classify_external_failure(details: str | None) -> tuple[str, str, int]:
    normalized = (details or "").strip().lower()
    code_match = _HTTP_CODE_PATTERN.search(normalized)
    if code_match:
        http_code = int(code_match.group(1))
        if 400 <= http_code < 500 and http_code not in {408, 429}:
            return ("external_rejected", "external_rejected", 422)

    rejection_markers = ("rechazo", "rechazado", "invalido", "invalid", "rejected")
    if any(marker in normalized for marker in rejection_markers):
        return ("external_rejected", "external_rejected", 422)

    return ("external_temporarily_unavailable", "external_temporarily_unavailable", 502)


def as_external_failure(exc: Exception) -> ExternalFailure:
    code, message_key, http_status = classify_external_failure(str(exc))
    if getattr(exc, "definitive", False):
        code, message_key, http_status = ("external_rejected", "external_rejected", 422)
    gateway_code = getattr(exc, "code", None)
    prefix = f"[{gateway_code}] " if gateway_code else ""
    return ExternalFailure(
        code=code,
        message_key=message_key,
        http_status=http_status,
        details=f"{prefix}{exc}",
    )
