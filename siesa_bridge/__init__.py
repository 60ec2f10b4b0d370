import os

from flask import Flask, Response, jsonify, request
from werkzeug.exceptions import HTTPException

from siesa_bridge.config import Config
from siesa_bridge.db import close_db, get_db, init_db
from siesa_bridge.db_migrations import register_db_cli
from siesa_bridge.observability import (
    configure_json_logging,
    ensure_request_id,
    mark_request_start,
    metrics_snapshot,
    observe_response,
    prometheus_metrics_text,
    sync_health,
)


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)
    configure_json_logging(app)

    _ensure_database_dir(app)
    _register_error_handlers(app)
    _register_health(app)
    register_db_cli(app)
    _register_cli(app)
    _maybe_init_schema(app)

    app.teardown_appcontext(close_db)
    return app


def _ensure_database_dir(app: Flask) -> None:
    database_dir = app.config.get("DATABASE_DIR")
    if database_dir:
        os.makedirs(database_dir, exist_ok=True)


def _maybe_init_schema(app: Flask) -> None:
    auto_init = bool(app.config.get("DB_AUTO_INIT", False))
    if app.testing:
        # Las pruebas crean su esquema sin depender de Alembic.
        auto_init = True
    if not auto_init:
        return

    flask_env = (os.environ.get("FLASK_ENV", "development") or "development").strip().lower()
    if not app.testing and flask_env != "development":
        app.logger.warning("DB_AUTO_INIT ignorado fuera de development.")
        return

    with app.app_context():
        init_db()


def _register_cli(app: Flask) -> None:
    from siesa_bridge.cli import register_cli

    register_cli(app)


def _register_error_handlers(app: Flask) -> None:
    from siesa_bridge.domain.gateways import GatewayError
    from siesa_bridge.errors import AppError, as_external_failure

    @app.before_request
    def _ensure_request_id() -> None:
        ensure_request_id()
        mark_request_start()

    @app.after_request
    def _append_request_id(response):
        response.headers["X-Request-Id"] = ensure_request_id()
        return observe_response(response)

    def _log_error(error: AppError, request_id: str) -> None:
        log_method = app.logger.error if error.critical else app.logger.warning
        log_method(
            "application_error",
            extra={
                "request_id": request_id,
                "error_code": error.code,
                "http_status": error.http_status,
                "message_key": error.message_key,
                "details": error.details,
                "request_path": request.path,
                "http_method": request.method,
            },
            exc_info=error.critical,
        )

    @app.errorhandler(AppError)
    def _handle_app_error(exc: AppError):
        request_id = ensure_request_id()
        _log_error(exc, request_id)
        return jsonify(exc.to_response_payload(request_id)), exc.http_status

    @app.errorhandler(GatewayError)
    def _handle_gateway_error(exc: GatewayError):
        request_id = ensure_request_id()
        mapped = as_external_failure(exc)
        _log_error(mapped, request_id)
        return jsonify(mapped.to_response_payload(request_id)), mapped.http_status

    @app.errorhandler(Exception)
    def _handle_unexpected(exc: Exception):
        if isinstance(exc, HTTPException):
            return exc

        request_id = ensure_request_id()
        mapped = AppError(
            code="unexpected_error",
            message_key="unexpected_error",
            http_status=500,
            critical=True,
            details=str(exc),
        )
        app.logger.exception(
            "unexpected_exception",
            extra={
                "request_id": request_id,
                "error_code": mapped.code,
                "request_path": request.path,
                "http_method": request.method,
            },
        )
        return jsonify(mapped.to_response_payload(request_id)), mapped.http_status


def _register_health(app: Flask) -> None:
    @app.route("/health")
    def health():
        db_path = app.config.get("DB_PATH") or "unknown"
        backend = "postgres" if str(db_path).startswith("postgres") else "sqlite"
        payload = {
            "status": "ok",
            "db": backend,
            "integration_mode": app.config.get("INTEGRATION_MODE", "mock"),
        }
        snapshot = metrics_snapshot()
        payload["metrics"] = {
            key: snapshot[key]
            for key in ("order_transition_total", "inventory_item_total", "inventory_batch_total")
        }
        try:
            payload["sync"] = sync_health(get_db())
        except Exception:  # noqa: BLE001 - la salud reporta degradado en lugar de fallar
            app.logger.exception("health_sync_state_failed")
            payload["status"] = "degraded"
            payload["sync"] = {"orders": {}, "last_inventory_batch": None}
        return payload, 200

    @app.route("/metrics")
    def metrics():
        sync_state = None
        try:
            sync_state = sync_health(get_db())
        except Exception:  # noqa: BLE001
            app.logger.exception("metrics_sync_state_failed")
        body = prometheus_metrics_text(sync_state=sync_state)
        return Response(body, mimetype="text/plain; version=0.0.4")
