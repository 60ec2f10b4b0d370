from __future__ import annotations

import json
from datetime import timedelta

import click
from flask import Flask

from siesa_bridge.config import SyncSettings
from siesa_bridge.db import get_db
from siesa_bridge.errors import AppError
from siesa_bridge.inventory import batch_summary, run_inventory_reconciliation
from siesa_bridge.observability import bind_request_id, new_job_request_id
from siesa_bridge.orders import get_order, list_order_logs, requeue_stalled_orders, reset_order
from siesa_bridge.runtime import build_connect_fn, build_erp_gateway, build_storefront_gateway


def _echo_json(payload) -> None:
    click.echo(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


def _fail(exc: AppError) -> click.ClickException:
    detail = f" ({exc.details})" if exc.details else ""
    return click.ClickException(f"{exc.user_message()}{detail}")


def register_orders_cli(app: Flask) -> None:
    @app.cli.group("orders")
    def orders_group() -> None:
        """Operacion de pedidos exportados a SIESA."""

    @orders_group.command("requeue")
    @click.argument("order_id", type=int)
    @click.option("--reason", required=True, help="Motivo del reenvio (queda en la bitacora).")
    def orders_requeue(order_id: int, reason: str) -> None:
        with bind_request_id(new_job_request_id("cli")):
            try:
                order = reset_order(get_db(), order_id, reason=reason)
            except AppError as exc:
                raise _fail(exc) from exc
        click.echo(f"Pedido {order.id} ({order.shopify_order_number}) devuelto a pendiente.")

    @orders_group.command("requeue-stalled")
    @click.option("--minutes", type=int, default=None, help="Antiguedad minima en processing.")
    def orders_requeue_stalled(minutes: int | None) -> None:
        settings = SyncSettings.from_config(app.config)
        threshold = timedelta(minutes=max(1, int(minutes or settings.stalled_minutes)))
        with bind_request_id(new_job_request_id("cli")):
            orders = requeue_stalled_orders(get_db(), threshold, max_attempts=settings.max_attempts)
        click.echo(f"Pedidos detenidos marcados como fallidos: {len(orders)}.")
        for order in orders:
            click.echo(f"  {order.id} {order.shopify_order_number} intentos={order.attempts}")

    @orders_group.command("show")
    @click.argument("order_id", type=int)
    def orders_show(order_id: int) -> None:
        db = get_db()
        try:
            order = get_order(db, order_id)
        except AppError as exc:
            raise _fail(exc) from exc
        payload = order.to_dict()
        payload["logs"] = [entry.to_dict() for entry in list_order_logs(db, order.id)]
        _echo_json(payload)


def register_inventory_cli(app: Flask) -> None:
    @app.cli.group("inventory")
    def inventory_group() -> None:
        """Sincronizacion de inventario SIESA -> tienda."""

    @inventory_group.command("sync")
    def inventory_sync() -> None:
        settings = SyncSettings.from_config(app.config)
        with bind_request_id(new_job_request_id("cli-inventory")):
            try:
                batch = run_inventory_reconciliation(
                    get_db(),
                    settings=settings,
                    erp=build_erp_gateway(app.config),
                    storefront=build_storefront_gateway(app.config),
                    connect_fn=build_connect_fn(app.config),
                )
            except AppError as exc:
                raise _fail(exc) from exc
        _echo_json(batch_summary(batch))


def register_cli(app: Flask) -> None:
    register_orders_cli(app)
    register_inventory_cli(app)
