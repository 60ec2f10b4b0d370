import sqlite3
from datetime import datetime, timezone
from typing import Iterable, List

from flask import current_app, g

from siesa_bridge.domain.statuses import (
    InventorySyncStatus,
    OrderLogLevel,
    OrderStatus,
    SyncBatchStatus,
)


DB_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


class Database:
    def __init__(self, backend: str, connection, cursor_factory=None):
        self.backend = backend
        self._conn = connection
        self._cursor_factory = cursor_factory

    def execute(self, sql: str, params: Iterable | None = None):
        if self.backend == "postgres":
            cursor = self._conn.cursor(cursor_factory=self._cursor_factory)
            if params:
                sql = _convert_qmark_to_pg(sql)
                cursor.execute(sql, list(params))
            else:
                cursor.execute(sql)
            return cursor
        return self._conn.execute(sql, params or ())

    def executescript(self, sql: str):
        if self.backend != "postgres":
            return self._conn.executescript(sql)
        for statement in _split_sql_statements(sql):
            if statement.strip():
                self.execute(statement)

    def commit(self):
        self._conn.commit()

    def rollback(self):
        self._conn.rollback()

    def close(self):
        self._conn.close()


def _split_sql_statements(sql: str) -> List[str]:
    statements = []
    current = []
    in_single = False
    for ch in sql:
        if ch == "'":
            in_single = not in_single
        elif ch == ";" and not in_single:
            statements.append("".join(current))
            current = []
            continue
        current.append(ch)
    if current:
        statements.append("".join(current))
    return statements


def _convert_qmark_to_pg(sql: str) -> str:
    return sql.replace("?", "%s")


def connect_database(db_path: str) -> Database:
    if db_path.lower().startswith("postgres"):
        import psycopg2
        import psycopg2.extras

        conn = psycopg2.connect(db_path)
        conn.autocommit = True
        return Database("postgres", conn, cursor_factory=psycopg2.extras.RealDictCursor)

    # Autocommit: cada transicion es una sola sentencia condicional.
    conn = sqlite3.connect(db_path, timeout=30.0, isolation_level=None)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return Database("sqlite", conn)


def get_db():
    if "db" not in g:
        g.db = connect_database(current_app.config["DB_PATH"])
    return g.db


def close_db(_error=None):
    db = g.pop("db", None)
    if db is not None:
        db.close()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def db_timestamp(value: datetime | None = None) -> str:
    moment = value or utcnow()
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.strftime(DB_TIMESTAMP_FORMAT)


def parse_db_timestamp(value) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        raw = str(value).strip()
        if not raw:
            return None
        normalized = raw[:-1] + "+00:00" if raw.endswith("Z") else raw
        try:
            parsed = datetime.fromisoformat(normalized)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _check_values(values: Iterable[str]) -> str:
    return ",".join(f"'{value}'" for value in values)


def init_db(db: Database | None = None):
    db = db or get_db()
    if db.backend == "postgres":
        _init_db_postgres(db)
        return
    _init_db_sqlite(db)


def _init_db_sqlite(db: Database):
    db.execute(
        f"""
        CREATE TABLE IF NOT EXISTS orders (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            shopify_order_id TEXT NOT NULL UNIQUE,
            shopify_order_number TEXT NOT NULL,
            order_json TEXT NOT NULL,
            flat_file_name TEXT,
            flat_file_path TEXT,
            status TEXT NOT NULL DEFAULT 'pending' CHECK (
                status IN ({_check_values(OrderStatus.values())})
            ),
            error_message TEXT,
            attempts INTEGER NOT NULL DEFAULT 0 CHECK (attempts >= 0),
            processed_at TEXT,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    db.execute(
        f"""
        CREATE TABLE IF NOT EXISTS order_logs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            order_id INTEGER NOT NULL REFERENCES orders(id) ON DELETE CASCADE,
            level TEXT NOT NULL CHECK (
                level IN ({_check_values(OrderLogLevel.values())})
            ),
            message TEXT NOT NULL,
            context TEXT,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    db.execute(
        f"""
        CREATE TABLE IF NOT EXISTS inventory_sync_batches (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            started_at TEXT NOT NULL,
            finished_at TEXT,
            total_products INTEGER NOT NULL DEFAULT 0 CHECK (total_products >= 0),
            successful_syncs INTEGER NOT NULL DEFAULT 0 CHECK (successful_syncs >= 0),
            failed_syncs INTEGER NOT NULL DEFAULT 0 CHECK (failed_syncs >= 0),
            skipped_syncs INTEGER NOT NULL DEFAULT 0 CHECK (skipped_syncs >= 0),
            status TEXT NOT NULL DEFAULT 'running' CHECK (
                status IN ({_check_values(SyncBatchStatus.values())})
            ),
            error_message TEXT,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    db.execute(
        f"""
        CREATE TABLE IF NOT EXISTS inventory_syncs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            sync_batch_id INTEGER NOT NULL REFERENCES inventory_sync_batches(id) ON DELETE CASCADE,
            sku TEXT NOT NULL,
            product_name TEXT NOT NULL,
            shopify_product_id TEXT,
            shopify_variant_id TEXT,
            shopify_inventory_item_id TEXT,
            shopify_location_id TEXT,
            siesa_quantity INTEGER NOT NULL,
            shopify_quantity_before INTEGER,
            shopify_quantity_after INTEGER,
            status TEXT NOT NULL DEFAULT 'pending' CHECK (
                status IN ({_check_values(InventorySyncStatus.values())})
            ),
            error_message TEXT,
            synced_at TEXT,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    _create_indexes(db)


def _init_db_postgres(db: Database) -> None:
    db.execute(
        f"""
        CREATE TABLE IF NOT EXISTS orders (
            id BIGSERIAL PRIMARY KEY,
            shopify_order_id VARCHAR(255) NOT NULL UNIQUE,
            shopify_order_number VARCHAR(50) NOT NULL,
            order_json TEXT NOT NULL,
            flat_file_name VARCHAR(255),
            flat_file_path VARCHAR(500),
            status VARCHAR(20) NOT NULL DEFAULT 'pending' CHECK (
                status IN ({_check_values(OrderStatus.values())})
            ),
            error_message TEXT,
            attempts INTEGER NOT NULL DEFAULT 0 CHECK (attempts >= 0),
            processed_at TIMESTAMP,
            created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    db.execute(
        f"""
        CREATE TABLE IF NOT EXISTS order_logs (
            id BIGSERIAL PRIMARY KEY,
            order_id BIGINT NOT NULL REFERENCES orders(id) ON DELETE CASCADE,
            level VARCHAR(20) NOT NULL CHECK (
                level IN ({_check_values(OrderLogLevel.values())})
            ),
            message TEXT NOT NULL,
            context TEXT,
            created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    db.execute(
        f"""
        CREATE TABLE IF NOT EXISTS inventory_sync_batches (
            id BIGSERIAL PRIMARY KEY,
            started_at TIMESTAMP NOT NULL,
            finished_at TIMESTAMP,
            total_products INTEGER NOT NULL DEFAULT 0 CHECK (total_products >= 0),
            successful_syncs INTEGER NOT NULL DEFAULT 0 CHECK (successful_syncs >= 0),
            failed_syncs INTEGER NOT NULL DEFAULT 0 CHECK (failed_syncs >= 0),
            skipped_syncs INTEGER NOT NULL DEFAULT 0 CHECK (skipped_syncs >= 0),
            status VARCHAR(20) NOT NULL DEFAULT 'running' CHECK (
                status IN ({_check_values(SyncBatchStatus.values())})
            ),
            error_message TEXT,
            created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    db.execute(
        f"""
        CREATE TABLE IF NOT EXISTS inventory_syncs (
            id BIGSERIAL PRIMARY KEY,
            sync_batch_id BIGINT NOT NULL REFERENCES inventory_sync_batches(id) ON DELETE CASCADE,
            sku VARCHAR(100) NOT NULL,
            product_name VARCHAR(500) NOT NULL,
            shopify_product_id VARCHAR(255),
            shopify_variant_id VARCHAR(255),
            shopify_inventory_item_id VARCHAR(255),
            shopify_location_id VARCHAR(255),
            siesa_quantity INTEGER NOT NULL,
            shopify_quantity_before INTEGER,
            shopify_quantity_after INTEGER,
            status VARCHAR(20) NOT NULL DEFAULT 'pending' CHECK (
                status IN ({_check_values(InventorySyncStatus.values())})
            ),
            error_message TEXT,
            synced_at TIMESTAMP,
            created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    _create_indexes(db)


def _create_indexes(db: Database) -> None:
    indexes = (
        ("idx_orders_status", "orders", "status"),
        ("idx_orders_created_at", "orders", "created_at"),
        ("idx_order_logs_order_id", "order_logs", "order_id"),
        ("idx_order_logs_level", "order_logs", "level"),
        ("idx_inventory_sync_batches_status", "inventory_sync_batches", "status"),
        ("idx_inventory_sync_batches_started_at", "inventory_sync_batches", "started_at"),
        ("idx_inventory_syncs_batch_id", "inventory_syncs", "sync_batch_id"),
        ("idx_inventory_syncs_sku", "inventory_syncs", "sku"),
        ("idx_inventory_syncs_status", "inventory_syncs", "status"),
    )
    for index_name, table, column in indexes:
        db.execute(f"CREATE INDEX IF NOT EXISTS {index_name} ON {table} ({column})")


def returning_row(cursor):
    # Consume el cursor completo para que SQLite cierre la sentencia RETURNING.
    rows = cursor.fetchall()
    return rows[0] if rows else None
