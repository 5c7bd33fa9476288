"""Ordered schema migrations, applied once each at startup.

Every migration looks at the current shape of the database before changing
it, so running one against a database that already has the change is a
no-op. Applied migrations are recorded by name in ``schema_migrations``.
"""
import logging
import time
from typing import Callable, List, Tuple

from sqlalchemy import inspect, insert, select, text
from sqlalchemy.engine import Connection, Engine

from models import HistoryImage, HistoryRecord, SchemaMigration, Setting, User
from settings_store import DEFAULTS

logger = logging.getLogger(__name__)


def _columns(conn: Connection, table: str) -> set:
    inspector = inspect(conn)
    if not inspector.has_table(table):
        return set()
    return {column["name"] for column in inspector.get_columns(table)}


def _add_missing_columns(conn: Connection, table: str, columns: List[Tuple[str, str]]) -> None:
    existing = _columns(conn, table)
    for name, ddl in columns:
        if name in existing:
            logger.info("Column %s.%s already exists. Skipping.", table, name)
            continue
        conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {name} {ddl}"))
        logger.info("Added column %s.%s", table, name)


def create_tables(conn: Connection) -> None:
    """Create any missing table in its current shape"""
    tables = [HistoryRecord.__table__, HistoryImage.__table__, User.__table__, Setting.__table__]
    HistoryRecord.metadata.create_all(conn, tables=tables, checkfirst=True)


def history_status_columns(conn: Connection) -> None:
    _add_missing_columns(conn, "history", [
        ("status", "VARCHAR NOT NULL DEFAULT 'completed'"),
        ("error", "TEXT"),
    ])


def history_slot_counts(conn: Connection) -> None:
    _add_missing_columns(conn, "history", [
        ("edited_count", "INTEGER"),
        ("original_count", "INTEGER"),
        ("video_count", "INTEGER"),
    ])


def users_granular_api_keys(conn: Connection) -> None:
    """Rebuild a users table that has one Gemini key and one key mode.

    The old single Gemini key becomes slot 1. The old ``api_key_mode`` value
    'user' becomes 'user_specific' for Gemini slot 1 and Fal.
    """
    columns = _columns(conn, "users")
    if "gemini_api_key_1_mode" in columns:
        logger.info("Granular API key columns already exist. Migration not needed.")
        return

    conn.execute(text("ALTER TABLE users RENAME TO users_old"))
    conn.execute(text("DROP INDEX IF EXISTS idx_users_app_api_key"))
    User.__table__.create(conn)

    if "api_key_mode" in columns:
        mode = "CASE WHEN api_key_mode = 'user' THEN 'user_specific' ELSE 'global' END"
    else:
        mode = "'global'"
    gemini_key = "gemini_api_key" if "gemini_api_key" in columns else "NULL"
    fal_key = "fal_api_key" if "fal_api_key" in columns else "NULL"
    app_key = "app_api_key" if "app_api_key" in columns else "NULL"

    conn.execute(text(f"""
        INSERT INTO users (
            username, password_hash, role,
            gemini_api_key_1, fal_api_key,
            gemini_api_key_1_mode, fal_api_key_mode,
            app_api_key
        )
        SELECT
            username, password_hash, role,
            {gemini_key}, {fal_key},
            {mode}, {mode},
            {app_key}
        FROM users_old
    """))
    conn.execute(text("DROP TABLE users_old"))
    logger.info("Rebuilt users table with granular API key columns")


def users_app_api_key(conn: Connection) -> None:
    _add_missing_columns(conn, "users", [("app_api_key", "VARCHAR")])
    conn.execute(text(
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_users_app_api_key ON users (app_api_key)"
    ))


def default_settings(conn: Connection) -> None:
    """Insert defaults for missing settings and drop the single global Gemini key"""
    existing = {row[0] for row in conn.execute(select(Setting.key))}
    for key, value in DEFAULTS.items():
        if key not in existing:
            conn.execute(insert(Setting).values(key=key, value=value))
    conn.execute(text("DELETE FROM settings WHERE key = 'global_gemini_api_key'"))


MIGRATIONS: List[Tuple[str, Callable[[Connection], None]]] = [
    ("create_tables", create_tables),
    ("history_status_columns", history_status_columns),
    ("history_slot_counts", history_slot_counts),
    ("users_granular_api_keys", users_granular_api_keys),
    ("users_app_api_key", users_app_api_key),
    ("default_settings", default_settings),
]


def applied_migrations(engine: Engine) -> set:
    with engine.begin() as conn:
        SchemaMigration.__table__.create(conn, checkfirst=True)
        return {row[0] for row in conn.execute(select(SchemaMigration.name))}


def run_migrations(engine: Engine) -> List[str]:
    """Apply pending migrations in order, each in its own transaction"""
    done = applied_migrations(engine)
    applied = []
    for name, migration in MIGRATIONS:
        if name in done:
            continue
        logger.info("Applying migration %s", name)
        with engine.begin() as conn:
            migration(conn)
            conn.execute(insert(SchemaMigration).values(name=name, applied_at=int(time.time() * 1000)))
        applied.append(name)
    if applied:
        logger.info("Database schema initialized (%d migrations applied)", len(applied))
    return applied
