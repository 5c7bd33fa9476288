import pytest
from sqlalchemy import inspect, text

from database import Database
from history_store import HistoryStore
from migrate import migrate
from migrations import MIGRATIONS, applied_migrations
from settings_store import DEFAULTS, SettingsStore
from user_store import UserStore

LEGACY_SCHEMA = [
    """CREATE TABLE history (
        id TEXT PRIMARY KEY,
        username TEXT NOT NULL,
        timestamp INTEGER NOT NULL,
        constructedPrompt TEXT,
        originalClothingUrl TEXT,
        settingsMode TEXT,
        attributes TEXT,
        videoGenerationParams TEXT
    )""",
    """CREATE TABLE history_images (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        history_id TEXT NOT NULL,
        url TEXT NOT NULL,
        type TEXT NOT NULL,
        slot_index INTEGER NOT NULL,
        FOREIGN KEY (history_id) REFERENCES history (id) ON DELETE CASCADE
    )""",
    """CREATE TABLE users (
        username TEXT PRIMARY KEY,
        password_hash TEXT NOT NULL,
        role TEXT NOT NULL,
        api_key_mode TEXT NOT NULL DEFAULT 'global',
        gemini_api_key TEXT,
        fal_api_key TEXT
    )""",
    "CREATE TABLE settings (key TEXT PRIMARY KEY, value TEXT NOT NULL)",
    """INSERT INTO history (id, username, timestamp, constructedPrompt, settingsMode, attributes)
       VALUES ('old1', 'alice', 1600000000000, 'legacy prompt', 'advanced', '{"gender": "female"}')""",
    "INSERT INTO history_images (history_id, url, type, slot_index) VALUES ('old1', '/a.png', 'edited', 0)",
    "INSERT INTO history_images (history_id, url, type, slot_index) VALUES ('old1', '/c.png', 'edited', 2)",
    """INSERT INTO users (username, password_hash, role, api_key_mode, gemini_api_key, fal_api_key)
       VALUES ('alice', 'x', 'user', 'user', 'enc-gemini', 'enc-fal')""",
    """INSERT INTO users (username, password_hash, role, api_key_mode)
       VALUES ('admin', 'y', 'admin', 'global')""",
    "INSERT INTO settings (key, value) VALUES ('global_gemini_api_key', 'stale')",
    "INSERT INTO settings (key, value) VALUES ('feature_video_generation', 'false')",
]


@pytest.fixture
def legacy_db(db_url):
    database = Database(db_url)
    with database.engine.begin() as conn:
        for statement in LEGACY_SCHEMA:
            conn.execute(text(statement))
    yield database
    database.close()


def test_fresh_database_applies_every_migration(db_url):
    database = Database(db_url)
    try:
        applied = database.init_schema()
        assert applied == [name for name, _ in MIGRATIONS]
        assert database.init_schema() == []
        assert applied_migrations(database.engine) == set(applied)

        tables = set(inspect(database.engine).get_table_names())
        assert {"history", "history_images", "users", "settings", "schema_migrations"} <= tables
        assert SettingsStore(database).get_all() == DEFAULTS
    finally:
        database.close()


def test_legacy_history_rows_survive(legacy_db):
    legacy_db.init_schema()

    item = HistoryStore(legacy_db).find_by_id("old1")

    assert item.status == "completed"
    assert item.error is None
    assert item.constructed_prompt == "legacy prompt"
    assert item.settings_mode == "advanced"
    assert item.attributes.gender == "female"
    assert item.edited_image_urls == ["/a.png", None, "/c.png"]
    assert item.original_image_urls is None


def test_legacy_users_get_granular_key_modes(legacy_db):
    legacy_db.init_schema()
    users = UserStore(legacy_db)

    alice = users.find_user_by_username("alice")
    assert alice.gemini_api_key_1 == "enc-gemini"
    assert alice.gemini_api_key_1_mode == "user_specific"
    assert alice.fal_api_key == "enc-fal"
    assert alice.fal_api_key_mode == "user_specific"
    assert alice.gemini_api_key_2_mode == "global"
    assert alice.app_api_key is None

    admin = users.find_user_by_username("admin")
    assert admin.role == "admin"
    assert admin.gemini_api_key_1_mode == "global"

    columns = {column["name"] for column in inspect(legacy_db.engine).get_columns("users")}
    assert "api_key_mode" not in columns
    assert "gemini_api_key" not in columns


def test_legacy_settings_are_completed(legacy_db):
    legacy_db.init_schema()

    with legacy_db.session() as session:
        keys = {row[0] for row in session.execute(text("SELECT key FROM settings"))}
    assert "global_gemini_api_key" not in keys
    assert set(DEFAULTS) <= keys
    assert SettingsStore(legacy_db).get("feature_video_generation") == "false"


def test_migrations_are_idempotent_even_when_unrecorded(legacy_db):
    legacy_db.init_schema()
    with legacy_db.engine.begin() as conn:
        conn.execute(text("DELETE FROM schema_migrations"))

    assert legacy_db.init_schema() == [name for name, _ in MIGRATIONS]
    assert UserStore(legacy_db).find_user_by_username("alice").gemini_api_key_1 == "enc-gemini"
    assert HistoryStore(legacy_db).find_by_id("old1").edited_image_urls == ["/a.png", None, "/c.png"]


def test_migrate_command(db_url, capsys):
    assert migrate(db_url) is True
    assert migrate(db_url) is True

    output = capsys.readouterr().out
    assert "Applied create_tables" in output
    assert "Schema already up to date" in output
