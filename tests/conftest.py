import pytest

from database import Database
from history_service import HistoryService
from history_store import HistoryStore
from schemas import HistoryItem
from settings_store import SettingsStore
from user_store import UserStore

TEST_ENCRYPTION_SECRET = "0123456789abcdef0123456789abcdef"


@pytest.fixture(autouse=True)
def encryption_secret(monkeypatch):
    monkeypatch.setenv("ENCRYPTION_SECRET", TEST_ENCRYPTION_SECRET)


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite:///{tmp_path / 'history.db'}"


@pytest.fixture
def db(db_url):
    database = Database(db_url)
    database.init_schema()
    yield database
    database.close()


@pytest.fixture
def store(db):
    return HistoryStore(db)


@pytest.fixture
def users(db):
    return UserStore(db)


@pytest.fixture
def settings(db):
    return SettingsStore(db)


@pytest.fixture
def service(store):
    return HistoryService(store)


@pytest.fixture
def make_item():
    def _make_item(**overrides):
        data = {
            "id": "h1",
            "username": "alice",
            "timestamp": 1_700_000_000_000,
            "constructed_prompt": "A model wearing a linen shirt",
            "original_clothing_url": "/uploads/user_uploads/shirt.png",
            "settings_mode": "basic",
            "attributes": {"gender": "female", "background": "studio"},
            "edited_image_urls": [None, None, None],
            "status": "completed",
        }
        data.update(overrides)
        return HistoryItem(**data)

    return _make_item
