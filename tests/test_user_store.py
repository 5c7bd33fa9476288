import bcrypt
import pytest

from encryption import decrypt
from exceptions import ConstraintViolation, UserNotFound
from models import User
from schemas import UserConfigUpdate


def test_create_and_find_user(users):
    created = users.create_user("alice", "s3cret", "user")

    found = users.find_user_by_username("alice")
    assert found == created
    assert found.role == "user"
    assert found.password_hash != "s3cret"
    assert found.gemini_api_key_1_mode == "global"
    assert found.fal_api_key_mode == "global"


def test_find_unknown_user(users):
    assert users.find_user_by_username("nobody") is None


@pytest.mark.parametrize("username,password,role", [
    ("", "pw", "user"),
    ("bob", "", "user"),
    ("bob", "pw", "superuser"),
])
def test_create_user_rejects_bad_input(users, username, password, role):
    with pytest.raises(ConstraintViolation):
        users.create_user(username, password, role)


def test_duplicate_username_is_rejected(users):
    users.create_user("alice", "pw", "user")

    with pytest.raises(ConstraintViolation):
        users.create_user("alice", "other", "admin")

    assert users.find_user_by_username("alice").role == "user"


def test_list_users_is_sorted(users):
    users.create_user("carol", "pw", "user")
    users.create_user("alice", "pw", "admin")

    summaries = users.list_users()

    assert [(u.username, u.role) for u in summaries] == [("alice", "admin"), ("carol", "user")]


def test_delete_user(users):
    users.create_user("alice", "pw", "user")

    users.delete_user("alice")

    assert users.find_user_by_username("alice") is None
    with pytest.raises(UserNotFound):
        users.delete_user("alice")


def test_authenticate(users):
    users.create_user("alice", "s3cret", "user")

    assert users.authenticate("alice", "s3cret").username == "alice"
    assert users.authenticate("alice", "wrong") is None
    assert users.authenticate("nobody", "s3cret") is None


def test_authenticate_upgrades_bcrypt_hash(db, users):
    legacy_hash = bcrypt.hashpw(b"s3cret", bcrypt.gensalt(rounds=4)).decode("utf-8")
    with db.transaction() as session:
        session.add(User(username="alice", password_hash=legacy_hash, role="user"))

    user = users.authenticate("alice", "s3cret")

    assert user is not None
    assert user.password_hash.startswith("$pbkdf2-sha256$")
    assert users.authenticate("alice", "s3cret") is not None


class TestUpdateConfiguration:
    def test_keys_are_stored_encrypted(self, users):
        users.create_user("alice", "pw", "user")

        changed = users.update_configuration("alice", UserConfigUpdate(
            role="admin",
            gemini_api_key_1_mode="user_specific",
            gemini_api_key_1="AIza-secret-1",
        ))

        user = users.find_user_by_username("alice")
        assert changed is True
        assert user.role == "admin"
        assert user.gemini_api_key_1_mode == "user_specific"
        assert user.gemini_api_key_1 != "AIza-secret-1"
        assert decrypt(user.gemini_api_key_1) == "AIza-secret-1"
        assert user.fal_api_key is None

    def test_empty_key_clears_slot(self, users):
        users.create_user("alice", "pw", "user")
        users.update_configuration("alice", UserConfigUpdate(fal_api_key="fal-key"))

        users.update_configuration("alice", UserConfigUpdate(fal_api_key=""))

        assert users.find_user_by_username("alice").fal_api_key is None

    def test_nothing_to_update(self, users):
        users.create_user("alice", "pw", "user")

        assert users.update_configuration("alice", UserConfigUpdate()) is False

    def test_unknown_user(self, users):
        with pytest.raises(UserNotFound):
            users.update_configuration("ghost", UserConfigUpdate(role="admin"))


class TestAppApiKey:
    def test_generated_key_finds_user(self, users):
        users.create_user("alice", "pw", "user")

        api_key = users.generate_app_api_key("alice")

        assert api_key.startswith("rf_")
        assert len(api_key) == 3 + 48
        assert users.find_user_by_api_key(api_key).username == "alice"

    def test_regenerating_replaces_old_key(self, users):
        users.create_user("alice", "pw", "user")
        old_key = users.generate_app_api_key("alice")

        new_key = users.generate_app_api_key("alice")

        assert new_key != old_key
        assert users.find_user_by_api_key(old_key) is None

    def test_empty_or_unknown_key(self, users):
        assert users.find_user_by_api_key("") is None
        assert users.find_user_by_api_key("rf_unknown") is None

    def test_unknown_user(self, users):
        with pytest.raises(UserNotFound):
            users.generate_app_api_key("ghost")
