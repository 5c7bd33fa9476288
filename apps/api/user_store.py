import logging
import secrets
from typing import List, Optional

from auth import get_password_hash, needs_rehash, verify_password
from database import Database
from encryption import encrypt
from exceptions import ConstraintViolation, UserNotFound
from models import ROLES, User
from schemas import UserConfigUpdate, UserRecord, UserSummary

logger = logging.getLogger(__name__)

API_KEY_FIELDS = ("gemini_api_key_1", "gemini_api_key_2", "gemini_api_key_3", "fal_api_key")
APP_API_KEY_PREFIX = "rf_"


class UserStore:
    """User accounts and their per-provider API key configuration.

    Lookups return the full stored row, encrypted keys included; callers
    decide what to decrypt and what to expose.
    """

    def __init__(self, db: Database):
        self.db = db

    def find_user_by_username(self, username: str) -> Optional[UserRecord]:
        with self.db.session() as session:
            user = session.get(User, username)
            return UserRecord.model_validate(user) if user is not None else None

    def find_user_by_api_key(self, api_key: str) -> Optional[UserRecord]:
        if not api_key:
            return None
        with self.db.session() as session:
            user = session.query(User).filter(User.app_api_key == api_key).first()
            return UserRecord.model_validate(user) if user is not None else None

    def list_users(self) -> List[UserSummary]:
        with self.db.session() as session:
            users = session.query(User).order_by(User.username).all()
            return [UserSummary.model_validate(user) for user in users]

    def create_user(self, username: str, password: str, role: str) -> UserRecord:
        """Create a new user"""
        if not username or not password:
            raise ConstraintViolation("Username and password are required.")
        if role not in ROLES:
            raise ConstraintViolation(f"Invalid role: {role}")

        with self.db.transaction() as session:
            if session.get(User, username) is not None:
                raise ConstraintViolation("Username already exists.")
            user = User(username=username, password_hash=get_password_hash(password), role=role)
            session.add(user)
            session.flush()
            created = UserRecord.model_validate(user)
        logger.info("Created user %s (%s)", username, role)
        return created

    def delete_user(self, username: str) -> None:
        with self.db.transaction() as session:
            deleted = session.query(User).filter(User.username == username).delete()
            if deleted == 0:
                raise UserNotFound(username)
        logger.info("Deleted user %s", username)

    def update_configuration(self, username: str, update: UserConfigUpdate) -> bool:
        """Write the supplied fields of update in one statement.

        Returns False when nothing was supplied. API keys are encrypted
        before they are stored; an empty key clears the slot.
        """
        values = update.model_dump(exclude_none=True)
        if not values:
            return False

        for field in API_KEY_FIELDS:
            if field in values:
                values[field] = encrypt(values[field]) if values[field] else None

        with self.db.transaction() as session:
            updated = session.query(User).filter(User.username == username).update(
                values, synchronize_session=False
            )
            if updated == 0:
                raise UserNotFound(username)
        logger.info("Updated configuration for user %s: %s", username, sorted(values))
        return True

    def generate_app_api_key(self, username: str) -> str:
        """Mint a long-lived integration token for username and return it"""
        api_key = f"{APP_API_KEY_PREFIX}{secrets.token_hex(24)}"
        with self.db.transaction() as session:
            updated = session.query(User).filter(User.username == username).update(
                {"app_api_key": api_key}, synchronize_session=False
            )
            if updated == 0:
                raise UserNotFound(username)
        logger.info("Generated app API key for user %s", username)
        return api_key

    def authenticate(self, username: str, password: str) -> Optional[UserRecord]:
        """Check a password; bcrypt and outdated hashes are upgraded on success"""
        user = self.find_user_by_username(username)
        if user is None or not verify_password(password, user.password_hash):
            return None

        if needs_rehash(user.password_hash):
            with self.db.transaction() as session:
                session.query(User).filter(User.username == username).update(
                    {"password_hash": get_password_hash(password)}, synchronize_session=False
                )
            logger.info("Migrated password hash for user %s", username)
            user = self.find_user_by_username(username)
        return user
