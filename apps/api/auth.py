import logging

import bcrypt
from passlib.context import CryptContext

logger = logging.getLogger(__name__)

# New hashes use pbkdf2_sha256; accounts imported from the old app carry bcrypt hashes
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def is_bcrypt_hash(hashed_password: str) -> bool:
    """Check if a hash is a bcrypt hash"""
    return hashed_password.startswith(("$2b$", "$2a$", "$2y$"))


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash"""
    if is_bcrypt_hash(hashed_password):
        try:
            # bcrypt only looks at the first 72 bytes
            truncated_password = plain_password.encode("utf-8")[:72]
            return bcrypt.checkpw(truncated_password, hashed_password.encode("utf-8"))
        except ValueError as e:
            logger.warning("Error verifying bcrypt password: %s", e)
            return False

    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError as e:
        logger.warning("Unrecognised password hash: %s", e)
        return False


def get_password_hash(password: str) -> str:
    """Hash a password"""
    return pwd_context.hash(password)


def needs_rehash(hashed_password: str) -> bool:
    """True for bcrypt hashes and deprecated pbkdf2 parameters"""
    return is_bcrypt_hash(hashed_password) or pwd_context.needs_update(hashed_password)
