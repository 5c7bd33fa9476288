import logging
from typing import Optional

from encryption import decrypt
from exceptions import ApiKeyNotConfigured, UserNotFound
from settings_store import SettingsStore
from user_store import UserStore

logger = logging.getLogger(__name__)

SERVICES = ("gemini", "fal")


def get_api_key_for_user(
    users: UserStore,
    settings: SettingsStore,
    username: str,
    service: str,
    index: Optional[int] = None,
) -> str:
    """Decrypted API key for a user and provider.

    A user_specific slot with a usable key wins; otherwise the global key
    for the same slot is used. Gemini needs a slot index of 1, 2 or 3; Fal
    has a single slot and ignores index.
    """
    if service not in SERVICES:
        raise ValueError(f"Unknown API service: {service}")
    if service == "gemini" and index not in (1, 2, 3):
        raise ValueError("Index (1, 2, or 3) is required for Gemini API key retrieval.")

    user = users.find_user_by_username(username)
    if user is None:
        raise UserNotFound(username)

    if service == "gemini":
        key_field = f"gemini_api_key_{index}"
        global_setting = f"global_gemini_api_key_{index}"
    else:
        index = None
        key_field = "fal_api_key"
        global_setting = "global_fal_api_key"

    if getattr(user, f"{key_field}_mode") == "user_specific":
        user_key = decrypt(getattr(user, key_field))
        if user_key:
            logger.info("Using user-specific %s key (index: %s) for user '%s'", service, index or "N/A", username)
            return user_key

    global_key = decrypt(settings.get(global_setting))
    if global_key:
        logger.info("Using global %s key (index: %s) for user '%s'", service, index or "N/A", username)
        return global_key

    raise ApiKeyNotConfigured(
        f"API key for service '{service}' (index: {index or 'N/A'}) is not configured "
        f"for user '{username}' or globally."
    )
