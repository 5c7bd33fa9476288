import logging
from typing import Dict

from database import Database
from encryption import decrypt, encrypt
from models import Setting

logger = logging.getLogger(__name__)

DEFAULTS: Dict[str, str] = {
    "feature_video_generation": "true",
    "feature_background_removal": "true",
    "feature_image_upscaling": "true",
    "feature_face_detailer": "true",
    # Encrypted global API keys
    "global_gemini_api_key_1": "",
    "global_gemini_api_key_2": "",
    "global_gemini_api_key_3": "",
    "global_fal_api_key": "",
}

GLOBAL_API_KEY_SETTINGS = {
    "gemini1": "global_gemini_api_key_1",
    "gemini2": "global_gemini_api_key_2",
    "gemini3": "global_gemini_api_key_3",
    "fal": "global_fal_api_key",
}


def _check_key(key: str) -> None:
    if key not in DEFAULTS:
        raise KeyError(f"Unknown setting: {key}")


def mask_key(key: str) -> str:
    return f"••••••••••••{key[-4:]}" if key else "Not Set"


class SettingsStore:
    """Global key/value settings; a missing key reads as its default"""

    def __init__(self, db: Database):
        self.db = db

    def get(self, key: str) -> str:
        _check_key(key)
        with self.db.session() as session:
            setting = session.get(Setting, key)
            return setting.value if setting is not None else DEFAULTS[key]

    def get_bool(self, key: str) -> bool:
        return self.get(key) == "true"

    def set(self, key: str, value: str) -> None:
        _check_key(key)
        with self.db.transaction() as session:
            session.merge(Setting(key=key, value=value))
        logger.info("Setting %s updated", key)

    def get_all(self) -> Dict[str, str]:
        """Defaults overlaid with stored values; unknown stored keys are ignored"""
        settings = dict(DEFAULTS)
        with self.db.session() as session:
            for setting in session.query(Setting).all():
                if setting.key in DEFAULTS:
                    settings[setting.key] = setting.value
        return settings

    def set_encrypted(self, key: str, value: str) -> None:
        self.set(key, encrypt(value) if value else "")

    def masked_global_api_keys(self) -> Dict[str, str]:
        """Global API keys for display: last four characters only"""
        settings = self.get_all()
        return {
            name: mask_key(decrypt(settings[key]))
            for name, key in GLOBAL_API_KEY_SETTINGS.items()
        }
