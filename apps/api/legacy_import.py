#!/usr/bin/env python3
"""
Import data kept outside the database by older releases:
per-user JSON history files, and users defined in APP_USERS_CONFIG
"""
import json
import logging
import os
import shutil
import sys
from pathlib import Path
from typing import Any, Dict

from pydantic import ValidationError

from database import DATABASE_URL, Database
from exceptions import ConstraintViolation
from history_store import HistoryStore
from logging_setup import setup_logging
from schemas import HistoryItem
from user_store import UserStore

logger = logging.getLogger(__name__)

JSON_HISTORY_DIR = Path("user_data") / "history"
BACKUP_DIR = Path("user_data") / "history_json_backup"


def item_from_legacy(data: Dict[str, Any], username: str) -> HistoryItem:
    """Build a HistoryItem from one entry of a JSON history file"""
    settings_mode = data.get("settingsMode")
    return HistoryItem(
        id=data["id"],
        username=username,
        timestamp=int(data["timestamp"]),
        constructed_prompt=data.get("constructedPrompt"),
        original_clothing_url=data.get("originalClothingUrl"),
        settings_mode=settings_mode if settings_mode in ("basic", "advanced") else None,
        attributes=data.get("attributes") or {},
        video_generation_params=data.get("videoGenerationParams"),
        status=data.get("status") or "completed",
        error=data.get("error"),
        edited_image_urls=data.get("editedImageUrls") or [],
        original_image_urls=data.get("originalImageUrls"),
        generated_video_urls=data.get("generatedVideoUrls"),
    )


def import_json_history(store: HistoryStore, history_dir: Path = JSON_HISTORY_DIR,
                        backup_dir: Path = BACKUP_DIR) -> Dict[str, int]:
    """Import every <username>.json file in history_dir.

    Files are moved to backup_dir once at least one item was imported.
    Returns counts of users processed and items imported.
    """
    history_dir = Path(history_dir)
    backup_dir = Path(backup_dir)
    summary = {"users": 0, "items": 0}

    if not history_dir.exists():
        print("❌ No JSON history directory found. Nothing to migrate.")
        return summary

    files = sorted(history_dir.glob("*.json"))
    if not files:
        print("❌ No JSON history files found. Nothing to migrate.")
        return summary

    print(f"📊 Found {len(files)} user history files to migrate")

    for path in files:
        username = path.stem
        print(f"👤 Processing user: {username}")
        try:
            entries = json.loads(path.read_text(encoding="utf-8"))
        except ValueError as e:
            print(f"  ⚠️  Failed to parse JSON for {username}: {e}")
            continue
        if not isinstance(entries, list):
            print(f"  ⚠️  Invalid history format for {username} (not an array)")
            continue

        imported = 0
        for entry in entries:
            if not isinstance(entry, dict) or not (entry.get("id") and entry.get("username") and entry.get("timestamp")):
                print("  ⚠️  Skipping invalid history item (missing required fields)")
                continue
            if store.find_by_id(entry["id"]) is not None:
                print(f"  - Item {entry['id']} already imported. Skipping.")
                continue
            try:
                # The file name decides the owner
                store.insert(item_from_legacy(entry, username))
            except (ValidationError, ValueError, ConstraintViolation) as e:
                print(f"  ⚠️  Failed to insert history item {entry.get('id')}: {e}")
                continue
            imported += 1

        print(f"  ✅ Migrated {imported}/{len(entries)} items for {username}")
        summary["users"] += 1
        summary["items"] += imported

    if summary["items"] > 0:
        backup_dir.mkdir(parents=True, exist_ok=True)
        for path in files:
            shutil.move(str(path), str(backup_dir / path.name))
        print(f"📁 Original JSON files backed up to: {backup_dir}")

    return summary


def import_users_from_config(users: UserStore, raw_config: str) -> int:
    """Create users from an APP_USERS_CONFIG JSON string, skipping existing ones"""
    if not raw_config:
        print("✅ No APP_USERS_CONFIG found. Skipping user migration.")
        return 0

    config = json.loads(raw_config)
    created = 0
    for username, user_config in config.items():
        if users.find_user_by_username(username) is not None:
            print(f"  - User '{username}' already exists in DB. Skipping.")
            continue
        print(f"  - Migrating user: {username}")
        users.create_user(username, user_config["password"], user_config["role"])
        created += 1

    if created:
        print(f"🎉 Successfully migrated {created} users to the database.")
    else:
        print("✅ No new users to migrate.")
    return created


if __name__ == "__main__":
    setup_logging()
    db = Database(DATABASE_URL)
    try:
        db.init_schema()
        import_users_from_config(UserStore(db), os.getenv("APP_USERS_CONFIG", ""))
        result = import_json_history(HistoryStore(db))
        print(f"🏁 Imported {result['items']} items for {result['users']} users")
    except Exception as e:
        print(f"💥 Import failed: {e}")
        sys.exit(1)
    finally:
        db.close()
