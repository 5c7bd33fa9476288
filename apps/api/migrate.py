#!/usr/bin/env python3
"""
Migration script to bring an existing database up to the current schema
Safe to run repeatedly; applied migrations are recorded and skipped
"""
import sys

from sqlalchemy.engine import make_url

from database import DATABASE_URL, Database
from logging_setup import setup_logging


def migrate(database_url: str = DATABASE_URL) -> bool:
    """Apply every pending migration to database_url"""
    db = Database(database_url)
    try:
        applied = db.init_schema()
    except Exception as e:
        print(f"❌ Migration failed: {e}")
        return False
    finally:
        db.close()

    if applied:
        for name in applied:
            print(f"✅ Applied {name}")
    else:
        print("✅ Schema already up to date")
    return True


if __name__ == "__main__":
    setup_logging()
    print("🔄 Starting schema migration...")
    print(f"📊 Database: {make_url(DATABASE_URL).render_as_string(hide_password=True)}")
    success = migrate(DATABASE_URL)
    sys.exit(0 if success else 1)
