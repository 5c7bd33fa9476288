import logging
import os
from contextlib import contextmanager
from pathlib import Path

from dotenv import load_dotenv
from sqlalchemy import create_engine, event
from sqlalchemy.engine import make_url
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import declarative_base, sessionmaker

from exceptions import ConstraintViolation, TransientStorageError

load_dotenv()

logger = logging.getLogger(__name__)

# Database URL - SQLite file under user_data by default, PostgreSQL in production
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./user_data/history/history.db")
SQL_ECHO = os.getenv("SQL_ECHO", "0") == "1"

# Base class for models
Base = declarative_base()


def _prepare_sqlite_engine(engine, in_memory: bool) -> None:
    """Enable foreign keys on SQLite connections and serialize write transactions"""

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # Let SQLAlchemy's "begin" hook emit BEGIN itself
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys = ON")
        if not in_memory:
            cursor.execute("PRAGMA journal_mode = WAL")
            cursor.execute("PRAGMA synchronous = NORMAL")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        # Write transactions take the writer lock up front; reads do not
        if conn.get_execution_options().get("begin_immediate"):
            conn.exec_driver_sql("BEGIN IMMEDIATE")
        else:
            conn.exec_driver_sql("BEGIN")


class Database:
    """Owns the engine and session factory for one process.

    Create it once at startup, hand it to the stores, and call close() on
    shutdown.
    """

    def __init__(self, url: str = DATABASE_URL, echo: bool = SQL_ECHO):
        self.url = make_url(url)
        self.is_sqlite = self.url.get_backend_name() == "sqlite"

        if self.is_sqlite:
            database = self.url.database or ""
            in_memory = database in ("", ":memory:")
            if not in_memory:
                Path(database).parent.mkdir(parents=True, exist_ok=True)
            self.engine = create_engine(
                self.url,
                echo=echo,
                connect_args={"check_same_thread": False, "timeout": 30},
            )
            _prepare_sqlite_engine(self.engine, in_memory)
        else:
            self.engine = create_engine(self.url, echo=echo, pool_pre_ping=True)

        self.SessionLocal = sessionmaker(
            autocommit=False, autoflush=False, expire_on_commit=False, bind=self.engine
        )
        write_engine = self.engine.execution_options(begin_immediate=True) if self.is_sqlite else self.engine
        self.WriteSessionLocal = sessionmaker(
            autocommit=False, autoflush=False, expire_on_commit=False, bind=write_engine
        )
        logger.info("Database engine created for %s", self.url.render_as_string(hide_password=True))

    def init_schema(self) -> list:
        """Apply pending schema migrations and return their names"""
        from migrations import run_migrations

        return run_migrations(self.engine)

    @contextmanager
    def session(self):
        """Read-only session; anything left pending is rolled back"""
        db = self.SessionLocal()
        try:
            yield db
        except OperationalError as e:
            raise TransientStorageError(str(e)) from e
        finally:
            db.rollback()
            db.close()

    @contextmanager
    def transaction(self):
        """Session whose work is committed as one unit or not at all"""
        db = self.WriteSessionLocal()
        try:
            yield db
            db.commit()
        except IntegrityError as e:
            db.rollback()
            raise ConstraintViolation(str(e.orig)) from e
        except OperationalError as e:
            db.rollback()
            raise TransientStorageError(str(e)) from e
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def close(self) -> None:
        """Release every pooled connection"""
        self.engine.dispose()
        logger.info("Database engine disposed")
