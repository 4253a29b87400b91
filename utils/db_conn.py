import os
import time
import logging
from typing import Optional
from flask import Flask
from dotenv import load_dotenv

from models import db

# Configure logging for database operations
logger = logging.getLogger(__name__)


def build_database_uri(environment: Optional[str] = None) -> str:
    """Resolve the SQLAlchemy URI for the current ENVIRONMENT.

    DATABASE_URL wins when set. Otherwise 'local' and 'production'/'online'
    read their LOCAL_DB_* / ONLINE_DB_* variables and connect through PyMySQL,
    and 'testing' uses an in-memory SQLite database.
    """
    explicit = os.getenv("DATABASE_URL")
    if explicit:
        return explicit

    environment = (environment or os.getenv("ENVIRONMENT", "local")).lower()
    logger.info(f"Database environment: {environment}")

    if environment == "testing":
        return "sqlite://"
    if environment == "local":
        db_host = os.getenv("LOCAL_DB_HOST", "localhost")
        db_port = os.getenv("LOCAL_DB_PORT", "3306")
        db_user = os.getenv("LOCAL_DB_USER", "root")
        db_password = os.getenv("LOCAL_DB_PASSWORD", "")
        db_name = os.getenv("LOCAL_DB_NAME", "e_class_gradebook")
    elif environment == "production" or environment == "online":
        db_host = os.getenv("ONLINE_DB_HOST", "localhost")
        db_port = os.getenv("ONLINE_DB_PORT", "3306")
        db_user = os.getenv("ONLINE_DB_USER", "root")
        db_password = os.getenv("ONLINE_DB_PASSWORD", "")
        db_name = os.getenv("ONLINE_DB_NAME", "e_class_gradebook")
    else:
        raise ValueError(
            f"Invalid ENVIRONMENT value: {environment}. Must be 'local', 'testing' or 'production'/'online'"
        )

    return f"mysql+pymysql://{db_user}:{db_password}@{db_host}:{db_port}/{db_name}"


MYSQL_ENGINE_OPTIONS = {
    "pool_size": 10,
    "max_overflow": 20,
    "pool_recycle": 3600,  # MySQL drops idle connections after wait_timeout
    "pool_pre_ping": True,
    "pool_timeout": 30,
    "connect_args": {
        "connect_timeout": 10,
        "read_timeout": 10,
        "write_timeout": 10,
    },
}


def _masked(uri: str) -> str:
    if "@" not in uri:
        return uri
    head, tail = uri.split("@", 1)
    if ":" not in head.split("//", 1)[-1]:
        return uri
    return head.rsplit(":", 1)[0] + ":***@" + tail


class DatabaseConnection:
    """Binds the shared SQLAlchemy instance to an app and prepares its schema."""

    def __init__(self, app: Optional[Flask] = None):
        self.app = app
        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask):
        self.app = app
        load_dotenv()

        app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
        if not app.config.get("SQLALCHEMY_DATABASE_URI"):
            app.config["SQLALCHEMY_DATABASE_URI"] = build_database_uri(
                app.config.get("ENVIRONMENT")
            )
        uri = app.config["SQLALCHEMY_DATABASE_URI"]
        if uri.startswith("mysql"):
            app.config.setdefault("SQLALCHEMY_ENGINE_OPTIONS", MYSQL_ENGINE_OPTIONS)
        logger.info(f"Database URI configured: {_masked(uri)}")

        if "sqlalchemy" in app.extensions:
            logger.info("SQLAlchemy already registered on this app")
            return
        db.init_app(app)

    def test_connection(self, max_retries: int = 3) -> bool:
        """SELECT 1 against the engine, backing off 1s, 2s, 4s... between tries."""
        if self.app is None:
            logger.error("DatabaseConnection used before init_app")
            return False

        delay = 1
        for attempt in range(1, max_retries + 1):
            try:
                with self.app.app_context():
                    db.session.execute(db.text("SELECT 1"))
                logger.info(f"✅ Database reachable (attempt {attempt})")
                return True
            except Exception as e:
                logger.warning(f"❌ Database unreachable (attempt {attempt}/{max_retries}): {str(e)}")
                if attempt < max_retries:
                    time.sleep(delay)
                    delay *= 2
        return False

    def init_database(self) -> bool:
        """Check connectivity, then create any missing tables."""
        if not self.test_connection():
            logger.error("❌ Giving up on database initialization")
            return False
        try:
            with self.app.app_context():
                db.create_all()
        except Exception as e:
            logger.error(f"❌ Table creation failed: {str(e)}")
            return False
        logger.info("✅ Database tables ready")
        return True
