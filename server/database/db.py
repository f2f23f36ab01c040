# server/database/db.py

import os
from sqlalchemy import event
from sqlmodel import SQLModel, Session, create_engine

from config import credentials
from database import models  # noqa: F401  registers the tables on SQLModel.metadata

# Get the absolute path to the database file
current_dir = os.path.dirname(os.path.abspath(__file__))
db_path = os.path.join(current_dir, "devices.db")
DATABASE_URL = credentials.DATABASE_URL or f"sqlite:///{db_path}"


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_db_engine(url: str = DATABASE_URL, timeout: float = credentials.DB_TIMEOUT_SECONDS):
    """Engine whose lock/connect waits are bounded by `timeout` seconds."""
    if url.startswith("sqlite"):
        engine = create_engine(url, echo=False, connect_args={"check_same_thread": False, "timeout": timeout})
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        return engine
    return create_engine(url, echo=False, pool_timeout=timeout, connect_args={"connect_timeout": int(timeout)})


engine = create_db_engine()

def init_db(target=None):
    target = target if target is not None else engine
    if target.url.get_backend_name() == "sqlite" and target.url.database:
        # Ensure the database directory exists
        directory = os.path.dirname(os.path.abspath(target.url.database))
        os.makedirs(directory, exist_ok=True)
    SQLModel.metadata.create_all(target)

def get_session(target=None):
    return Session(target if target is not None else engine)
