"""Database initialization and model exports."""

import sqlite3

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import event
from sqlalchemy.engine import Engine


db = SQLAlchemy()


@event.listens_for(Engine, "connect")
def _configure_sqlite(dbapi_connection, connection_record):  # pragma: no cover
    if not isinstance(dbapi_connection, sqlite3.Connection):
        return
    # SQLite ignores ON DELETE clauses unless foreign keys are switched on per connection.
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()
    # Transactions are started by the "begin" listener below instead of the driver.
    dbapi_connection.isolation_level = None


@event.listens_for(Engine, "begin")
def _begin_immediate(connection):  # pragma: no cover
    # Take the write lock up front so concurrent writers queue instead of deadlocking.
    if connection.dialect.name == "sqlite":
        connection.exec_driver_sql("BEGIN IMMEDIATE")


# Import models to register them with SQLAlchemy metadata.
from .user import User  # noqa: E402,F401
from .order import Order  # noqa: E402,F401
from .verification_code import VerificationCode  # noqa: E402,F401

__all__ = [
    "db",
    "User",
    "Order",
    "VerificationCode",
]
