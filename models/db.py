from datetime import datetime, timezone

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import event

db = SQLAlchemy()


def utcnow():
    # naive UTC, matching how every DateTime column is stored
    return datetime.now(timezone.utc).replace(tzinfo=None)


def use_immediate_transactions(engine):
    """
    SQLite has no SELECT ... FOR UPDATE. Opening every transaction with
    BEGIN IMMEDIATE takes the database write lock up front, so two booking
    transactions can never interleave their read-check-write sequences.
    No-op for other backends (Postgres uses row locks).
    """
    if engine.dialect.name != "sqlite":
        return

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")
