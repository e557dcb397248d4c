# Overview: Flask extension instances for database and migrations, plus SQLite locking setup.

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from sqlalchemy import event

db = SQLAlchemy()
migrate = Migrate()


def configure_sqlite_locking(engine, *, busy_timeout: float) -> None:
    """
    Make SQLite serialize writers the way row locks do on other databases.

    SQLite ignores SELECT ... FOR UPDATE, so every transaction is opened with
    BEGIN IMMEDIATE instead. Concurrent writers then wait on the busy timeout
    rather than reading a balance that another transaction is about to change.
    Other dialects are left untouched.
    """
    if engine.dialect.name != "sqlite":
        return

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # Disable pysqlite's own BEGIN handling so the "begin" hook below owns it.
        dbapi_connection.isolation_level = None
        dbapi_connection.execute(f"PRAGMA busy_timeout = {int(busy_timeout * 1000)}")

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")
