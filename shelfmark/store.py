"""Record store primitives shared by the services.

Every service writes through ``save_record``/``delete_record`` so a write
is flushed (and fails) at the call site rather than at a later commit.
"""

from __future__ import annotations

from contextlib import contextmanager

from sqlalchemy import event

from shelfmark.extensions import db


def save_record(record):
    db.session.add(record)
    db.session.flush()
    return record


def delete_record(record) -> None:
    db.session.delete(record)
    db.session.flush()


@contextmanager
def transaction():
    """Run the block as one unit: commit on success, roll back on any error."""
    try:
        yield db.session
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


def enable_sqlite_savepoints(engine) -> None:
    # pysqlite opens transactions lazily, which breaks SAVEPOINT; take over
    # BEGIN so begin_nested() behaves like on other backends.
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")
