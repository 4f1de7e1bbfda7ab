"""
Database helpers shared by the ledger services.

PostgreSQL is the production target; SQLite backs local development and
the test suite. Both dialects support ``INSERT ... ON CONFLICT`` through
their dialect-specific ``insert`` constructs, so conflict handling is
written once here.
"""
from datetime import datetime, date

from sqlalchemy import event
from sqlalchemy.dialects import postgresql, sqlite

from ..extensions import db


def dialect_insert(model):
    """Return an ``insert()`` construct for the bound dialect."""
    dialect = db.session.get_bind().dialect.name
    if dialect == 'postgresql':
        return postgresql.insert(model)
    if dialect == 'sqlite':
        return sqlite.insert(model)
    raise NotImplementedError(f'ON CONFLICT inserts are not supported on {dialect}')


def enable_sqlite_savepoints(engine) -> None:
    """
    Let SQLAlchemy own BEGIN on pysqlite.

    pysqlite defers BEGIN until the first DML statement, so a SAVEPOINT
    issued before any write starts (and RELEASE ends) the outer
    transaction. Disabling the driver's transaction handling and emitting
    BEGIN ourselves keeps nested transactions nested.
    """
    @event.listens_for(engine, 'connect')
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, 'begin')
    def _emit_begin(conn):
        conn.exec_driver_sql('BEGIN')


def supports_skip_locked() -> bool:
    return db.session.get_bind().dialect.name == 'postgresql'


def utcnow() -> datetime:
    return datetime.utcnow()


def today() -> date:
    """Current UTC calendar date; window expiry is compared against this."""
    return datetime.utcnow().date()
