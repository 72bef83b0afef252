# Overview: Flask extension instances for database and migrations.

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from sqlalchemy import event

db = SQLAlchemy()
migrate = Migrate()


def install_sqlite_transaction_hooks(engine) -> None:
    """
    Take over transaction control from pysqlite.

    pysqlite defers BEGIN until the first DML statement, which breaks
    SAVEPOINT and lets two writers both read before either takes the write
    lock. Each unit of work starts with BEGIN IMMEDIATE instead, so writers
    queue on the busy timeout rather than failing mid-transaction.
    """
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")
