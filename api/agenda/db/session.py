from collections.abc import Generator, Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from agenda.core.config import settings


def configure_sqlite(engine: Engine) -> Engine:
    """Let SQLAlchemy own BEGIN so SAVEPOINTs nest inside real transactions."""

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(connection):
        connection.exec_driver_sql("BEGIN")

    return engine


def build_engine(database_url: str) -> Engine:
    if database_url.startswith("sqlite"):
        return configure_sqlite(
            create_engine(
                database_url, future=True, connect_args={"check_same_thread": False}
            )
        )
    return create_engine(database_url, future=True, pool_pre_ping=True)


engine = build_engine(settings.database_url)
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)


def get_db() -> Generator[Session, None, None]:
    """Provide a transactional scope around a series of operations."""

    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@contextmanager
def session_scope() -> Iterator[Session]:
    """Transactional scope for jobs and scripts running outside a request."""

    yield from get_db()
