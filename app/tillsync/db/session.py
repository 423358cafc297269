import time

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from app.tillsync.core.config import settings
from app.tillsync.core.db_timing import record_query_time, request_db_time_ms

_is_sqlite = settings.DATABASE_URL.startswith("sqlite")
_is_memory = _is_sqlite and ":memory:" in settings.DATABASE_URL

connect_args = {"check_same_thread": False} if _is_sqlite else {}

engine = create_engine(settings.DATABASE_URL, echo=False, future=True, connect_args=connect_args)


if _is_sqlite:

    @event.listens_for(engine, "connect")
    def _configure_ledger_connection(dbapi_connection, connection_record):
        # A sync is acknowledged only after commit, so commits must reach disk.
        cursor = dbapi_connection.cursor()
        try:
            if not _is_memory:
                cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=FULL")
            cursor.execute(f"PRAGMA busy_timeout={int(settings.LEDGER_BUSY_TIMEOUT_MS)}")
        finally:
            cursor.close()


@event.listens_for(engine, "before_cursor_execute")
def _start_query_timer(conn, cursor, statement, parameters, context, executemany):
    if request_db_time_ms() is not None:
        conn.info["query_start_time"] = time.perf_counter()


@event.listens_for(engine, "after_cursor_execute")
def _stop_query_timer(conn, cursor, statement, parameters, context, executemany):
    start = conn.info.pop("query_start_time", None)
    if start is not None and request_db_time_ms() is not None:
        record_query_time((time.perf_counter() - start) * 1000)


SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


def get_db():
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
