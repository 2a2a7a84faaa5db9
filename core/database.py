"""
core/database.py -- SQLAlchemy engine factory shared by the repositories.

Both tracker/store.py and auth/store.py talk to the same relational store
(the credential tables live beside the bug-tracker tables), so engine setup
lives in one place.
"""

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine

# In-memory SQLite gets one connection per thread (SingletonThreadPool).
# Above this many threads the pool closes other threads' connections, so it
# is sized past the worker thread pool (40 threads by default).
_MEMORY_POOL_SIZE = 64


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety on file databases.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool. In-memory databases ignore the pragma.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _is_memory_url(db_url: str) -> bool:
    return ":memory:" in db_url or "mode=memory" in db_url


def make_engine(db_url: str) -> Engine:
    """Build an Engine for db_url.

    SQLite requires check_same_thread=False because FastAPI runs sync route
    handlers and enrichment sub-queries on a thread pool.
    """
    if not db_url.startswith("sqlite"):
        return create_engine(db_url, pool_pre_ping=True)
    kwargs: dict = {"connect_args": {"check_same_thread": False}}
    if _is_memory_url(db_url):
        kwargs["pool_size"] = _MEMORY_POOL_SIZE
    engine = create_engine(db_url, **kwargs)
    event.listen(engine, "connect", _set_wal_mode)
    return engine
