from collections.abc import Generator
from time import perf_counter

from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from clipdash.core.config import settings
from clipdash.infrastructure.observability.metrics import observe_db_query

_TRACKED_VERBS = frozenset({"select", "insert", "update", "delete"})


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True, "pool_size": 5, "max_overflow": 5}


engine = create_engine(settings.sqlalchemy_database_uri, **_engine_options(settings.sqlalchemy_database_uri))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def _statement_verb(statement: str) -> str:
    verb = statement.lstrip().split(" ", 1)[0].lower()
    return verb if verb in _TRACKED_VERBS else "other"


@event.listens_for(engine, "before_cursor_execute")
def _before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
    conn.info.setdefault("query_timings", []).append((perf_counter(), _statement_verb(statement)))


@event.listens_for(engine, "after_cursor_execute")
def _after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
    timings = conn.info.get("query_timings")
    if not timings:
        return
    started_at, verb = timings.pop()
    observe_db_query(perf_counter() - started_at, operation=verb)


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
