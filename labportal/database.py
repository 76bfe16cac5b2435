from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from labportal.core import config


def _engine_kwargs(database_url: str) -> dict:
    if database_url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {}


engine = create_engine(config.DATABASE_URL, **_engine_kwargs(config.DATABASE_URL))

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_index_lock = Lock()
_indexes_checked = False


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def ensure_indexes(bind: Engine | None = None) -> None:
    """Create missing tables and the lookup indexes both services rely on.

    Safe to run repeatedly: the work is done once per process for the default
    engine, and every statement is idempotent.
    """
    global _indexes_checked

    target = bind or engine
    if bind is None and _indexes_checked:
        return

    with _index_lock:
        if bind is None and _indexes_checked:
            return

        # Registers the tables on Base.metadata.
        from labportal.models import logbook, user  # noqa: F401

        Base.metadata.create_all(bind=target)

        with target.begin() as connection:
            # Tables created before the identity index became unique.
            connection.execute(text('DROP INDEX IF EXISTS idx_logbooks_owner_subject'))
            connection.execute(
                text(
                    'CREATE UNIQUE INDEX IF NOT EXISTS uq_logbooks_owner_subject '
                    'ON logbooks(rollno, rgno, subject)'
                )
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_logbooks_rgno_created ON logbooks(rgno, created_at)')
            )

        if bind is None:
            _indexes_checked = True


def list_indexes(table_name: str, bind: Engine | None = None) -> list[dict]:
    inspector = inspect(bind or engine)
    if table_name not in inspector.get_table_names():
        return []
    return inspector.get_indexes(table_name)
