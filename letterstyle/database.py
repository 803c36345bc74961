import logging

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from letterstyle.config import settings
from letterstyle.config_store import get_config_store
from letterstyle.models import Base

logger = logging.getLogger(__name__)

MEMORY_URL = "sqlite://"


def _set_sqlite_pragma(dbapi_conn, connection_record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.execute("PRAGMA busy_timeout=30000")
    cursor.close()


def build_engine(url: str):
    """SQLite engine for ``url``.

    ``sqlite://`` is a single in-memory connection shared across threads, so
    the analysis worker pool sees the same database as the caller.
    """
    if url == MEMORY_URL:
        return create_engine(url, connect_args={"check_same_thread": False}, poolclass=StaticPool)

    eng = create_engine(
        url,
        connect_args={"check_same_thread": False},
        echo=False,
        pool_size=5,
        pool_recycle=300,
        pool_pre_ping=True,
    )
    event.listen(eng, "connect", _set_sqlite_pragma)
    return eng


def create_session_factory(url: str | None = None, create_schema: bool = False) -> sessionmaker:
    eng = build_engine(url or settings.sqlite_url)
    if create_schema:
        Base.metadata.create_all(eng)
    return sessionmaker(bind=eng, expire_on_commit=False)


engine = build_engine(settings.sqlite_url)

SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)


def init_db():
    settings.sqlite_db_path.parent.mkdir(parents=True, exist_ok=True)
    Base.metadata.create_all(engine)

    # Learning thresholds start from .env until an operator overrides them
    get_config_store().seed_from_env()

    logger.info("Database initialized at %s (%d tables)", settings.sqlite_db_path, len(Base.metadata.tables))
