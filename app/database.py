from contextlib import contextmanager
from typing import Callable, Iterator, Optional

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from app.config import settings


def _build_database_url(raw_url: str) -> str:
    if raw_url.startswith("postgresql://"):
        return raw_url.replace("postgresql://", "postgresql+psycopg://", 1)
    return raw_url


def _connect_args(url: str) -> dict:
    # FastAPI runs sync handlers in a thread pool.
    if url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


DATABASE_URL = _build_database_url(settings.database_url)
engine = create_engine(
    DATABASE_URL,
    pool_pre_ping=True,
    echo=settings.database_echo,
    connect_args=_connect_args(DATABASE_URL),
)
SessionLocal = sessionmaker(
    bind=engine, autoflush=False, autocommit=False, expire_on_commit=False
)
Base = declarative_base()


def init_db(bind=None) -> None:
    if not DATABASE_URL and bind is None:
        raise RuntimeError("DATABASE_URL is not configured")
    from app.models import otp as _otp  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)


@contextmanager
def session_scope(
    session_factory: Optional[Callable[[], Session]] = None,
) -> Iterator[Session]:
    session = (session_factory or SessionLocal)()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
