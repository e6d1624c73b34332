from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from taskhub.core.config import settings


class Base(DeclarativeBase):
    pass


def _connect_args(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"check_same_thread": False}
    if settings.QUERY_STATEMENT_TIMEOUT_MS > 0:
        return {"options": f"-c statement_timeout={int(settings.QUERY_STATEMENT_TIMEOUT_MS)}"}
    return {}


engine = create_engine(
    settings.DATABASE_URL,
    pool_pre_ping=True,
    connect_args=_connect_args(settings.DATABASE_URL),
)
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
