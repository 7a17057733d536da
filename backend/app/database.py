import logging

from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, sessionmaker

from .config import get_settings
from .models import Base

logger = logging.getLogger(__name__)


def build_engine(url: str):
    # SQLite connections are shared with FastAPI's threadpool
    if make_url(url).get_backend_name() == "sqlite":
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(url, pool_pre_ping=True)


engine = build_engine(get_settings().database_url)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=True)


def init_db():
    """Create any missing tables"""
    Base.metadata.create_all(bind=engine)
    logger.info(f"Database ready ({engine.url.render_as_string(hide_password=True)})")


def get_db():
    session: Session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
