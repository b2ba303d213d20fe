"""Database engine and session factory configuration."""

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.packages.uploader.core.config import get_settings

settings = get_settings()

# SQLite needs ``check_same_thread`` relaxed because FastAPI may hand the
# session to a worker thread; ``pool_pre_ping`` keeps server pools healthy.
_connect_args = {"check_same_thread": False} if settings.database_url.startswith("sqlite") else {}
engine = create_engine(
    settings.database_url,
    pool_pre_ping=True,
    echo=settings.database_echo,
    connect_args=_connect_args,
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
