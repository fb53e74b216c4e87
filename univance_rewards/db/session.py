from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from ..core.config import settings


def engine_options(url: str) -> dict:
    # SQLite connections are shared across request threads
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True}


engine = create_engine(settings.DATABASE_URL, echo=False, **engine_options(settings.DATABASE_URL))
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)
