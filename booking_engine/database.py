from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from .config import settings


def engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        # sessions cross the FastAPI threadpool
        return {"connect_args": {"check_same_thread": False}}
    # background loops hold connections across long sleeps
    return {"pool_pre_ping": True, "pool_size": 10, "max_overflow": 20}


engine = create_engine(settings.DATABASE_URL, **engine_options(settings.DATABASE_URL))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Request-scoped session; service functions own commit and rollback."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
