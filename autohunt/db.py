from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import QueuePool
from autohunt.config import settings

def build_engine(url: str):
    if url.startswith("sqlite"):
        return create_engine(url, future=True, echo=False,
                             connect_args={"check_same_thread": False})
    # Pooled connection configuration for the hosted Postgres database
    return create_engine(
        url,
        future=True,
        echo=False,
        poolclass=QueuePool,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,  # Verify connections before use
        pool_recycle=3600,   # Recycle connections every hour
        connect_args={
            "connect_timeout": 30,
            "application_name": "autohunt",
            "options": f"-c statement_timeout={settings.DB_STATEMENT_TIMEOUT_MS}",
        }
    )

engine = build_engine(settings.DATABASE_URL)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
Base = declarative_base()

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
