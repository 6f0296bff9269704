from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import QueuePool

from advisory.core.config import settings


def build_engine(database_url: str):
    if database_url.startswith("sqlite"):
        # Local runs and tests; SQLite has no server-side pool to manage
        return create_engine(database_url, connect_args={"check_same_thread": False})

    # Configure connection pooling to prevent connection exhaustion
    return create_engine(
        database_url,
        poolclass=QueuePool,
        pool_size=10,  # Number of connections to maintain persistently
        max_overflow=20,  # Maximum number of connections to create beyond pool_size
        pool_timeout=30,  # Seconds to wait before giving up on getting a connection
        pool_pre_ping=True,  # Verify connections before using them (handles stale connections)
        pool_recycle=3600,  # Recycle connections after 1 hour to prevent stale connections
        echo=False,
    )


engine = build_engine(settings.database_url)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
