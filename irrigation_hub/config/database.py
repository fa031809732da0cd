"""Database configuration and initialization."""
import os
import logging
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, scoped_session, declarative_base
from irrigation_hub.config.config import DATABASE_PATH

logger = logging.getLogger(__name__)

# Ensure database directory exists
os.makedirs(os.path.dirname(DATABASE_PATH) or '.', exist_ok=True)

# Create database engine
DATABASE_URL = f'sqlite:///{DATABASE_PATH}'
engine = create_engine(DATABASE_URL, connect_args={'check_same_thread': False}, echo=False)

# Create session factory
SessionLocal = scoped_session(sessionmaker(autocommit=False, autoflush=False, bind=engine))

# Base class for models
Base = declarative_base()


def init_db(bind=None):
    """Initialize database by creating all tables."""
    from irrigation_hub.models import (
        ReadingRecord, WateringEvent, DailyCounter, SystemLog
    )
    Base.metadata.create_all(bind=bind or engine)
    logger.info("Database ready at %s", bind.url if bind is not None else DATABASE_URL)


def get_db():
    """Get database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
