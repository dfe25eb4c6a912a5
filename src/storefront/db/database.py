"""Database connection and session management"""
from typing import Generator

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.pool import StaticPool
import logging

from storefront.errors import Conflict

logger = logging.getLogger(__name__)

Base = declarative_base()

engine = None
SessionLocal = None


def build_engine(database_url: str) -> Engine:
    """Create an engine suited to the database behind ``database_url``"""
    if database_url.startswith("sqlite"):
        # A single shared connection keeps in-memory databases alive across threads
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            echo=False
        )

    return create_engine(
        database_url,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
        echo=False
    )


def init_database(database_url: str) -> Engine:
    """Initialize database connection"""
    global engine, SessionLocal

    logger.info("Initializing database connection")

    engine = build_engine(database_url)
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    logger.info("Database connection initialized")

    return engine


def create_tables():
    """Create all tables"""
    # Registers every model on Base.metadata
    import storefront.models  # noqa: F401

    logger.info("Creating database tables")
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created")


def ping() -> bool:
    """Run a trivial query against the configured database"""
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        return True
    finally:
        db.close()


def get_db() -> Generator[Session, None, None]:
    """Dependency for getting database session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def commit_or_conflict(db: Session, what: str):
    """
    Commit the unit of work, turning a lost optimistic-version race into Conflict

    Orders and payments carry a version counter; a concurrent request that
    committed first makes our UPDATE match zero rows.
    """
    try:
        db.commit()
    except StaleDataError:
        db.rollback()
        logger.warning(f"Concurrent modification detected on {what}")
        raise Conflict(f"{what} was modified concurrently, please retry")
