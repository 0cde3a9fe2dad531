"""
Database session management
"""
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from mfgplan.core.settings import settings
from mfgplan.db.base import Base
from mfgplan.logging_config import get_logger

logger = get_logger(__name__)

connection_string = settings.database_url

# Log connection info (without password)
logger.info(f"Database connection: {connection_string.rsplit('@', 1)[-1]}")

engine = create_engine(
    connection_string,
    echo=False,  # Set to True for SQL query logging
    pool_pre_ping=True,  # Verify connections before using
    pool_recycle=3600,  # Recycle connections after 1 hour
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db() -> None:
    """Create any missing tables. Production schemas are managed outside the app."""
    import mfgplan.models  # noqa: F401  (registers every table on Base.metadata)

    Base.metadata.create_all(bind=engine)


def get_db():
    """
    Dependency for getting database session

    Usage in FastAPI endpoints:
        @router.get("/boms/{bom_id}")
        def get_bom(bom_id: int, db: Session = Depends(get_db)):
            return db.query(BOM).get(bom_id)
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
